"""
Vault Sync — reconcile a local vault with its remote copy.

One sync attempt per vault:
1. Locate the remote object named after the vault id. Missing → create it.
2. Remote modified time <= local last_updated → push local over remote.
3. Remote newer → download, decrypt with the same key, merge entries
   last-writer-wins, persist locally, then upload the merged copy.

Local writes are never rolled back by a remote error. Every remote call
is bounded by a timeout; any remote failure surfaces as SyncFailure.

Security Note:
    Never log plaintext or ciphertext values.
"""
import asyncio
import logging
from enum import Enum
from datetime import datetime
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ..conf import REMOTE_TIMEOUT
from ..exceptions import DecryptionFailure, MalformedVault, SyncFailure
from ..models import Vault, VaultEntry, utcnow
from ..remote import RemoteStore, vault_file_name
from ..storage import KeyValueStore, file_handle_key
from .codec import decode_record, encode_record, open_vault, persist, seal

logger = logging.getLogger("lockvault.sync")

CommitFn = Callable[[Vault], Awaitable[bool]]
GuardFn = Callable[[Vault], bool]


class SyncAction(str, Enum):
    CREATE_REMOTE = "create_remote"
    PUSH_LOCAL = "push_local"
    RECONCILE = "reconcile"
    SUPERSEDED = "superseded"


@dataclass
class SyncResult:
    vault: Vault
    merged: bool
    action: SyncAction


def merge_vaults(local: Vault, remote: Vault, now: Optional[datetime] = None) -> Vault:
    """Entry-level last-writer-wins merge.

    Remote entries seed the result; a local entry replaces a remote one
    only when its updated_at is strictly newer, so ties keep the remote
    copy. Entries missing locally are kept (no tombstones).
    """
    merged: dict[str, VaultEntry] = {}
    for entry in remote.entries:
        merged[entry.id] = entry
    for entry in local.entries:
        existing = merged.get(entry.id)
        if existing is None or entry.updated_at > existing.updated_at:
            merged[entry.id] = entry
    return Vault(
        vault_id=local.vault_id,
        version=max(local.version, remote.version) + 1,
        last_updated=now or utcnow(),
        salt=local.salt,
        entries=list(merged.values()),
    )


class SyncReconciler:
    """Runs the push/pull/merge state machine against a RemoteStore."""

    def __init__(
        self,
        storage: KeyValueStore,
        remote: RemoteStore,
        timeout: float = REMOTE_TIMEOUT,
        backend: Optional[str] = None,
    ):
        self._storage = storage
        self._remote = remote
        self._timeout = timeout
        self._backend = backend

    async def _call(self, what: str, coro: Awaitable):
        """Await a remote call, mapping errors and timeouts to SyncFailure."""
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except asyncio.TimeoutError as err:
            raise SyncFailure(f"Remote {what} timed out after {self._timeout}s") from err
        except SyncFailure:
            raise
        except Exception as err:
            raise SyncFailure(f"Remote {what} failed: {err}") from err

    @staticmethod
    def _refused(guard: Optional[GuardFn], vault: Vault) -> bool:
        if guard is None or guard(vault):
            return False
        logger.info("Sync: snapshot of vault=%s superseded, upload skipped", vault.vault_id)
        return True

    async def _create_remote(self, vault: Vault, payload: bytes, token: str) -> str:
        handle = await self._call(
            "upload", self._remote.upload_new(vault_file_name(vault.vault_id), payload, token),
        )
        await self._storage.set(file_handle_key(vault.vault_id), handle.encode("utf-8"))
        return handle

    async def sync(
        self,
        vault: Vault,
        key: bytes,
        token: str,
        commit: Optional[CommitFn] = None,
        guard: Optional[GuardFn] = None,
    ) -> SyncResult:
        """Reconcile ``vault`` with its remote copy.

        Args:
            vault: Local vault snapshot.
            key: Derived key shared by local and remote copies.
            token: Bearer token for remote calls.
            commit: Optional coroutine that persists a merged vault
                locally and returns False when the snapshot has been
                superseded. Defaults to writing the vault to storage.
            guard: Optional predicate called with the vault about to be
                uploaded; when it returns False that vault is stale and
                nothing more is written.

        Returns:
            SyncResult; action is SUPERSEDED when guard or commit refused.

        Raises:
            SyncFailure: On any remote error, or an unreadable remote copy.
        """
        found = await self._call("search", self._remote.find(vault_file_name(vault.vault_id), token))

        if found is None:
            if self._refused(guard, vault):
                return SyncResult(vault=vault, merged=False, action=SyncAction.SUPERSEDED)
            await self._create_remote(vault, encode_record(seal(vault, key, self._backend)), token)
            logger.info("Sync: created remote copy for vault=%s", vault.vault_id)
            return SyncResult(vault=vault, merged=False, action=SyncAction.CREATE_REMOTE)

        await self._storage.set(file_handle_key(vault.vault_id), found.handle.encode("utf-8"))

        if found.modified_time <= vault.last_updated:
            if self._refused(guard, vault):
                return SyncResult(vault=vault, merged=False, action=SyncAction.SUPERSEDED)
            await self._call(
                "upload",
                self._remote.upload_overwrite(
                    found.handle, encode_record(seal(vault, key, self._backend)), token,
                ),
            )
            logger.info("Sync: pushed local vault=%s version=%d", vault.vault_id, vault.version)
            return SyncResult(vault=vault, merged=False, action=SyncAction.PUSH_LOCAL)

        raw = await self._call("download", self._remote.download(found.handle, token))
        try:
            remote_vault = open_vault(decode_record(raw), key, self._backend)
        except (DecryptionFailure, MalformedVault) as err:
            raise SyncFailure(f"Remote copy could not be opened: {err.kind}") from err

        merged = merge_vaults(vault, remote_vault)
        if self._refused(guard, vault):
            return SyncResult(vault=vault, merged=False, action=SyncAction.SUPERSEDED)
        if commit is None:
            await persist(self._storage, merged, key, self._backend)
        elif not await commit(merged):
            logger.info("Sync: merge for vault=%s superseded locally, discarded", vault.vault_id)
            return SyncResult(vault=vault, merged=False, action=SyncAction.SUPERSEDED)
        if self._refused(guard, merged):
            # merged copy is already the local state; the remote catches up later
            return SyncResult(vault=merged, merged=True, action=SyncAction.SUPERSEDED)

        await self._call(
            "upload",
            self._remote.upload_overwrite(
                found.handle, encode_record(seal(merged, key, self._backend)), token,
            ),
        )
        logger.info(
            "Sync: merged vault=%s local=%d remote=%d -> version=%d entries=%d",
            vault.vault_id, vault.version, remote_vault.version,
            merged.version, len(merged.entries),
        )
        return SyncResult(vault=merged, merged=True, action=SyncAction.RECONCILE)

    async def push(self, vault: Vault, key: bytes, token: str) -> None:
        """Upload the vault, reusing the recorded remote handle if any."""
        payload = encode_record(seal(vault, key, self._backend))
        stored = await self._storage.get(file_handle_key(vault.vault_id))
        if stored is None:
            await self._create_remote(vault, payload, token)
            return
        await self._call(
            "upload", self._remote.upload_overwrite(stored.decode("utf-8"), payload, token),
        )

    async def delete_remote(self, vault_id: str, token: str) -> bool:
        """Delete the remote copy of a vault. Returns False if none exists."""
        stored = await self._storage.get(file_handle_key(vault_id))
        if stored is not None:
            handle = stored.decode("utf-8")
        else:
            found = await self._call("search", self._remote.find(vault_file_name(vault_id), token))
            if found is None:
                return False
            handle = found.handle
        await self._call("delete", self._remote.delete(handle, token))
        logger.info("Sync: deleted remote copy for vault=%s", vault_id)
        return True
