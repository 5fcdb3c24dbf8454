"""
VaultSession — the unlocked state of LockVault and its command surface.

A session is either **locked** (nothing held in memory) or **unlocked**
(derived key, active Vault and VaultRegistry held in memory):

- ``setup(password)`` / ``unlock(password, vault_id)`` → unlocked
- ``lock()`` or the inactivity timer → locked

Mutating commands are serialized by one asyncio lock, persist the
affected vault or registry before returning and reset the auto-lock
timer. Remote storage is best-effort everywhere except ``sync()``:
failures are logged and reflected in ``sync_status`` but never block
local work.

Security Note:
    Never log plaintext, passwords or key material. Only log vault ids,
    versions, counts and error kinds.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlparse

from pydantic import ValidationError

from ..conf import LockVaultConfig
from ..exceptions import (
    AlreadyInitialized,
    DecryptionFailure,
    InvalidCredentials,
    InvalidPayload,
    NoVault,
    SetupOffline,
    SyncFailure,
    UnknownVault,
    VaultLocked,
)
from ..generator import DEFAULT_OPTIONS, PasswordOptions, generate_password
from ..importer import import_from_csv
from ..models import (
    SessionState,
    SyncStatus,
    Vault,
    VaultEntry,
    VaultMeta,
    VaultRegistry,
    utcnow,
)
from ..remote import RemoteStore, TokenProvider
from ..storage import KeyValueStore, file_handle_key, vault_key
from . import registry as reg
from .codec import export_backup, load_local, open_vault, persist, seal
from .crypto import b64decode, b64encode, derive_key, generate_salt
from .sync import SyncAction, SyncReconciler, SyncResult

logger = logging.getLogger("lockvault.session")

EntryPayload = Union[VaultEntry, Mapping[str, Any]]


def host_matches(entry_url: str, hostname: str) -> bool:
    """True when an entry URL belongs to hostname or a parent/child domain."""
    host = urlparse(entry_url).hostname if "://" in entry_url else None
    if not host:
        return hostname in entry_url
    return (
        host == hostname
        or host.endswith(f".{hostname}")
        or hostname.endswith(f".{host}")
    )


def entries_for_host(vault: Vault, hostname: str) -> list[VaultEntry]:
    hostname = hostname.strip().lower()
    if "://" in hostname:
        hostname = urlparse(hostname).hostname or ""
    if not hostname:
        return []
    return [e for e in vault.entries if e.url and host_matches(e.url, hostname)]


def _entry_payload(data: EntryPayload) -> dict[str, Any]:
    if isinstance(data, VaultEntry):
        return data.model_dump()
    if not isinstance(data, Mapping):
        raise InvalidPayload("Entry payload must be an object")
    return dict(data)


def _validate_entry(payload: dict[str, Any]) -> VaultEntry:
    try:
        return VaultEntry.model_validate(payload)
    except ValidationError as err:
        raise InvalidPayload(f"Invalid entry: {err.error_count()} error(s)") from err


class VaultSession:
    """Explicit session object owning the unlocked state.

    Args:
        storage: Key-value persistence for registry and vault records.
        remote: Optional remote object store; without it the session is
            purely local.
        tokens: Optional bearer-token provider for the remote store.
        config: LockVault settings.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        remote: Optional[RemoteStore] = None,
        tokens: Optional[TokenProvider] = None,
        config: Optional[LockVaultConfig] = None,
    ):
        self._config = config or LockVaultConfig()
        self._storage = storage
        self._registry_store = reg.RegistryStore(storage)
        self._tokens = tokens
        self._reconciler: Optional[SyncReconciler] = None
        if remote is not None:
            self._reconciler = SyncReconciler(
                storage,
                remote,
                timeout=self._config.remote_timeout,
                backend=self._config.cipher_backend,
            )
        self._key: Optional[bytes] = None
        self._vault: Optional[Vault] = None
        self._registry: Optional[VaultRegistry] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._sync_task: Optional[asyncio.Task] = None
        self._mutex = asyncio.Lock()
        self.sync_status = SyncStatus.OFFLINE
        self.last_synced = None

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    @property
    def is_unlocked(self) -> bool:
        return self._key is not None and self._vault is not None

    @property
    def vault(self) -> Optional[Vault]:
        return self._vault

    @property
    def registry(self) -> Optional[VaultRegistry]:
        return self._registry

    def _require_unlocked(self) -> tuple[bytes, Vault, VaultRegistry]:
        if self._key is None or self._vault is None or self._registry is None:
            raise VaultLocked("Vault is locked")
        return self._key, self._vault, self._registry

    def _ensure_held(self, key: bytes) -> None:
        """Fail if the session was locked while an operation was awaiting.

        Anything already written to storage stays written; nothing is
        put back in memory.
        """
        if self._key is not key:
            raise VaultLocked("Vault was locked before the operation completed")

    def _is_current(self, vault: Vault, key: bytes) -> bool:
        """True while vault is still the in-memory state under key."""
        current = self._vault
        return (
            self._key is key
            and current is not None
            and current.vault_id == vault.vault_id
            and current.version == vault.version
        )

    def _touch(self) -> None:
        """Restart the inactivity timer."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._key is None:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._config.auto_lock_seconds, self._auto_lock)

    def _auto_lock(self) -> None:
        logger.info("Session auto-locked after %ss of inactivity", self._config.auto_lock_seconds)
        self._timer = None
        self.lock()

    def _set_unlocked(self, key: bytes, vault: Vault, registry: VaultRegistry) -> None:
        self._key = key
        self._vault = vault
        self._registry = registry
        self._touch()

    async def _derive(self, password: str, salt: str) -> bytes:
        return await asyncio.to_thread(
            derive_key, password, b64decode(salt), self._config.kdf_iterations,
        )

    async def _persist(self, vault: Vault, key: bytes) -> None:
        await persist(self._storage, vault, key, self._config.cipher_backend)

    async def _open_with_key(self, vault_id: str, key: bytes, salt: str) -> Vault:
        """Open a stored vault with the session key.

        Raises:
            UnknownVault: If no record is stored for vault_id.
            InvalidCredentials: If the record uses another salt or fails to decrypt.
        """
        encrypted = await load_local(self._storage, vault_id)
        if encrypted is None:
            raise UnknownVault(f"No stored data for vault {vault_id}")
        if encrypted.salt != salt:
            raise InvalidCredentials("Vault was sealed under a different master key")
        try:
            vault = open_vault(encrypted, key, self._config.cipher_backend)
        except DecryptionFailure as err:
            raise InvalidCredentials(str(err)) from err
        return await self._adopt_id(vault, vault_id, key)

    async def _adopt_id(self, vault: Vault, vault_id: str, key: bytes) -> Vault:
        # Vaults migrated from the legacy layout carry their own id.
        if vault.vault_id == vault_id:
            return vault
        logger.info("Adopting registry id %s for vault %s", vault_id, vault.vault_id)
        vault = vault.model_copy(update={"vault_id": vault_id})
        await self._persist(vault, key)
        return vault

    # ------------------------------------------------------------------
    # Remote helpers
    # ------------------------------------------------------------------

    async def _silent_token(self) -> Optional[str]:
        if self._tokens is None or self._reconciler is None:
            return None
        try:
            return await self._tokens.get_token(interactive=False)
        except Exception as err:
            logger.warning("Silent token request failed: %s", err)
            return None

    async def _push_best_effort(self, vault: Vault, key: bytes) -> None:
        """Upload a freshly persisted vault when a token is at hand."""
        token = await self._silent_token()
        if token is None:
            self.sync_status = SyncStatus.OFFLINE
            return
        try:
            await self._reconciler.push(vault, key, token)
        except SyncFailure as err:
            logger.warning("Remote push failed for vault=%s: %s", vault.vault_id, err)
            self.sync_status = SyncStatus.ERROR
            return
        self.sync_status = SyncStatus.SYNCED
        self.last_synced = utcnow()

    async def _upload_initial(self, vault: Vault, key: bytes) -> None:
        token = await self._silent_token()
        if token is None:
            raise SetupOffline("No remote access during setup")
        try:
            await self._reconciler.push(vault, key, token)
        except SyncFailure as err:
            raise SetupOffline(str(err)) from err
        self.sync_status = SyncStatus.SYNCED
        self.last_synced = utcnow()

    def _mark_synced(self, result: SyncResult) -> None:
        if result.action is SyncAction.SUPERSEDED:
            self.sync_status = SyncStatus.CONFLICT
            return
        self.sync_status = SyncStatus.SYNCED
        self.last_synced = utcnow()

    def _schedule_background_sync(self) -> None:
        if self._reconciler is None or self._vault is None:
            return
        if self._sync_task is not None and not self._sync_task.done():
            self._sync_task.cancel()
        self._sync_task = asyncio.create_task(self._background_sync(self._vault))

    async def _background_sync(self, snapshot: Vault) -> None:
        """Opportunistic sync after unlock; its result is advisory.

        Runs under the mutation lock, so foreground commands wait for it
        and it never uploads a snapshot a later mutation has replaced.
        """
        token = await self._silent_token()
        key = self._key
        if token is None or key is None:
            self.sync_status = SyncStatus.OFFLINE
            return

        async def commit(merged: Vault) -> bool:
            if not self._is_current(snapshot, key):
                return False
            await self._persist(merged, key)
            if self._key is not key:
                return False
            self._vault = merged
            return True

        def guard(vault: Vault) -> bool:
            return self._is_current(vault, key)

        async with self._mutex:
            self.sync_status = SyncStatus.SYNCING
            try:
                result = await self._reconciler.sync(
                    snapshot, key, token, commit=commit, guard=guard,
                )
            except SyncFailure as err:
                logger.warning("Background sync failed for vault=%s: %s", snapshot.vault_id, err)
                self.sync_status = SyncStatus.ERROR
                return
            except Exception as err:
                logger.warning(
                    "Background sync for vault=%s aborted: %s",
                    snapshot.vault_id, type(err).__name__,
                )
                self.sync_status = SyncStatus.ERROR
                return
            self._mark_synced(result)

    async def join_background_sync(self) -> None:
        """Wait for a pending background sync to finish."""
        task = self._sync_task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def startup(self) -> Optional[VaultRegistry]:
        """One-time migration of a legacy single-vault layout."""
        return await self._registry_store.migrate_legacy(self._config.default_vault_name)

    async def setup(self, password: str) -> tuple[Vault, VaultRegistry]:
        """Create the first vault and registry, leaving the session unlocked.

        Raises:
            AlreadyInitialized: If a registry or legacy vault already exists.
        """
        if not password:
            raise InvalidPayload("Master password cannot be empty")
        async with self._mutex:
            if (
                await self._registry_store.load() is not None
                or await self._registry_store.has_legacy()
            ):
                raise AlreadyInitialized("A vault already exists")
            salt = b64encode(generate_salt())
            key = await self._derive(password, salt)
            vault = Vault(salt=salt)
            meta = VaultMeta(id=vault.vault_id, name=self._config.default_vault_name)
            await self._persist(vault, key)
            registry = await self._registry_store.save(reg.create_registry(meta, salt))
            self._set_unlocked(key, vault, registry)
            logger.info("Vault set up: vault=%s", vault.vault_id)
            if self._reconciler is not None:
                try:
                    await self._upload_initial(vault, key)
                except SetupOffline as err:
                    logger.warning("Setup continued offline: %s", err)
                    self.sync_status = SyncStatus.OFFLINE
        return vault, registry

    async def unlock(
        self,
        password: str,
        vault_id: Optional[str] = None,
    ) -> tuple[Vault, VaultRegistry]:
        """Derive the key once and open the target (default: active) vault.

        Raises:
            NoVault: If nothing has been set up yet.
            UnknownVault: If vault_id is not registered or has no record.
            InvalidCredentials: On a wrong password or corrupted record.
        """
        async with self._mutex:
            registry = await self._registry_store.load()
            if registry is None:
                raise NoVault("No vault found. Please set up a new vault first.")
            target = vault_id or registry.active_vault_id
            if registry.get(target) is None:
                raise UnknownVault(f"Vault {target} not found")
            encrypted = await load_local(self._storage, target)
            if encrypted is None:
                raise UnknownVault(f"No stored data for vault {target}")
            try:
                key = await self._derive(password, encrypted.salt)
                vault = open_vault(encrypted, key, self._config.cipher_backend)
            except DecryptionFailure as err:
                logger.info("Unlock failed for vault=%s", target)
                raise InvalidCredentials(str(err)) from err
            vault = await self._adopt_id(vault, target, key)
            registry = await self._registry_store.save(reg.switch_active(registry, target))
            self._set_unlocked(key, vault, registry)
            logger.info("Vault unlocked: vault=%s entries=%d", target, len(vault.entries))
        self._schedule_background_sync()
        return vault, registry

    def lock(self) -> None:
        """Drop key, vault and registry from memory immediately."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._sync_task is not None and not self._sync_task.done():
            self._sync_task.cancel()
        if self.sync_status is SyncStatus.SYNCING:
            self.sync_status = SyncStatus.OFFLINE
        self._key = None
        self._vault = None
        self._registry = None
        logger.debug("Session locked")

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def get_state(self) -> SessionState:
        registry = self._registry or await self._registry_store.load()
        first_time = registry is None and not await self._registry_store.has_legacy()
        name = None
        if self._vault is not None and registry is not None:
            meta = registry.get(self._vault.vault_id)
            name = meta.name if meta else None
        return SessionState(
            is_unlocked=self.is_unlocked,
            is_first_time=first_time,
            sync_status=self.sync_status,
            last_synced=self.last_synced,
            active_vault_id=self._vault.vault_id if self._vault else None,
            active_vault_name=name,
            vault_list=registry.vaults if registry else [],
        )

    async def list_vaults(self) -> list[VaultMeta]:
        registry = self._registry or await self._registry_store.load()
        return list(registry.vaults) if registry else []

    async def get_vault(self) -> tuple[Vault, VaultRegistry]:
        _, vault, registry = self._require_unlocked()
        self._touch()
        return vault, registry

    async def get_entries_for_url(self, hostname: str) -> list[VaultEntry]:
        _, vault, _ = self._require_unlocked()
        self._touch()
        return entries_for_host(vault, hostname)

    async def export(self) -> str:
        """Encrypted backup of the active vault as indented JSON text."""
        key, vault, _ = self._require_unlocked()
        self._touch()
        return export_backup(seal(vault, key, self._config.cipher_backend))

    def generate_password(self, options: Optional[PasswordOptions] = None) -> str:
        return generate_password(options or DEFAULT_OPTIONS)

    # ------------------------------------------------------------------
    # Entry mutations
    # ------------------------------------------------------------------

    async def _commit(
        self, key: bytes, vault: Vault, entries: list[VaultEntry], now: datetime,
    ) -> Vault:
        """Persist a new vault version holding entries, stamped at now."""
        updated = Vault(
            vault_id=vault.vault_id,
            version=vault.version + 1,
            last_updated=max(now, vault.last_updated),
            salt=vault.salt,
            entries=entries,
        )
        await self._persist(updated, key)
        self._ensure_held(key)
        self._vault = updated
        self._touch()
        await self._push_best_effort(updated, key)
        return updated

    @staticmethod
    def _apply(
        vault_entries: list[VaultEntry], data: EntryPayload, now: datetime,
    ) -> list[VaultEntry]:
        """Insert or update one entry, returning the new entry list."""
        payload = _entry_payload(data)
        entry_id = payload.get("id") or None
        existing = next((e for e in vault_entries if e.id == entry_id), None) if entry_id else None
        if existing is not None:
            merged = existing.model_dump()
            merged.update(payload)
            merged.update(
                id=existing.id,
                created_at=existing.created_at,
                updated_at=max(now, existing.updated_at),
            )
            entry = _validate_entry(merged)
            return [entry if e.id == existing.id else e for e in vault_entries]
        if entry_id is None:
            payload.pop("id", None)
        payload.update(created_at=now, updated_at=now)
        return vault_entries + [_validate_entry(payload)]

    async def save_entry(self, data: EntryPayload) -> Vault:
        """Add a new entry or update an existing one by id."""
        async with self._mutex:
            key, vault, _ = self._require_unlocked()
            now = utcnow()
            entries = self._apply(list(vault.entries), data, now)
            updated = await self._commit(key, vault, entries, now)
            logger.debug("Entry saved: vault=%s version=%d", updated.vault_id, updated.version)
            return updated

    async def delete_entry(self, entry_id: str) -> Vault:
        async with self._mutex:
            key, vault, _ = self._require_unlocked()
            if vault.get_entry(entry_id) is None:
                self._touch()
                return vault
            entries = [e for e in vault.entries if e.id != entry_id]
            return await self._commit(key, vault, entries, utcnow())

    async def bulk_import(self, items: list[EntryPayload]) -> tuple[Vault, int]:
        """Add many entries with a single version bump."""
        async with self._mutex:
            key, vault, _ = self._require_unlocked()
            if not items:
                self._touch()
                return vault, 0
            now = utcnow()
            entries = list(vault.entries)
            for item in items:
                entries = self._apply(entries, item, now)
            updated = await self._commit(key, vault, entries, now)
            logger.info("Bulk import: vault=%s imported=%d", updated.vault_id, len(items))
            return updated, len(items)

    async def import_csv(self, text: str) -> dict[str, Any]:
        result = import_from_csv(text)
        vault, imported = await self.bulk_import(result.entries)
        return {
            "vault": vault,
            "imported": imported,
            "skipped": result.skipped,
            "source": result.source,
        }

    # ------------------------------------------------------------------
    # Vault database management
    # ------------------------------------------------------------------

    async def create_vault(self, name: str) -> tuple[Vault, VaultRegistry]:
        """Create an empty vault under the session key and switch to it."""
        async with self._mutex:
            key, current, registry = self._require_unlocked()
            # the session key was derived from the current vault's salt
            vault = Vault(salt=current.salt)
            meta = VaultMeta(id=vault.vault_id, name=reg.clean_name(name))
            await self._persist(vault, key)
            registry = await self._registry_store.save(reg.add_vault(registry, meta))
            self._ensure_held(key)
            self._vault = vault
            self._registry = registry
            self._touch()
            logger.info("Vault created: vault=%s", vault.vault_id)
            await self._push_best_effort(vault, key)
        return vault, registry

    async def switch_vault(self, vault_id: str) -> tuple[Vault, VaultRegistry]:
        async with self._mutex:
            key, current, registry = self._require_unlocked()
            if registry.get(vault_id) is None:
                raise UnknownVault(f"Vault {vault_id} not found")
            vault = await self._open_with_key(vault_id, key, current.salt)
            registry = await self._registry_store.save(reg.switch_active(registry, vault_id))
            self._ensure_held(key)
            self._vault = vault
            self._registry = registry
            self._touch()
            logger.info("Switched to vault=%s", vault_id)
        self._schedule_background_sync()
        return vault, registry

    async def rename_vault(self, vault_id: str, name: str) -> VaultRegistry:
        async with self._mutex:
            key, _, current = self._require_unlocked()
            registry = await self._registry_store.save(
                reg.rename_vault(current, vault_id, name),
            )
            self._ensure_held(key)
            self._registry = registry
            self._touch()
        return registry

    async def delete_vault(self, vault_id: str) -> tuple[Vault, VaultRegistry]:
        """Delete a vault, its local record and its remote copy.

        Deleting the active vault switches to the first remaining vault.

        Raises:
            CannotDeleteLastVault: If it is the only vault.
            UnknownVault: If vault_id is not registered.
        """
        async with self._mutex:
            key, current, registry = self._require_unlocked()
            updated = reg.delete_vault(registry, vault_id)
            vault = current
            if current.vault_id == vault_id:
                vault = await self._open_with_key(updated.active_vault_id, key, current.salt)
                updated = reg.switch_active(updated, updated.active_vault_id)
            registry = await self._registry_store.save(updated)
            await self._storage.remove(vault_key(vault_id))
            token = await self._silent_token()
            if token is not None:
                try:
                    await self._reconciler.delete_remote(vault_id, token)
                except SyncFailure as err:
                    logger.warning("Remote delete failed for vault=%s: %s", vault_id, err)
            await self._storage.remove(file_handle_key(vault_id))
            self._ensure_held(key)
            self._vault = vault
            self._registry = registry
            self._touch()
            logger.info("Vault deleted: vault=%s active=%s", vault_id, registry.active_vault_id)
        return vault, registry

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync(self) -> SyncResult:
        """User-requested sync of the active vault.

        Raises:
            VaultLocked: If the session is locked, or is locked before the
                sync completes.
            SyncFailure: If remote access is unavailable or any remote call fails.
        """
        self._require_unlocked()
        if self._reconciler is None or self._tokens is None:
            raise SyncFailure("Remote storage is not configured")
        try:
            token = await self._tokens.get_token(interactive=True)
        except Exception as err:
            raise SyncFailure(f"Authentication failed: {err}") from err
        if not token:
            raise SyncFailure("Authentication failed")

        async with self._mutex:
            key, vault, _ = self._require_unlocked()

            async def commit(merged: Vault) -> bool:
                await self._persist(merged, key)
                if self._key is not key:
                    return False
                self._vault = merged
                return True

            def guard(candidate: Vault) -> bool:
                return self._key is key

            self.sync_status = SyncStatus.SYNCING
            try:
                result = await self._reconciler.sync(
                    vault, key, token, commit=commit, guard=guard,
                )
            except SyncFailure:
                self.sync_status = SyncStatus.ERROR
                raise
            if self._key is not key:
                self.sync_status = SyncStatus.OFFLINE
                raise VaultLocked("Vault was locked during sync")
            self._mark_synced(result)
            self._touch()
        return result
