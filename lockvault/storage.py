"""
Key-value persistence for the registry, vault blobs and remote handles.

Backends implement three coroutines: ``get``, ``set`` and ``remove``.
Values are opaque bytes; callers never store plaintext here.
"""
import os
import re
import stat
import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .conf import REGISTRY_KEY, VAULT_KEY_PREFIX, FILE_HANDLE_KEY_PREFIX

logger = logging.getLogger("lockvault.storage")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def registry_key() -> str:
    """Storage key of the vault registry."""
    return REGISTRY_KEY


def vault_key(vault_id: str) -> str:
    """Storage key of one sealed vault record.

    Args:
        vault_id: Registry id of the vault.

    Returns:
        The namespaced key, e.g. ``lockvault:vault:<id>``.
    """
    return f"{VAULT_KEY_PREFIX}{vault_id}"


def file_handle_key(vault_id: str) -> str:
    """Storage key remembering the remote handle of a vault's copy."""
    return f"{FILE_HANDLE_KEY_PREFIX}{vault_id}"


@runtime_checkable
class KeyValueStore(Protocol):
    """Async byte store used for every persisted LockVault record."""

    async def get(self, key: str) -> Optional[bytes]:
        """Read a record.

        Args:
            key: Namespaced storage key.

        Returns:
            The stored bytes, or None if the key is absent.
        """
        ...

    async def set(self, key: str, value: bytes) -> None:
        """Create or replace a record.

        Args:
            key: Namespaced storage key.
            value: Opaque bytes; never plaintext secrets.

        Raises:
            OSError: If a persistent backend cannot write.
        """
        ...

    async def remove(self, key: str) -> None:
        """Delete a record. Removing an absent key is a no-op."""
        ...


class MemoryStorage:
    """Dict-backed storage, used for tests and ephemeral sessions.

    Args:
        initial: Optional records to start from; copied, not shared.
    """

    def __init__(self, initial: Optional[dict[str, bytes]] = None):
        self._data: dict[str, bytes] = dict(initial or {})

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        """Store a private copy of value under key."""
        self._data[key] = bytes(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        """Snapshot of the stored keys."""
        return list(self._data.keys())


class FileStorage:
    """One file per key inside a private directory.

    Writes go to a temporary file first and are moved into place with
    ``os.replace`` so a crash never leaves a half-written record.
    Blocking file I/O runs in a worker thread.

    Args:
        directory: Created on first write with mode 700; records are
            written with mode 600.
    """

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / _UNSAFE_CHARS.sub("_", key)

    def _ensure_dir(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self.directory.chmod(stat.S_IRWXU)  # 700

    def _read(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def _write(self, key: str, value: bytes) -> None:
        self._ensure_dir()
        path = self._path(key)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(value)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp, stat.S_IRUSR | stat.S_IWUSR)  # 600
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def _delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    async def get(self, key: str) -> Optional[bytes]:
        """Read the file for key, or None if it does not exist."""
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: bytes) -> None:
        """Atomically replace the file for key.

        Raises:
            OSError: If the directory or file cannot be written.
        """
        await asyncio.to_thread(self._write, key, value)
        logger.debug("Stored record %s (%d bytes)", key, len(value))

    async def remove(self, key: str) -> None:
        """Delete the file for key; a missing file is ignored."""
        await asyncio.to_thread(self._delete, key)
        logger.debug("Removed record %s", key)
