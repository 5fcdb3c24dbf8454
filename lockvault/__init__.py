"""LockVault.

Local-first encrypted credential store with optional cloud-backed
synchronization across multiple named vaults.
"""
from .version import __version__
from .conf import LockVaultConfig
from .models import (
    Category,
    EncryptedVault,
    SessionState,
    SyncStatus,
    Vault,
    VaultEntry,
    VaultMeta,
    VaultRegistry,
)
from .storage import FileStorage, MemoryStorage
from .vault import VaultSession
from .commands import CommandDispatcher

__all__ = [
    "__version__",
    "LockVaultConfig",
    "Category",
    "EncryptedVault",
    "SessionState",
    "SyncStatus",
    "Vault",
    "VaultEntry",
    "VaultMeta",
    "VaultRegistry",
    "FileStorage",
    "MemoryStorage",
    "VaultSession",
    "CommandDispatcher",
]
