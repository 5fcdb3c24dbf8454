"""LockVault core — crypto, codec, registry, sync and session.

Security Note (Threat Model):
    Vault plaintext and the derived key live in process memory while a
    session is unlocked. A memory dump of the process could expose them.
    Storage and the remote object store only ever see ciphertext plus the
    salt and last_updated envelope fields.
"""

from .session import VaultSession
from .sync import SyncReconciler, SyncResult, SyncAction, merge_vaults
from .registry import RegistryStore
from .codec import seal, open_vault, export_backup, parse_backup

__all__ = [
    "VaultSession",
    "SyncReconciler",
    "SyncResult",
    "SyncAction",
    "merge_vaults",
    "RegistryStore",
    "seal",
    "open_vault",
    "export_backup",
    "parse_backup",
]
