"""LockVault error taxonomy.

Every error carries a stable ``kind`` string; the command layer returns
that string to callers instead of letting the exception escape.
"""


class LockVaultError(Exception):
    """Base class for all LockVault errors."""

    kind = "LockVaultError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)


class DecryptionFailure(LockVaultError):
    """Authentication tag did not verify (wrong key or tampered data)."""

    kind = "InvalidCredentials"


class InvalidCredentials(DecryptionFailure):
    """Wrong master password or corrupted store, reported on unlock."""


class MalformedVault(LockVaultError):
    """Plaintext authenticated but does not parse as a vault."""

    kind = "MalformedVault"


class VaultLocked(LockVaultError):
    kind = "VaultLocked"


class UnknownVault(LockVaultError):
    kind = "UnknownVault"


class CannotDeleteLastVault(LockVaultError):
    kind = "CannotDeleteLastVault"


class SyncFailure(LockVaultError):
    """Any remote-storage error, including timeouts and missing access."""

    kind = "SyncFailure"


class SetupOffline(LockVaultError):
    kind = "SetupOffline"


class NoVault(LockVaultError):
    """Storage holds no vault yet."""

    kind = "NoVault"


class AlreadyInitialized(LockVaultError):
    kind = "AlreadyInitialized"


class InvalidPayload(LockVaultError):
    kind = "InvalidPayload"
