"""
LockVault Configuration — validated settings loaded from the environment.

Reads optional overrides from environment variables:
    LOCKVAULT_KDF_ITERATIONS     = <int, default 600000>
    LOCKVAULT_CIPHER_BACKEND     = aesgcm | chacha20
    LOCKVAULT_AUTO_LOCK_SECONDS  = <float, default 900>
    LOCKVAULT_REMOTE_TIMEOUT     = <float seconds, default 30>
    LOCKVAULT_DEFAULT_VAULT_NAME = <str>
    LOCKVAULT_STORAGE_DIR        = <path>
    LOCKVAULT_HOST / LOCKVAULT_PORT

Security Note:
    Never log key material or passwords. Only log identifiers and counts.
"""
import os
import logging
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("lockvault.conf")

# PBKDF2-HMAC-SHA256 iteration count used for master-key derivation
KDF_ITERATIONS = 600_000
AUTO_LOCK_SECONDS = 15 * 60
REMOTE_TIMEOUT = 30.0
DEFAULT_VAULT_NAME = "My Vault"
DEFAULT_STORAGE_DIR = Path.home() / ".lockvault"

# Namespaced storage keys
STORAGE_PREFIX = "lockvault"
REGISTRY_KEY = f"{STORAGE_PREFIX}:registry"
VAULT_KEY_PREFIX = f"{STORAGE_PREFIX}:vault:"
FILE_HANDLE_KEY_PREFIX = f"{STORAGE_PREFIX}:file:"

# Pre multi-vault layout
LEGACY_VAULT_KEY = "lockvault_encrypted"
LEGACY_FILE_ID_KEY = "lockvault_file_id"


class LockVaultConfig(BaseModel):
    """Validated LockVault configuration."""

    kdf_iterations: int = Field(default=KDF_ITERATIONS, ge=1000)
    cipher_backend: str = Field(default="aesgcm")
    auto_lock_seconds: float = Field(default=AUTO_LOCK_SECONDS, gt=0)
    remote_timeout: float = Field(default=REMOTE_TIMEOUT, gt=0)
    default_vault_name: str = Field(default=DEFAULT_VAULT_NAME, min_length=1)
    storage_dir: Path = Field(default=DEFAULT_STORAGE_DIR)
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8741, ge=1, le=65535)

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @classmethod
    def from_env(cls) -> "LockVaultConfig":
        """Create LockVaultConfig by loading overrides from environment.

        Returns:
            Populated LockVaultConfig instance.
        """
        env = {
            "kdf_iterations": "LOCKVAULT_KDF_ITERATIONS",
            "cipher_backend": "LOCKVAULT_CIPHER_BACKEND",
            "auto_lock_seconds": "LOCKVAULT_AUTO_LOCK_SECONDS",
            "remote_timeout": "LOCKVAULT_REMOTE_TIMEOUT",
            "default_vault_name": "LOCKVAULT_DEFAULT_VAULT_NAME",
            "storage_dir": "LOCKVAULT_STORAGE_DIR",
            "host": "LOCKVAULT_HOST",
            "port": "LOCKVAULT_PORT",
        }
        values = {
            field: os.environ[name] for field, name in env.items()
            if name in os.environ
        }
        logger.debug("Config overrides from environment: %s", sorted(values))
        return cls(**values)
