"""
Vault Codec — canonical serialization and sealing of Vault aggregates.

``seal`` turns a Vault into an EncryptedVault (orjson bytes → AEAD),
``open_vault`` reverses it. Records are stored as orjson-encoded
EncryptedVault JSON under a per-vault storage key.

Security Note:
    Plaintext exists only between decrypt and model validation.
    Never log plaintext or ciphertext values.
"""
import logging
from typing import Optional

import orjson
from pydantic import ValidationError

from ..exceptions import MalformedVault
from ..models import EncryptedVault, Vault
from ..storage import KeyValueStore, vault_key
from .crypto import b64decode, b64encode, decrypt, encrypt

logger = logging.getLogger("lockvault.vault")


# ---------------------------------------------------------------------------
# Vault serialization
# ---------------------------------------------------------------------------

def serialize_vault(vault: Vault) -> bytes:
    """Canonical byte encoding of a Vault."""
    return orjson.dumps(vault.model_dump(mode="json"))


def deserialize_vault(data: bytes) -> Vault:
    """Parse plaintext bytes back into a Vault.

    Raises:
        MalformedVault: If the bytes are not a valid vault document.
    """
    try:
        parsed = orjson.loads(data)
        return Vault.model_validate(parsed)
    except (orjson.JSONDecodeError, ValidationError) as err:
        raise MalformedVault(f"Vault payload does not parse: {err}") from err


# ---------------------------------------------------------------------------
# Sealing
# ---------------------------------------------------------------------------

def seal(vault: Vault, key: bytes, backend: Optional[str] = None) -> EncryptedVault:
    """Serialize then encrypt a Vault.

    Salt and last_updated are copied into the cleartext envelope.
    """
    ciphertext, nonce = encrypt(serialize_vault(vault), key, backend)
    return EncryptedVault(
        ciphertext=b64encode(ciphertext),
        iv=b64encode(nonce),
        salt=vault.salt,
        last_updated=vault.last_updated,
    )


def open_vault(
    encrypted: EncryptedVault,
    key: bytes,
    backend: Optional[str] = None,
) -> Vault:
    """Decrypt then deserialize an EncryptedVault.

    Raises:
        DecryptionFailure: Propagated unchanged from the crypto layer.
        MalformedVault: If authenticated plaintext is not a valid vault.
    """
    plaintext = decrypt(
        b64decode(encrypted.ciphertext), b64decode(encrypted.iv), key, backend,
    )
    return deserialize_vault(plaintext)


# ---------------------------------------------------------------------------
# Record encoding
# ---------------------------------------------------------------------------

def encode_record(encrypted: EncryptedVault) -> bytes:
    """Serialize an EncryptedVault for storage or upload.

    Args:
        encrypted: Sealed vault; only ciphertext and metadata are written.

    Returns:
        Compact JSON bytes, the inverse of ``decode_record``.
    """
    return orjson.dumps(encrypted.model_dump(mode="json"))


def decode_record(data: bytes) -> EncryptedVault:
    """Parse a stored or downloaded EncryptedVault record."""
    try:
        return EncryptedVault.model_validate(orjson.loads(data))
    except (orjson.JSONDecodeError, ValidationError) as err:
        raise MalformedVault(f"Encrypted vault record does not parse: {err}") from err


def export_backup(encrypted: EncryptedVault) -> str:
    """Readable backup text: ciphertext, iv, salt and last_updated."""
    return orjson.dumps(
        encrypted.model_dump(mode="json"), option=orjson.OPT_INDENT_2,
    ).decode("utf-8")


def parse_backup(text: str) -> EncryptedVault:
    return decode_record(text.encode("utf-8"))


# ---------------------------------------------------------------------------
# Local persistence
# ---------------------------------------------------------------------------

async def load_local(storage: KeyValueStore, vault_id: str) -> Optional[EncryptedVault]:
    """Read the sealed record of a vault from local storage.

    Args:
        storage: Backend holding the record.
        vault_id: Registry id of the vault.

    Returns:
        The EncryptedVault, or None when nothing is stored for vault_id.

    Raises:
        MalformedVault: If the stored record does not parse.
    """
    raw = await storage.get(vault_key(vault_id))
    if raw is None:
        return None
    return decode_record(raw)


async def save_local(
    storage: KeyValueStore,
    vault_id: str,
    encrypted: EncryptedVault,
) -> None:
    """Write a sealed record under the vault's storage key, replacing any
    previous version.

    Args:
        storage: Target backend.
        vault_id: Registry id of the vault.
        encrypted: Record produced by ``seal``.
    """
    await storage.set(vault_key(vault_id), encode_record(encrypted))


async def persist(
    storage: KeyValueStore,
    vault: Vault,
    key: bytes,
    backend: Optional[str] = None,
) -> EncryptedVault:
    """Seal a vault and write it under its local storage key."""
    encrypted = seal(vault, key, backend)
    await save_local(storage, vault.vault_id, encrypted)
    logger.debug(
        "Vault persisted: vault=%s version=%d entries=%d",
        vault.vault_id, vault.version, len(vault.entries),
    )
    return encrypted
