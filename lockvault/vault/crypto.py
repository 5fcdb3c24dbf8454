"""
Vault Crypto Core — Key derivation, salts and authenticated encryption.

- Master key: PBKDF2-HMAC-SHA256(master_password, salt, 600k iterations) → 32B
- Payloads: AES-256-GCM (or ChaCha20-Poly1305) with a fresh 96-bit nonce,
  16-byte tag appended to the ciphertext by the cipher.

Security Note:
    Never log passwords, keys, plaintext or ciphertext values.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import base64
import binascii
import logging
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..conf import KDF_ITERATIONS
from ..exceptions import DecryptionFailure

logger = logging.getLogger("lockvault.vault")

SALT_SIZE = 16  # one per vault
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256


def _get_cipher_cls(backend: Optional[str] = None) -> type:
    """Return the AEAD cipher class for a backend name.

    Falls back to LOCKVAULT_CIPHER_BACKEND, then AES-GCM.
    """
    if backend is None:
        backend = os.environ.get("LOCKVAULT_CIPHER_BACKEND", "aesgcm")
    if backend.lower() == "chacha20":
        return ChaCha20Poly1305
    return AESGCM


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def generate_salt() -> bytes:
    """Generate a random 16-byte salt, once per vault."""
    return os.urandom(SALT_SIZE)


def derive_key(
    password: str,
    salt: bytes,
    iterations: int = KDF_ITERATIONS,
) -> bytes:
    """Derive a 32-byte encryption key from the master password.

    Deliberately slow: PBKDF2-HMAC-SHA256 with a large iteration count.

    Args:
        password: Master password.
        salt: Per-vault salt bytes.
        iterations: PBKDF2 iteration count.

    Returns:
        32-byte derived key.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def encrypt(
    plaintext: bytes,
    key: bytes,
    backend: Optional[str] = None,
) -> tuple[bytes, bytes]:
    """Encrypt plaintext under key with a fresh nonce.

    Args:
        plaintext: Data to encrypt.
        key: 32-byte derived key.
        backend: Optional cipher backend name ("aesgcm" or "chacha20").

    Returns:
        Tuple of (ciphertext_with_tag, nonce).
    """
    cipher = _get_cipher_cls(backend)(key)
    nonce = os.urandom(NONCE_SIZE)
    ct = cipher.encrypt(nonce, plaintext, None)
    return ct, nonce


def decrypt(
    ciphertext: bytes,
    nonce: bytes,
    key: bytes,
    backend: Optional[str] = None,
) -> bytes:
    """Decrypt and authenticate ciphertext.

    Args:
        ciphertext: Ciphertext with appended tag.
        nonce: Nonce used at encryption time.
        key: 32-byte derived key.
        backend: Optional cipher backend name.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        DecryptionFailure: If the tag does not verify, or the input is
            truncated. Wrong key and corrupted data are indistinguishable.
    """
    if len(ciphertext) < TAG_SIZE or len(nonce) != NONCE_SIZE:
        raise DecryptionFailure(
            "Decryption failed. Incorrect master password or corrupted data."
        )
    cipher = _get_cipher_cls(backend)(key)
    try:
        return cipher.decrypt(nonce, ciphertext, None)
    except InvalidTag as err:
        raise DecryptionFailure(
            "Decryption failed. Incorrect master password or corrupted data."
        ) from err


# ---------------------------------------------------------------------------
# Text encoding of binary values
# ---------------------------------------------------------------------------

def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(data: str) -> bytes:
    """Decode base64 text, treating malformed input as tampering."""
    try:
        return base64.b64decode(data.encode("ascii"), validate=True)
    except (binascii.Error, ValueError) as err:
        raise DecryptionFailure("Corrupted encoding in encrypted record") from err
