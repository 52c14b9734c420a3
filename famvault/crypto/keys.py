"""
Key Derivation

Family keys are never stored. They are rebuilt on demand from:
1. the global master key (ENCRYPTION_KEY),
2. the family id,
3. the user's per-profile encryption salt.

The family key is a secret string, not a cipher key. Every encryption call
draws its own random salt and runs it through derive_key(), so two
ciphertexts of the same family never share a cipher key.
"""

import hashlib
import secrets
from typing import Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from famvault.config import get_settings
from famvault.crypto.errors import ConfigurationError, MissingSaltError


KEY_LENGTH = 32  # AES-256
SALT_LENGTH = 32
PBKDF2_ITERATIONS = 100_000


def _to_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def derive_key(secret: Union[str, bytes], salt: Union[str, bytes]) -> bytes:
    """
    Derive a 32-byte cipher key with PBKDF2-HMAC-SHA256.

    Deterministic: the same (secret, salt) always yields the same key,
    which is what lets decryption rebuild it from the stored salt.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=_to_bytes(salt),
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(_to_bytes(secret))


def generate_salt() -> str:
    """Random KDF salt, hex-encoded."""
    return secrets.token_hex(SALT_LENGTH)


def generate_encryption_key() -> str:
    """
    Generate a new master key.

    Run once and store the result as ENCRYPTION_KEY.
    """
    return secrets.token_hex(KEY_LENGTH)


def generate_secure_token(length: int = 32) -> str:
    """Random token of `length` bytes, hex-encoded."""
    return secrets.token_hex(length)


def get_master_key() -> bytes:
    """
    Read the master key from configuration.

    Raises:
        ConfigurationError: key absent, not hex, or not exactly 32 bytes
    """
    key_string = get_settings().encryption.key
    if not key_string:
        raise ConfigurationError("Encryption key not found in environment variables")

    try:
        key = bytes.fromhex(key_string.strip())
    except ValueError:
        raise ConfigurationError("Encryption key must be hex-encoded")

    if len(key) != KEY_LENGTH:
        raise ConfigurationError(
            f"Encryption key must be exactly {KEY_LENGTH} bytes "
            f"({KEY_LENGTH * 2} hex characters)"
        )

    return key


def generate_family_key(family_id: str, user_salt: str) -> str:
    """
    Build the family-scoped secret passed to every domain encryptor.

    sha256(family_id + user_salt + master_key_hex), hex-encoded.

    Raises:
        MissingSaltError: user_salt is empty
        ConfigurationError: master key missing or malformed
    """
    if not user_salt:
        raise MissingSaltError("User encryption salt not found")

    master_key = get_master_key().hex()
    combined = f"{family_id}{user_salt}{master_key}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()
