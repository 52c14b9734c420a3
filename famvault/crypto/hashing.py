"""
One-way hashing for identifiers that must never be recoverable
(full account and routing numbers).

Stored format: "<salt hex>:<hash hex>". The salt is random per call, so
hashing the same account number twice yields two different strings;
equality checks go through verify_sensitive_data_hash().
"""

import hashlib
import hmac
import secrets


HASH_SALT_LENGTH = 16
HASH_ITERATIONS = 100_000
HASH_LENGTH = 64


def _pbkdf2_sha512(data: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac(
        "sha512",
        data.encode("utf-8"),
        salt,
        HASH_ITERATIONS,
        HASH_LENGTH,
    )


def hash_sensitive_data(data: str) -> str:
    """Salted PBKDF2-SHA512 hash of `data`."""
    salt = secrets.token_bytes(HASH_SALT_LENGTH)
    return f"{salt.hex()}:{_pbkdf2_sha512(data, salt).hex()}"


def verify_sensitive_data_hash(data: str, stored_hash: str) -> bool:
    """
    Check `data` against a value produced by hash_sensitive_data().

    Malformed stored values never match.
    """
    salt_hex, sep, expected_hex = (stored_hash or "").partition(":")
    if not sep:
        return False
    try:
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(expected_hex)
    except ValueError:
        return False
    return hmac.compare_digest(_pbkdf2_sha512(data, salt), expected)


def mask_sensitive_data(data: str, visible_chars: int = 4) -> str:
    """'000123456789' -> '********6789'. Short values are fully masked."""
    if len(data) <= visible_chars:
        return "*" * len(data)
    if visible_chars <= 0:
        return "*" * len(data)
    return "*" * (len(data) - visible_chars) + data[-visible_chars:]
