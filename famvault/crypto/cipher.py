"""
Authenticated Encryption Primitive

AES-256-GCM with a fresh 16-byte IV per call. The associated data is a
fixed per-domain tag, so a ciphertext produced for one domain
(e.g. "bank_account") never decrypts under another ("financial_amount").

Everything returned is hex-encoded for storage. No I/O happens here.
"""

import secrets
from typing import NamedTuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from famvault.crypto.errors import IntegrityError
from famvault.crypto.keys import get_master_key


IV_LENGTH = 16
TAG_LENGTH = 16

# Associated-data tags, one per domain
AAD_FINANCIAL_DATA = "financial_data"
AAD_FINANCIAL_AMOUNT = "financial_amount"
AAD_BANK_ACCOUNT = "bank_account"
AAD_USER_PII = "user_pii"


class CipherText(NamedTuple):
    """Hex-encoded output of encrypt()."""
    ciphertext: str
    iv: str
    auth_tag: str


def encrypt(plaintext: bytes, key: bytes, associated_data: str) -> CipherText:
    """Encrypt `plaintext` under `key`, binding `associated_data`."""
    iv = secrets.token_bytes(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, plaintext, associated_data.encode("utf-8"))
    # AESGCM appends the tag to the ciphertext
    return CipherText(
        ciphertext=sealed[:-TAG_LENGTH].hex(),
        iv=iv.hex(),
        auth_tag=sealed[-TAG_LENGTH:].hex(),
    )


def decrypt(
    ciphertext: str,
    key: bytes,
    iv: str,
    auth_tag: str,
    associated_data: str,
) -> bytes:
    """
    Verify and decrypt.

    Raises:
        IntegrityError: tag mismatch (tampering, wrong key or wrong domain)
                        or a malformed IV/tag/ciphertext
    """
    try:
        iv_bytes = bytes.fromhex(iv)
        tag_bytes = bytes.fromhex(auth_tag)
        body = bytes.fromhex(ciphertext)
    except (TypeError, ValueError) as e:
        raise IntegrityError(f"Malformed encrypted payload: {e}")

    if len(iv_bytes) != IV_LENGTH or len(tag_bytes) != TAG_LENGTH:
        raise IntegrityError("Malformed encrypted payload: bad IV or tag length")

    try:
        return AESGCM(key).decrypt(
            iv_bytes,
            body + tag_bytes,
            associated_data.encode("utf-8"),
        )
    except InvalidTag:
        raise IntegrityError("Authentication tag verification failed")


def encrypt_sensitive_data(data: Union[str, int, float]) -> str:
    """
    Legacy global-key mode.

    Encrypts with the master key directly. Output layout:
    iv_hex + tag_hex + ciphertext_hex.
    """
    plaintext = data if isinstance(data, str) else str(data)
    sealed = encrypt(plaintext.encode("utf-8"), get_master_key(), AAD_FINANCIAL_DATA)
    return sealed.iv + sealed.auth_tag + sealed.ciphertext


def decrypt_sensitive_data(encrypted_data: str) -> str:
    """Inverse of encrypt_sensitive_data()."""
    header = (IV_LENGTH + TAG_LENGTH) * 2
    if len(encrypted_data) < header:
        raise IntegrityError("Malformed encrypted payload: too short")

    iv = encrypted_data[:IV_LENGTH * 2]
    tag = encrypted_data[IV_LENGTH * 2:header]
    body = encrypted_data[header:]

    plaintext = decrypt(body, get_master_key(), iv, tag, AAD_FINANCIAL_DATA)
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise IntegrityError(f"Decrypted payload is not valid UTF-8: {e}")
