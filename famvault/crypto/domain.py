"""
Domain Encryptors

Three encoders built on the AEAD primitive:
1. Financial amounts (amount + currency + embedded checksum)
2. Bank account data (hashed identifiers + encrypted metadata)
3. User PII (one opaque bundle)

Every encryptor follows the same shape:
validate -> canonical plaintext -> fresh salt -> derive key ->
encrypt with the domain tag -> envelope.

Every decryptor re-derives the key from the stored salt and the caller's
family key. Failures raise IntegrityError; corrupted plaintext is never
returned.
"""

import json
from decimal import Decimal
from typing import Any, Callable, Optional, TypeVar

import structlog
from pydantic import ValidationError as PydanticValidationError

from famvault.crypto.checksum import canonical_json, create_data_checksum
from famvault.crypto.cipher import decrypt, decrypt_sensitive_data, encrypt, encrypt_sensitive_data
from famvault.crypto.errors import EncryptionError, IntegrityError, ValidationError
from famvault.crypto.hashing import hash_sensitive_data
from famvault.crypto.keys import derive_key, generate_salt
from famvault.crypto.validation import Amount, validate_amount, validate_currency
from famvault.models.encryption import (
    BankAccountCredentials,
    DecryptedBankAccount,
    DecryptedFinancialData,
    DecryptedUserPII,
    EncryptedBankAccount,
    EncryptedDataType,
    EncryptedEnvelope,
    EncryptedFinancialData,
    EncryptedUserPII,
    UserPIIData,
    utcnow,
)


logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _seal(payload: dict[str, Any], family_key: str, data_type: EncryptedDataType) -> dict[str, str]:
    """Encrypt a JSON payload under a fresh salt. Returns envelope fields."""
    salt = generate_salt()
    key = derive_key(family_key, salt)
    plaintext = canonical_json(payload).encode("utf-8")
    sealed = encrypt(plaintext, key, data_type.value)
    return {
        "encrypted": sealed.ciphertext,
        "salt": salt,
        "iv": sealed.iv,
        "tag": sealed.auth_tag,
    }


def _open(envelope: EncryptedEnvelope, family_key: str, data_type: EncryptedDataType) -> dict[str, Any]:
    """Verify and decrypt an envelope back into its JSON payload."""
    key = derive_key(family_key, envelope.salt)
    plaintext = decrypt(envelope.encrypted, key, envelope.iv, envelope.tag, data_type.value)
    try:
        payload = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise IntegrityError(f"Decrypted {data_type.value} payload is not valid JSON: {e}")
    if not isinstance(payload, dict):
        raise IntegrityError(f"Decrypted {data_type.value} payload has the wrong shape")
    return payload


def _amount_checksum(amount: str, currency: str) -> str:
    return create_data_checksum({"amount": amount, "currency": currency})


# =============================================================================
# FINANCIAL AMOUNTS
# =============================================================================

def encrypt_financial_amount(
    amount: Amount,
    currency: str,
    family_key: str,
) -> EncryptedFinancialData:
    """
    Encrypt an amount with an embedded integrity checksum.

    Raises:
        ValidationError: bad amount, bad currency or empty family key
    """
    if not family_key:
        raise ValidationError("A family key is required")
    value = validate_amount(amount)
    currency = validate_currency(currency)

    amount_str = f"{value:.2f}"
    now = utcnow()
    payload = {
        "amount": amount_str,
        "currency": currency,
        "timestamp": now.isoformat(),
        "checksum": _amount_checksum(amount_str, currency),
    }

    return EncryptedFinancialData(
        **_seal(payload, family_key, EncryptedDataType.FINANCIAL_AMOUNT),
        currency=currency,
        encrypted_at=now,
    )


def decrypt_financial_amount(
    encrypted_data: EncryptedFinancialData,
    family_key: str,
) -> DecryptedFinancialData:
    """
    Decrypt an amount and verify its embedded checksum.

    Raises:
        IntegrityError: tag failure, malformed payload or checksum mismatch
    """
    payload = _open(encrypted_data, family_key, EncryptedDataType.FINANCIAL_AMOUNT)

    try:
        amount_str = payload["amount"]
        currency = payload["currency"]
        checksum = payload["checksum"]
        timestamp = payload["timestamp"]
    except KeyError as e:
        raise IntegrityError(f"Financial payload is missing field {e}")

    if _amount_checksum(amount_str, currency) != checksum:
        raise IntegrityError("Financial data integrity check failed")

    try:
        return DecryptedFinancialData(
            amount=Decimal(amount_str),
            currency=currency,
            timestamp=timestamp,
        )
    except (ArithmeticError, PydanticValidationError) as e:
        raise IntegrityError(f"Financial payload is malformed: {e}")


def encrypt_amount(amount: Amount) -> str:
    """Global-key mode: validate, then encrypt the 2-decimal string."""
    value = validate_amount(amount)
    return encrypt_sensitive_data(f"{value:.2f}")


def decrypt_amount(encrypted_amount: str) -> Decimal:
    """Global-key mode inverse of encrypt_amount()."""
    decrypted = decrypt_sensitive_data(encrypted_amount)
    try:
        return validate_amount(Decimal(decrypted))
    except (ArithmeticError, ValidationError) as e:
        raise IntegrityError(f"Decrypted amount is invalid: {e}")


# =============================================================================
# BANK ACCOUNTS
# =============================================================================

def encrypt_bank_account_data(
    account_data: BankAccountCredentials,
    family_key: str,
) -> EncryptedBankAccount:
    """
    Protect bank account credentials.

    Full account and routing numbers are only ever hashed (one-way,
    random salt per hash). Everything retrievable goes into the
    encrypted bundle; bank name, type and last four are mirrored in
    cleartext for display.
    """
    if not family_key:
        raise ValidationError("A family key is required")
    if not isinstance(account_data, BankAccountCredentials):
        try:
            account_data = BankAccountCredentials.model_validate(account_data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid bank account data: {e}")

    last_four = account_data.account_number[-4:]
    payload = {
        "bank_name": account_data.bank_name,
        "account_type": account_data.account_type.value,
        "account_nickname": account_data.account_nickname or "",
        "last_four_digits": last_four,
        "metadata": account_data.metadata,
    }

    return EncryptedBankAccount(
        **_seal(payload, family_key, EncryptedDataType.BANK_ACCOUNT),
        account_number_hash=hash_sensitive_data(account_data.account_number),
        routing_number_hash=hash_sensitive_data(account_data.routing_number),
        last_four=last_four,
        bank_name=account_data.bank_name,
        account_type=account_data.account_type,
    )


def decrypt_bank_account_data(
    encrypted_data: EncryptedBankAccount,
    family_key: str,
) -> DecryptedBankAccount:
    """Decrypt the retrievable part of a bank account."""
    payload = _open(encrypted_data, family_key, EncryptedDataType.BANK_ACCOUNT)
    try:
        return DecryptedBankAccount(**payload)
    except (TypeError, PydanticValidationError) as e:
        raise IntegrityError(f"Bank account payload is malformed: {e}")


# =============================================================================
# USER PII
# =============================================================================

def encrypt_user_pii(pii_data: UserPIIData, family_key: str) -> EncryptedUserPII:
    """Encrypt the whole PII structure. No field stays in cleartext."""
    if not family_key:
        raise ValidationError("A family key is required")
    if not isinstance(pii_data, UserPIIData):
        try:
            pii_data = UserPIIData.model_validate(pii_data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid PII data: {e}")

    payload = pii_data.model_dump(mode="json")
    return EncryptedUserPII(**_seal(payload, family_key, EncryptedDataType.USER_PII))


def decrypt_user_pii(encrypted_data: EncryptedUserPII, family_key: str) -> DecryptedUserPII:
    payload = _open(encrypted_data, family_key, EncryptedDataType.USER_PII)
    try:
        return DecryptedUserPII(**payload)
    except (TypeError, PydanticValidationError) as e:
        raise IntegrityError(f"PII payload is malformed: {e}")


def safe_encrypt(operation: Callable[[], T], fallback: Optional[T] = None) -> Optional[T]:
    """
    Run an encryption call for a live read/write path that must not crash.

    Only encryption-layer errors are absorbed; anything else is a bug and
    propagates.
    """
    try:
        return operation()
    except EncryptionError as e:
        logger.error(
            "safe_encrypt_failed",
            error_type=type(e).__name__,
            error=str(e),
        )
        return fallback
