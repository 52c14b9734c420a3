"""
Encryption package.

Public surface used by application code (hooks, edge functions, scripts).
"""

from famvault.crypto.checksum import create_data_checksum, verify_data_checksum
from famvault.crypto.cipher import (
    CipherText,
    decrypt,
    decrypt_sensitive_data,
    encrypt,
    encrypt_sensitive_data,
)
from famvault.crypto.domain import (
    decrypt_amount,
    decrypt_bank_account_data,
    decrypt_financial_amount,
    decrypt_user_pii,
    encrypt_amount,
    encrypt_bank_account_data,
    encrypt_financial_amount,
    encrypt_user_pii,
    safe_encrypt,
)
from famvault.crypto.errors import (
    ConfigurationError,
    EncryptionError,
    IntegrityError,
    MissingSaltError,
    ValidationError,
)
from famvault.crypto.hashing import (
    hash_sensitive_data,
    mask_sensitive_data,
    verify_sensitive_data_hash,
)
from famvault.crypto.keys import (
    derive_key,
    generate_encryption_key,
    generate_family_key,
    generate_salt,
    generate_secure_token,
    get_master_key,
)
from famvault.crypto.validation import (
    is_valid_amount,
    sanitize_financial_input,
    validate_amount,
    validate_currency,
)

__all__ = [
    # Primitive
    "CipherText",
    "decrypt",
    "encrypt",
    "decrypt_sensitive_data",
    "encrypt_sensitive_data",
    # Domain encryptors
    "decrypt_amount",
    "decrypt_bank_account_data",
    "decrypt_financial_amount",
    "decrypt_user_pii",
    "encrypt_amount",
    "encrypt_bank_account_data",
    "encrypt_financial_amount",
    "encrypt_user_pii",
    "safe_encrypt",
    # Integrity
    "create_data_checksum",
    "verify_data_checksum",
    "hash_sensitive_data",
    "mask_sensitive_data",
    "verify_sensitive_data_hash",
    # Keys
    "derive_key",
    "generate_encryption_key",
    "generate_family_key",
    "generate_salt",
    "generate_secure_token",
    "get_master_key",
    # Validation
    "is_valid_amount",
    "sanitize_financial_input",
    "validate_amount",
    "validate_currency",
    # Errors
    "ConfigurationError",
    "EncryptionError",
    "IntegrityError",
    "MissingSaltError",
    "ValidationError",
]
