"""
Encryption Envelope Models

These models define what encrypted data looks like at rest and what the
decryptors hand back. Envelopes are stored as JSON in the *_encrypted
columns of the data store.

DESIGN DECISION: Only fields needed for querying or display live in
cleartext next to the ciphertext (currency, bank name, account type,
last four digits). Everything else is inside the encrypted bundle.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.utcnow()


class EncryptedDataType(str, Enum):
    """Domain of an encrypted envelope. Doubles as the AEAD associated data."""
    FINANCIAL_AMOUNT = "financial_amount"
    BANK_ACCOUNT = "bank_account"
    USER_PII = "user_pii"


class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"
    INVESTMENT = "investment"


HEX_PATTERN = "^[0-9a-f]*$"


class EncryptedEnvelope(BaseModel):
    """
    Fields shared by every encrypted envelope.

    salt and iv are fresh random values per encryption call, so the same
    plaintext never encrypts to the same envelope twice.
    """
    model_config = ConfigDict(frozen=True)

    encrypted: str = Field(
        ...,
        pattern=HEX_PATTERN,
        description="Hex ciphertext (without tag)"
    )
    salt: str = Field(
        ...,
        min_length=1,
        description="Hex KDF salt used to derive the cipher key"
    )
    iv: str = Field(
        ...,
        description="Hex initialization vector"
    )
    tag: str = Field(
        ...,
        description="Hex GCM authentication tag"
    )
    encrypted_at: datetime = Field(
        default_factory=utcnow,
        description="When the envelope was produced (UTC)"
    )


class EncryptedFinancialData(EncryptedEnvelope):
    """Encrypted amount. Currency stays in cleartext for queries."""

    currency: str = Field(..., min_length=3, max_length=3)
    data_type: Literal["financial_amount"] = "financial_amount"


class DecryptedFinancialData(BaseModel):
    """Result of decrypt_financial_amount()."""

    amount: Decimal
    currency: str
    timestamp: datetime = Field(
        ...,
        description="When the amount was encrypted"
    )
    decrypted_at: datetime = Field(default_factory=utcnow)


class BankAccountCredentials(BaseModel):
    """
    Full bank account details as entered by the user.

    CRITICAL: account_number and routing_number are never stored.
    Only salted hashes and the last four digits survive encryption.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    account_number: str = Field(..., min_length=4, max_length=34)
    routing_number: str = Field(..., min_length=1, max_length=34)
    bank_name: str = Field(..., min_length=1, max_length=200)
    account_type: AccountType
    account_nickname: Optional[str] = Field(default=None, max_length=100)
    metadata: dict[str, Any] = Field(default_factory=dict)


class EncryptedBankAccount(EncryptedEnvelope):
    """Encrypted bank metadata plus one-way hashes."""

    account_number_hash: str
    routing_number_hash: str
    last_four: str = Field(..., min_length=4, max_length=4)
    bank_name: str
    account_type: AccountType
    data_type: Literal["bank_account"] = "bank_account"


class DecryptedBankAccount(BaseModel):
    """Result of decrypt_bank_account_data()."""

    bank_name: str
    account_type: AccountType
    account_nickname: str = ""
    last_four_digits: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    decrypted_at: datetime = Field(default_factory=utcnow)


class UserPIIData(BaseModel):
    """Personal fields of a family member. All optional."""
    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    ssn: Optional[str] = None
    address: Optional[str] = None
    phone_number: Optional[str] = None
    emergency_contact: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        """True when there is nothing worth encrypting."""
        return not any(self.model_dump().values())


class EncryptedUserPII(EncryptedEnvelope):
    """The whole PII structure as one opaque bundle."""

    data_type: Literal["user_pii"] = "user_pii"


class DecryptedUserPII(UserPIIData):
    """Result of decrypt_user_pii()."""

    decrypted_at: datetime = Field(default_factory=utcnow)

