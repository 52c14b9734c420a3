"""
Amount and currency validation.

Runs before any cryptography. Validation NEVER silently fixes a value:
an amount with three decimal places is rejected, not rounded.
sanitize_financial_input() is the one explicit exception, for free-text
user input that the caller chose to clean up.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Union

from famvault.crypto.errors import ValidationError


MIN_AMOUNT = Decimal("0")
MAX_AMOUNT = Decimal("999999999.99")
CENT = Decimal("0.01")

_CURRENCY_RE = re.compile(r"^[A-Za-z]{3}$")
_NON_NUMERIC_RE = re.compile(r"[^\d.-]")

Amount = Union[Decimal, int, float]


def _as_decimal(amount: Any) -> Decimal:
    # bool is an int subclass; True is not an amount
    if isinstance(amount, bool) or not isinstance(amount, (Decimal, int, float)):
        raise ValidationError(
            f"Amount must be a number, got {type(amount).__name__}"
        )
    if isinstance(amount, float):
        # str() gives the shortest repr, so 0.1 stays 0.1
        return Decimal(str(amount))
    return Decimal(amount)


def validate_amount(amount: Amount) -> Decimal:
    """
    Return `amount` as a Decimal quantized to cents.

    Raises:
        ValidationError: not a number, non-finite, negative,
                         above 999,999,999.99 or more than 2 decimal places
    """
    value = _as_decimal(amount)

    if not value.is_finite():
        raise ValidationError("Amount must be a finite number")
    if value < MIN_AMOUNT:
        raise ValidationError("Amount must not be negative")
    if value > MAX_AMOUNT:
        raise ValidationError(f"Amount exceeds maximum allowed ({MAX_AMOUNT})")

    quantized = value.quantize(CENT)
    if quantized != value:
        raise ValidationError("Amount must have at most 2 decimal places")

    return quantized


def is_valid_amount(amount: Any) -> bool:
    """Boolean form of validate_amount()."""
    try:
        validate_amount(amount)
    except ValidationError:
        return False
    return True


def validate_currency(currency: str) -> str:
    """Three ASCII letters, returned upper-cased."""
    if not isinstance(currency, str) or not _CURRENCY_RE.match(currency):
        raise ValidationError(f"Invalid currency code: {currency!r}")
    return currency.upper()


def sanitize_financial_input(value: Union[str, int, float, Decimal]) -> Decimal:
    """
    Clean user-typed input into a 2-decimal amount.

    '$1,234.567' -> Decimal('1234.57')
    """
    if isinstance(value, bool):
        raise ValidationError("Invalid numeric input")
    if isinstance(value, (int, float, Decimal)):
        raw = str(value)
    else:
        raw = _NON_NUMERIC_RE.sub("", str(value))

    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise ValidationError(f"Invalid numeric input: {value!r}")

    if not amount.is_finite():
        raise ValidationError(f"Invalid numeric input: {value!r}")

    return amount.quantize(CENT, rounding=ROUND_HALF_UP)
