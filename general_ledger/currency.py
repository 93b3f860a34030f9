"""
Currency and Amount Module

Handles ISO 4217 currency codes and exact Decimal amounts for ledger lines.
NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from enum import Enum
from typing import Union

from .exceptions import InvalidCurrencyError

# Set global decimal context for financial precision
getcontext().prec = 28

AmountLike = Union[Decimal, int, str, float]

ZERO = Decimal('0')


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    USD = ("USD", 2)  # US Dollar
    EUR = ("EUR", 2)  # Euro
    GBP = ("GBP", 2)  # British Pound
    JPY = ("JPY", 0)  # Japanese Yen
    CAD = ("CAD", 2)  # Canadian Dollar
    CHF = ("CHF", 2)  # Swiss Franc
    AUD = ("AUD", 2)  # Australian Dollar
    INR = ("INR", 2)  # Indian Rupee
    SGD = ("SGD", 2)  # Singapore Dollar
    AED = ("AED", 2)  # UAE Dirham
    ZAR = ("ZAR", 2)  # South African Rand
    KRW = ("KRW", 0)  # South Korean Won
    KWD = ("KWD", 3)  # Kuwaiti Dinar
    BHD = ("BHD", 3)  # Bahraini Dinar

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by its ISO code (case-insensitive)"""
        try:
            return cls[str(code).upper()]
        except KeyError:
            raise InvalidCurrencyError(code) from None


def to_amount(value: AmountLike) -> Decimal:
    """
    Convert a caller-supplied amount to an exact Decimal

    Floats go through ``str`` so 0.1 becomes Decimal('0.1'), not its
    binary expansion.

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValueError(f"Cannot use boolean {value!r} as an amount")
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Cannot convert {value!r} to Decimal") from None

    if not amount.is_finite():
        raise ValueError(f"Amount must be finite, got {value!r}")
    return amount


def quantize_amount(value: Decimal, currency: Currency = Currency.USD) -> Decimal:
    """
    Round a Decimal to the currency's minor unit

    Args:
        value: Decimal to round
        currency: Currency defining precision

    Returns:
        Properly rounded Decimal
    """
    return value.quantize(
        Decimal('0.1') ** currency.precision,
        rounding=ROUND_HALF_UP
    )


def format_amount(value: Decimal, currency: Currency = Currency.USD) -> str:
    """Format for display"""
    return f"{currency.code} {quantize_amount(value, currency):,.{currency.precision}f}"
