"""
Money helpers.

DESIGN DECISION: Amounts are Decimal in the domain and integer minor
units in storage. An amount with more fractional digits than its
currency allows is REJECTED, never rounded. Rounding would silently
change what the user typed, and a rejected amount is easy to fix.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from finora.errors import InvalidInput
from finora.models.ledger import TransactionType


# Currencies whose minor unit is not 1/100
MINOR_UNIT_EXPONENTS = {
    "JPY": 0,
    "KRW": 0,
    "VND": 0,
    "CLP": 0,
    "ISK": 0,
    "UGX": 0,
    "BHD": 3,
    "JOD": 3,
    "KWD": 3,
    "OMR": 3,
    "TND": 3,
}
DEFAULT_EXPONENT = 2

CURRENCY_SYMBOLS = {
    "INR": "₹",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
}


def minor_unit_exponent(currency: str) -> int:
    return MINOR_UNIT_EXPONENTS.get(currency.upper(), DEFAULT_EXPONENT)


def _quantum(currency: str) -> Decimal:
    return Decimal(1).scaleb(-minor_unit_exponent(currency))


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """
    Parse a user-supplied amount.

    Accepts Decimal, int, float and numeric strings (thousands
    separators allowed). Raises InvalidInput for anything else.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidInput(f"Invalid {field}")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip().replace(",", ""))
        except InvalidOperation:
            raise InvalidInput(f"Invalid {field}: {value!r}")
    else:
        raise InvalidInput(f"Invalid {field}")

    if not amount.is_finite():
        raise InvalidInput(f"Invalid {field}: {value!r}")
    return amount


def ensure_precision(amount: Decimal, currency: str, field: str = "amount") -> Decimal:
    """Reject amounts finer than the currency's minor unit; return it quantized."""
    quantum = _quantum(currency)
    try:
        quantized = amount.quantize(quantum)
    except InvalidOperation:
        raise InvalidInput(f"Invalid {field}: too large")
    if quantized != amount:
        raise InvalidInput(
            f"Invalid {field}: {currency} amounts allow at most "
            f"{minor_unit_exponent(currency)} decimal places"
        )
    return quantized


def parse_positive_amount(value: Any, currency: str) -> Decimal:
    """Parse a transaction amount: numeric, > 0, within minor-unit precision."""
    amount = to_decimal(value)
    if amount <= 0:
        raise InvalidInput("Amount must be greater than zero")
    return ensure_precision(amount, currency)


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Scale an amount to integer minor units. The amount must already be precise."""
    return int(ensure_precision(amount, currency).scaleb(minor_unit_exponent(currency)))


def from_minor_units(units: int, currency: str) -> Decimal:
    return Decimal(units).scaleb(-minor_unit_exponent(currency)).quantize(_quantum(currency))


def signed_delta(type_: TransactionType, amount: Decimal) -> Decimal:
    """The change a transaction applies to its account balance."""
    return -amount if type_ == TransactionType.EXPENSE else amount


def format_currency(amount: Decimal, currency: str = "INR") -> str:
    """Format an amount for emails, e.g. ₹1,250.00 or -$3.50."""
    symbol = CURRENCY_SYMBOLS.get(currency.upper(), f"{currency.upper()} ")
    places = minor_unit_exponent(currency)
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.{places}f}"
