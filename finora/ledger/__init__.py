"""
Ledger Package

Money handling, recurrence arithmetic, and the services that keep
account balances consistent with their transactions.
"""

from finora.ledger.money import (
    format_currency,
    from_minor_units,
    minor_unit_exponent,
    parse_positive_amount,
    signed_delta,
    to_decimal,
    to_minor_units,
)
from finora.ledger.recurrence import (
    month_bounds,
    next_occurrence,
    next_recurring_date,
    previous_month,
)

__all__ = [
    "format_currency",
    "from_minor_units",
    "minor_unit_exponent",
    "parse_positive_amount",
    "signed_delta",
    "to_decimal",
    "to_minor_units",
    "next_occurrence",
    "next_recurring_date",
    "month_bounds",
    "previous_month",
]
