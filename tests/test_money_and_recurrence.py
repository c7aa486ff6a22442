"""
Tests for money arithmetic and recurring dates.
"""

from datetime import date
from decimal import Decimal

import pytest

from finora.errors import InvalidInput
from finora.ledger.money import (
    ensure_precision,
    format_currency,
    from_minor_units,
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
from finora.models.ledger import RecurringInterval, TransactionType


class TestMoney:

    @pytest.mark.parametrize("value, expected", [
        ("1,250.50", Decimal("1250.50")),
        (" 7 ", Decimal("7")),
        (3, Decimal("3")),
        (0.1, Decimal("0.1")),
        (Decimal("2.5"), Decimal("2.5")),
    ])
    def test_to_decimal(self, value, expected):
        assert to_decimal(value) == expected

    @pytest.mark.parametrize("value", ["abc", "", None, True, "NaN", "Infinity", [1]])
    def test_to_decimal_rejects(self, value):
        with pytest.raises(InvalidInput):
            to_decimal(value)

    def test_precision_is_rejected_not_rounded(self):
        assert ensure_precision(Decimal("10.5"), "INR") == Decimal("10.50")
        with pytest.raises(InvalidInput, match="at most 2 decimal places"):
            ensure_precision(Decimal("10.005"), "INR")
        with pytest.raises(InvalidInput):
            ensure_precision(Decimal("100.5"), "JPY")
        assert ensure_precision(Decimal("1.125"), "KWD") == Decimal("1.125")

    @pytest.mark.parametrize("value", ["0", "-1", "0.00"])
    def test_positive_amount(self, value):
        with pytest.raises(InvalidInput, match="greater than zero"):
            parse_positive_amount(value, "INR")

    def test_minor_units(self):
        assert to_minor_units(Decimal("1050.25"), "INR") == 105025
        assert to_minor_units(Decimal("-3"), "USD") == -300
        assert to_minor_units(Decimal("500"), "JPY") == 500
        assert from_minor_units(105025, "INR") == Decimal("1050.25")
        assert from_minor_units(1125, "KWD") == Decimal("1.125")

    def test_signed_delta(self):
        assert signed_delta(TransactionType.EXPENSE, Decimal("5")) == Decimal("-5")
        assert signed_delta(TransactionType.INCOME, Decimal("5")) == Decimal("5")

    def test_format_currency(self):
        assert format_currency(Decimal("1250"), "INR") == "₹1,250.00"
        assert format_currency(Decimal("-3.5"), "USD") == "-$3.50"
        assert format_currency(Decimal("1200"), "JPY") == "¥1,200"
        assert format_currency(Decimal("2"), "CHF") == "CHF 2.00"


class TestRecurrence:

    @pytest.mark.parametrize("start, interval, expected", [
        (date(2024, 3, 10), RecurringInterval.DAILY, date(2024, 3, 11)),
        (date(2024, 12, 28), RecurringInterval.WEEKLY, date(2025, 1, 4)),
        (date(2024, 1, 31), RecurringInterval.MONTHLY, date(2024, 2, 29)),
        (date(2023, 1, 31), RecurringInterval.MONTHLY, date(2023, 2, 28)),
        (date(2024, 12, 15), RecurringInterval.MONTHLY, date(2025, 1, 15)),
        (date(2024, 2, 29), RecurringInterval.YEARLY, date(2025, 2, 28)),
    ])
    def test_next_occurrence(self, start, interval, expected):
        assert next_occurrence(start, interval) == expected

    def test_only_recurring_has_next_date(self):
        start = date(2024, 3, 10)

        assert next_recurring_date(start, False, RecurringInterval.DAILY) is None
        assert next_recurring_date(start, True, None) is None
        assert next_recurring_date(start, True, RecurringInterval.DAILY) == date(2024, 3, 11)

    def test_month_bounds(self):
        assert month_bounds(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
        assert month_bounds(2023, 12) == (date(2023, 12, 1), date(2023, 12, 31))

    def test_previous_month(self):
        assert previous_month(date(2024, 3, 1)) == (2024, 2)
        assert previous_month(date(2024, 1, 15)) == (2023, 12)
