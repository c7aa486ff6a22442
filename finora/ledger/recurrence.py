"""Recurring-date arithmetic."""

from datetime import date, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from finora.models.ledger import RecurringInterval


def next_occurrence(start: date, interval: RecurringInterval) -> date:
    """
    Date of the next occurrence after `start`.

    MONTHLY and YEARLY use relativedelta, which clamps to the last
    day of a shorter month (Jan 31 -> Feb 28/29, Feb 29 -> Feb 28).
    """
    if interval == RecurringInterval.DAILY:
        return start + timedelta(days=1)
    if interval == RecurringInterval.WEEKLY:
        return start + timedelta(days=7)
    if interval == RecurringInterval.MONTHLY:
        return start + relativedelta(months=1)
    if interval == RecurringInterval.YEARLY:
        return start + relativedelta(years=1)
    raise ValueError(f"Unknown recurring interval: {interval}")


def next_recurring_date(
    start: date,
    is_recurring: bool,
    interval: Optional[RecurringInterval],
) -> Optional[date]:
    """Stored next-occurrence date: only set for recurring transactions."""
    if is_recurring and interval is not None:
        return next_occurrence(start, interval)
    return None


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last day of a calendar month."""
    first = date(year, month, 1)
    return first, first + relativedelta(months=1, days=-1)


def previous_month(today: date) -> tuple[int, int]:
    """(year, month) of the calendar month before `today`'s."""
    earlier = today.replace(day=1) - timedelta(days=1)
    return earlier.year, earlier.month
