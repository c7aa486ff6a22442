"""
Dashboard and Chart Queries

DESIGN DECISION: Queries are DETERMINISTIC functions over transactions
already loaded from storage. They never touch storage or the AI, so
the same transactions always produce the same figures.

Ranges up to 90 days produce a continuous daily series (empty days
included so the chart has no gaps). ALL groups by calendar month,
starting at the month of the earliest transaction.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence, Union
from uuid import UUID

from dateutil.relativedelta import relativedelta

from finora.ledger.recurrence import month_bounds
from finora.models.ledger import Transaction, TransactionType
from finora.models.reports import (
    ChartPoint,
    ChartRange,
    ChartSeries,
    DashboardOverview,
    MonthlyStats,
)

RECENT_TRANSACTION_COUNT = 5
UNCATEGORIZED = "Uncategorized"

_DAY_LABEL = "%d %b"
_MONTH_LABEL = "%b %Y"


# =============================================================================
# ACCOUNT CHART
# =============================================================================

def _add(point: ChartPoint, transaction: Transaction) -> None:
    if transaction.type == TransactionType.INCOME:
        point.income += transaction.amount
    else:
        point.expense += transaction.amount


def _daily_points(
    transactions: Sequence[Transaction],
    start: date,
    end: date,
) -> list[ChartPoint]:
    points: dict[date, ChartPoint] = {}
    day = start
    while day <= end:
        points[day] = ChartPoint(label=day.strftime(_DAY_LABEL), start=day)
        day += relativedelta(days=1)

    for transaction in transactions:
        point = points.get(transaction.date)
        if point is not None:
            _add(point, transaction)
    return list(points.values())


def _monthly_points(transactions: Sequence[Transaction], end: date) -> list[ChartPoint]:
    dated = [t for t in transactions if t.date <= end]
    if not dated:
        return []

    earliest = min(t.date for t in dated)
    points: dict[tuple[int, int], ChartPoint] = {}
    month = earliest.replace(day=1)
    while month <= end:
        points[(month.year, month.month)] = ChartPoint(
            label=month.strftime(_MONTH_LABEL), start=month
        )
        month += relativedelta(months=1)

    for transaction in dated:
        _add(points[(transaction.date.year, transaction.date.month)], transaction)
    return list(points.values())


def account_chart(
    transactions: Sequence[Transaction],
    range_key: Union[ChartRange, str],
    today: date,
) -> ChartSeries:
    """
    Income/expense series for one account's chart.

    Args:
        transactions: The account's transactions, any order
        range_key: "7D", "1M", "3M" or "ALL"
        today: Last day of the window (inclusive)

    Raises:
        ValueError: Unknown range key
    """
    chart_range = ChartRange(range_key)

    if chart_range.days is None:
        points = _monthly_points(transactions, today)
    else:
        start = today - relativedelta(days=chart_range.days - 1)
        points = _daily_points(transactions, start, today)

    return ChartSeries(
        range=chart_range,
        points=points,
        total_income=sum((p.income for p in points), Decimal("0")),
        total_expense=sum((p.expense for p in points), Decimal("0")),
    )


# =============================================================================
# DASHBOARD
# =============================================================================

def _in_month(transaction: Transaction, year: int, month: int) -> bool:
    start, end = month_bounds(year, month)
    return start <= transaction.date <= end


def dashboard_overview(
    transactions: Sequence[Transaction],
    account_id: Optional[UUID],
    year: int,
    month: int,
) -> DashboardOverview:
    """The five most recent transactions of an account and its month's expenses by category."""
    if account_id is None:
        return DashboardOverview()

    own = [t for t in transactions if t.account_id == account_id]
    recent = sorted(own, key=lambda t: (t.date, t.created_at), reverse=True)

    by_category: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    for transaction in own:
        if transaction.type != TransactionType.EXPENSE:
            continue
        if not _in_month(transaction, year, month):
            continue
        by_category[transaction.category or UNCATEGORIZED] += transaction.amount

    return DashboardOverview(
        account_id=str(account_id),
        recent_transactions=recent[:RECENT_TRANSACTION_COUNT],
        expenses_by_category=dict(by_category),
    )


# =============================================================================
# MONTHLY STATISTICS
# =============================================================================

def monthly_stats(transactions: Sequence[Transaction], year: int, month: int) -> MonthlyStats:
    """Income, expenses and expense categories for one calendar month."""
    stats = MonthlyStats(year=year, month=month)
    by_category: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))

    for transaction in transactions:
        if not _in_month(transaction, year, month):
            continue
        stats.transaction_count += 1
        if transaction.type == TransactionType.EXPENSE:
            stats.total_expenses += transaction.amount
            by_category[transaction.category or UNCATEGORIZED] += transaction.amount
        else:
            stats.total_income += transaction.amount

    stats.by_category = dict(by_category)
    return stats
