"""
Report Models

Shapes returned by the deterministic dashboard/chart queries
and consumed by the monthly report email.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from finora.models.ledger import Transaction


class ChartRange(str, Enum):
    """Date ranges offered on the account chart."""
    LAST_7_DAYS = "7D"
    LAST_MONTH = "1M"
    LAST_3_MONTHS = "3M"
    ALL_TIME = "ALL"

    @property
    def days(self) -> Optional[int]:
        return {"7D": 7, "1M": 30, "3M": 90, "ALL": None}[self.value]

    @property
    def label(self) -> str:
        return {
            "7D": "Last 7 Days",
            "1M": "Last Month",
            "3M": "Last 3 Months",
            "ALL": "All Time",
        }[self.value]


class ChartPoint(BaseModel):
    """Income and expense totals for one bucket (a day or a month)."""

    label: str
    start: date
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")


class ChartSeries(BaseModel):
    range: ChartRange
    points: list[ChartPoint] = Field(default_factory=list)
    total_income: Decimal = Decimal("0")
    total_expense: Decimal = Decimal("0")

    @property
    def net(self) -> Decimal:
        return self.total_income - self.total_expense


class DashboardOverview(BaseModel):
    """Recent activity and the month's expense breakdown for one account."""

    account_id: Optional[str] = None
    recent_transactions: list[Transaction] = Field(default_factory=list)
    expenses_by_category: dict[str, Decimal] = Field(default_factory=dict)


class MonthlyStats(BaseModel):
    """Totals for one calendar month, used by the monthly report."""

    year: int
    month: int = Field(ge=1, le=12)
    total_income: Decimal = Decimal("0")
    total_expenses: Decimal = Decimal("0")
    by_category: dict[str, Decimal] = Field(default_factory=dict)
    transaction_count: int = 0

    @property
    def net_income(self) -> Decimal:
        return self.total_income - self.total_expenses


class JobSummary(BaseModel):
    """What one run of a periodic job did."""

    job: str
    processed: int = 0
    sent: int = 0
    failed: list[str] = Field(
        default_factory=list,
        description="Ids of budgets/users whose step failed"
    )
