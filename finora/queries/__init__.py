"""Deterministic dashboard, chart and report queries."""

from finora.queries.charts import (
    RECENT_TRANSACTION_COUNT,
    UNCATEGORIZED,
    account_chart,
    dashboard_overview,
    monthly_stats,
)

__all__ = [
    "RECENT_TRANSACTION_COUNT",
    "UNCATEGORIZED",
    "account_chart",
    "dashboard_overview",
    "monthly_stats",
]
