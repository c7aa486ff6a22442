"""
Data Models Package

This package contains all Pydantic models used in Finora.
All data flowing through the system must conform to these schemas.
"""

from finora.models.ledger import (
    Account,
    AccountDetail,
    AccountInput,
    AccountType,
    AccountUpdate,
    ActionResult,
    BalanceCheck,
    Budget,
    BudgetStatus,
    RecurringInterval,
    Transaction,
    TransactionInput,
    TransactionStatus,
    TransactionType,
    User,
)
from finora.models.extraction import (
    ColumnMapping,
    ImportedTransaction,
    ImportPreview,
    ReceiptData,
)
from finora.models.reports import (
    ChartPoint,
    ChartRange,
    ChartSeries,
    DashboardOverview,
    JobSummary,
    MonthlyStats,
)
from finora.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountDetail",
    "AccountInput",
    "AccountType",
    "AccountUpdate",
    "ActionResult",
    "BalanceCheck",
    "Budget",
    "BudgetStatus",
    "RecurringInterval",
    "Transaction",
    "TransactionInput",
    "TransactionStatus",
    "TransactionType",
    "User",
    # Extraction models
    "ColumnMapping",
    "ImportedTransaction",
    "ImportPreview",
    "ReceiptData",
    # Report models
    "ChartPoint",
    "ChartRange",
    "ChartSeries",
    "DashboardOverview",
    "JobSummary",
    "MonthlyStats",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
