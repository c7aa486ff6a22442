"""
Audit Models for Finora

Every significant action in the system is logged for audit purposes.
This provides:
1. Complete traceability of every balance change
2. Debugging information when things go wrong
3. A record of which alerts and reports were sent

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Identity
    USER_PROVISIONED = "user_provisioned"

    # Accounts
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"
    DEFAULT_ACCOUNT_CHANGED = "default_account_changed"

    # Ledger
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTIONS_DELETED = "transactions_deleted"
    BALANCE_DRIFT_DETECTED = "balance_drift_detected"

    # Budgets
    BUDGET_UPDATED = "budget_updated"
    BUDGET_ALERT_SENT = "budget_alert_sent"

    # AI-assisted input
    RECEIPT_SCANNED = "receipt_scanned"
    RECEIPT_REJECTED = "receipt_rejected"
    IMPORT_PARSED = "import_parsed"
    IMPORT_FAILED = "import_failed"

    # Reports
    MONTHLY_REPORT_SENT = "monthly_report_sent"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'transaction', 'budget')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one job run)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_row(self) -> tuple:
        """
        Convert to a row for the audit_log table.

        Columns in order:
        (event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_code, error_message,
         is_user_action)
        """
        return (
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type,
            str(self.entity_id) if self.entity_id else None,
            str(self.correlation_id) if self.correlation_id else None,
            self.description,
            json.dumps(self.details, default=str) if self.details else None,
            self.error_code,
            self.error_message,
            int(self.is_user_action),
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(txn_id, account_id, "-250.00")
        event = AuditEventBuilder.budget_alert_sent(budget_id, 85.0, correlation_id)
    """

    @staticmethod
    def user_provisioned(user_id: UUID, email: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_PROVISIONED,
            entity_type="user",
            entity_id=user_id,
            description=f"User provisioned: {email}",
            details={"email": email},
        )

    @staticmethod
    def account_created(
        account_id: UUID,
        name: str,
        opening_balance: str,
        is_default: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=account_id,
            description=f"Account created: {name}",
            details={
                "name": name,
                "opening_balance": opening_balance,
                "is_default": is_default,
            },
            is_user_action=True,
        )

    @staticmethod
    def account_updated(account_id: UUID, changes: dict) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_UPDATED,
            entity_type="account",
            entity_id=account_id,
            description="Account details updated",
            details={"changes": changes},
            is_user_action=True,
        )

    @staticmethod
    def account_deleted(
        account_id: UUID,
        promoted_account_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=account_id,
            description="Account deleted with its transactions and budget",
            details={
                "promoted_default": str(promoted_account_id) if promoted_account_id else None,
            },
            is_user_action=True,
        )

    @staticmethod
    def default_account_changed(account_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEFAULT_ACCOUNT_CHANGED,
            entity_type="account",
            entity_id=account_id,
            description="Default account changed",
            is_user_action=True,
        )

    @staticmethod
    def transaction_created(
        transaction_id: UUID,
        account_id: UUID,
        delta: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction created, balance adjusted by {delta}",
            details={
                "account_id": str(account_id),
                "delta": delta,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_updated(
        transaction_id: UUID,
        adjustments: dict[str, str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction updated across {len(adjustments)} account(s)",
            details={"adjustments": adjustments},
            is_user_action=True,
        )

    @staticmethod
    def transactions_deleted(
        transaction_ids: list[UUID],
        adjustments: dict[str, str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_DELETED,
            entity_type="transaction",
            description=f"Deleted {len(transaction_ids)} transaction(s)",
            details={
                "transaction_ids": [str(t) for t in transaction_ids],
                "adjustments": adjustments,
            },
            is_user_action=True,
        )

    @staticmethod
    def balance_drift_detected(
        account_id: UUID,
        stored: str,
        expected: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_DRIFT_DETECTED,
            severity=AuditSeverity.ERROR,
            entity_type="account",
            entity_id=account_id,
            description="Stored balance does not match transaction history",
            details={"stored": stored, "expected": expected},
        )

    @staticmethod
    def budget_updated(budget_id: UUID, account_id: UUID, amount: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_UPDATED,
            entity_type="budget",
            entity_id=budget_id,
            description=f"Budget set to {amount}",
            details={"account_id": str(account_id), "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def budget_alert_sent(
        budget_id: UUID,
        percentage_used: float,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_ALERT_SENT,
            severity=AuditSeverity.WARNING,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Budget alert sent at {percentage_used:.1f}% used",
            details={"percentage_used": round(percentage_used, 2)},
        )

    @staticmethod
    def receipt_scanned(merchant: str, amount: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_SCANNED,
            entity_type="receipt",
            description=f"Receipt scanned: {merchant} - {amount}",
            details={"merchant": merchant, "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def receipt_rejected(reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="receipt",
            description="Receipt could not be read",
            error_message=reason,
            is_user_action=True,
        )

    @staticmethod
    def import_parsed(
        row_count: int,
        skipped: int,
        used_ai_inference: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_PARSED,
            entity_type="import",
            description=f"Import parsed {row_count} rows ({skipped} skipped)",
            details={
                "row_count": row_count,
                "skipped": skipped,
                "used_ai_inference": used_ai_inference,
            },
            is_user_action=True,
        )

    @staticmethod
    def import_failed(error_code: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="import",
            description="Import failed",
            error_code=error_code,
            error_message=error_message,
            is_user_action=True,
        )

    @staticmethod
    def monthly_report_sent(
        user_id: UUID,
        month: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTHLY_REPORT_SENT,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Monthly report sent for {month}",
            details={"month": month},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
