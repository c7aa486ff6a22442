"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of balance changes
2. Debugging capability
3. A durable record of which alerts and reports went out

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events

CRITICAL: Call the audit logger AFTER a unit of work has committed,
never from inside one. The audit table shares the ledger connection.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finora.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from finora.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def get_logger(name: Optional[str] = None):
    """Structured logger for modules outside the audit trail."""
    return structlog.get_logger(name)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit_log table (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_user_provisioned(self, user_id: UUID, email: str) -> None:
        await self.log(AuditEventBuilder.user_provisioned(user_id, email))

    async def log_account_created(
        self,
        account_id: UUID,
        name: str,
        opening_balance: Decimal,
        is_default: bool,
    ) -> None:
        await self.log(AuditEventBuilder.account_created(
            account_id=account_id,
            name=name,
            opening_balance=str(opening_balance),
            is_default=is_default,
        ))

    async def log_account_updated(self, account_id: UUID, changes: dict) -> None:
        await self.log(AuditEventBuilder.account_updated(account_id, changes))

    async def log_account_deleted(
        self,
        account_id: UUID,
        promoted_account_id: Optional[UUID],
    ) -> None:
        await self.log(AuditEventBuilder.account_deleted(account_id, promoted_account_id))

    async def log_default_account_changed(self, account_id: UUID) -> None:
        await self.log(AuditEventBuilder.default_account_changed(account_id))

    async def log_transaction_created(
        self,
        transaction_id: UUID,
        account_id: UUID,
        delta: Decimal,
    ) -> None:
        """Log a new transaction and the balance increment it applied."""
        await self.log(AuditEventBuilder.transaction_created(
            transaction_id=transaction_id,
            account_id=account_id,
            delta=str(delta),
        ))

    async def log_transaction_updated(
        self,
        transaction_id: UUID,
        adjustments: dict[UUID, Decimal],
    ) -> None:
        """Log an edit with the per-account balance adjustments it applied."""
        await self.log(AuditEventBuilder.transaction_updated(
            transaction_id=transaction_id,
            adjustments={str(k): str(v) for k, v in adjustments.items()},
        ))

    async def log_transactions_deleted(
        self,
        transaction_ids: list[UUID],
        adjustments: dict[UUID, Decimal],
    ) -> None:
        await self.log(AuditEventBuilder.transactions_deleted(
            transaction_ids=transaction_ids,
            adjustments={str(k): str(v) for k, v in adjustments.items()},
        ))

    async def log_balance_drift(
        self,
        account_id: UUID,
        stored: Decimal,
        expected: Decimal,
    ) -> None:
        await self.log(AuditEventBuilder.balance_drift_detected(
            account_id=account_id,
            stored=str(stored),
            expected=str(expected),
        ))

    async def log_budget_updated(
        self,
        budget_id: UUID,
        account_id: UUID,
        amount: Decimal,
    ) -> None:
        await self.log(AuditEventBuilder.budget_updated(budget_id, account_id, str(amount)))

    async def log_budget_alert_sent(
        self,
        budget_id: UUID,
        percentage_used: float,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_alert_sent(
            budget_id=budget_id,
            percentage_used=percentage_used,
            correlation_id=correlation_id,
        ))

    async def log_receipt_scanned(self, merchant: str, amount: Decimal) -> None:
        await self.log(AuditEventBuilder.receipt_scanned(merchant, str(amount)))

    async def log_receipt_rejected(self, reason: str) -> None:
        await self.log(AuditEventBuilder.receipt_rejected(reason))

    async def log_import_parsed(
        self,
        row_count: int,
        skipped: int,
        used_ai_inference: bool,
    ) -> None:
        await self.log(AuditEventBuilder.import_parsed(row_count, skipped, used_ai_inference))

    async def log_import_failed(self, error_code: str, error_message: str) -> None:
        await self.log(AuditEventBuilder.import_failed(error_code, error_message))

    async def log_monthly_report_sent(
        self,
        user_id: UUID,
        month: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.monthly_report_sent(user_id, month, correlation_id))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a job run or a multi-step user action.
    Pass it through all subsequent operations.
    """
    return uuid4()
