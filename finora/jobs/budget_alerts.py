"""
Budget Alert Job

Runs every 6 hours. For each budget it sums the current calendar
month's expenses on the budget's account and, once they reach the
alert threshold, emails the account owner.

CRITICAL: At most ONE alert per budget per calendar month. The guard
is `last_alert_sent`: an alert goes out only when it is unset or falls
in a strictly earlier month than now. The stamp is written only after
the email was accepted, so a failed send is retried on the next run.

Each budget is its own step. One failing budget is logged and the
rest still run.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from finora.audit import AuditLogger, get_logger
from finora.ledger.recurrence import month_bounds
from finora.models.ledger import Budget, TransactionType, utc_now
from finora.models.reports import JobSummary
from finora.services.email import EmailSenderInterface, render_budget_alert
from finora.services.storage import LedgerStorageInterface

logger = get_logger(__name__)

JOB_NAME = "check-budget-alerts"
DEFAULT_THRESHOLD = 80.0


def percentage_used(spent: Decimal, limit: Decimal) -> float:
    """Share of the limit spent, in percent. A limit of zero or less counts as 0%."""
    if limit <= 0:
        return 0.0
    return float(spent / limit * 100)


def alerted_this_month(last_alert_sent: Optional[datetime], now: datetime) -> bool:
    if last_alert_sent is None:
        return False
    return (last_alert_sent.year, last_alert_sent.month) >= (now.year, now.month)


def should_send_alert(
    used: float,
    threshold: float,
    last_alert_sent: Optional[datetime],
    now: datetime,
) -> bool:
    return used >= threshold and not alerted_this_month(last_alert_sent, now)


async def _check_budget(
    storage: LedgerStorageInterface,
    email_sender: EmailSenderInterface,
    budget: Budget,
    now: datetime,
    threshold: float,
    audit_logger: Optional[AuditLogger],
) -> bool:
    """Check one budget. Returns True if an alert was sent."""
    account = await storage.get_account(budget.account_id)
    if account is None:
        logger.warning("budget_account_missing", budget_id=str(budget.id))
        return False

    start, end = month_bounds(now.year, now.month)
    spent = await storage.sum_transactions(account.id, TransactionType.EXPENSE, start, end)
    used = percentage_used(spent, budget.amount)

    logger.info(
        "budget_checked",
        budget_id=str(budget.id),
        budget_amount=str(budget.amount),
        spent=str(spent),
        percentage_used=round(used, 2),
    )

    sent = False
    if should_send_alert(used, threshold, budget.last_alert_sent, now):
        user = await storage.get_user_by_id(account.user_id)
        if user is None:
            logger.warning("budget_owner_missing", budget_id=str(budget.id))
        else:
            content = render_budget_alert(
                user_name=user.name,
                account_name=account.name,
                percentage_used=used,
                budget_amount=budget.amount,
                total_expenses=spent,
                currency=account.currency,
            )
            sent = await email_sender.send(user.email, content)

    async with storage.unit_of_work() as uow:
        await uow.record_budget_check(budget.id, spent, alert_sent_at=now if sent else None)

    if sent and audit_logger:
        await audit_logger.log_budget_alert_sent(budget.id, used)
    return sent


async def check_budget_alerts(
    storage: LedgerStorageInterface,
    email_sender: EmailSenderInterface,
    now: Optional[datetime] = None,
    threshold: float = DEFAULT_THRESHOLD,
    audit_logger: Optional[AuditLogger] = None,
) -> JobSummary:
    """
    Check every budget once.

    Safe to re-run at any time: re-running within the same month after
    an alert went out sends nothing more.
    """
    now = now or utc_now()
    summary = JobSummary(job=JOB_NAME)

    for budget in await storage.list_budgets():
        summary.processed += 1
        try:
            if await _check_budget(storage, email_sender, budget, now, threshold, audit_logger):
                summary.sent += 1
        except Exception as e:
            logger.error("budget_check_failed", budget_id=str(budget.id), error=str(e))
            summary.failed.append(str(budget.id))
            if audit_logger:
                await audit_logger.log_error(
                    "budget_check_failed", str(e), details={"budget_id": str(budget.id)}
                )

    logger.info(
        "budget_alert_job_complete",
        processed=summary.processed,
        sent=summary.sent,
        failed=len(summary.failed),
    )
    return summary
