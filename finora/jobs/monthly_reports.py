"""
Monthly Report Job

Runs on the 1st of each month and emails every user a summary of the
previous calendar month: income, expenses, expenses by category and
three AI insights.

DESIGN DECISION: The figures come from `monthly_stats` over stored
transactions. The AI only phrases advice about those figures, and a
fixed list of insights is used whenever it fails.

Figures are grouped by account currency. The report and its insights
lead with the default account's currency; every other currency gets
its own section.
"""

from collections import defaultdict
from datetime import date, datetime
from typing import Optional, Sequence

from finora.agents import FALLBACK_INSIGHTS, InsightsAgent
from finora.audit import AuditLogger, get_logger
from finora.ledger.recurrence import month_bounds, previous_month
from finora.models.ledger import Account, Transaction, User, utc_now
from finora.models.reports import JobSummary
from finora.queries import monthly_stats
from finora.services.email import EmailSenderInterface, render_monthly_report
from finora.services.storage import LedgerStorageInterface

logger = get_logger(__name__)

JOB_NAME = "generate-monthly-reports"


def _report_currency(accounts: Sequence[Account], fallback: str) -> str:
    for account in accounts:
        if account.is_default:
            return account.currency
    return accounts[0].currency if accounts else fallback


async def _send_report(
    storage: LedgerStorageInterface,
    email_sender: EmailSenderInterface,
    insights_agent: Optional[InsightsAgent],
    user: User,
    year: int,
    month: int,
    default_currency: str,
    audit_logger: Optional[AuditLogger],
) -> bool:
    start, end = month_bounds(year, month)
    accounts = await storage.list_accounts(user.id)
    currency = _report_currency(accounts, default_currency)
    currency_of = {account.id: account.currency for account in accounts}

    # amounts in different currencies are never summed together
    by_currency: dict[str, list[Transaction]] = defaultdict(list)
    for transaction in await storage.list_transactions(user_id=user.id, date_from=start, date_to=end):
        by_currency[currency_of.get(transaction.account_id, currency)].append(transaction)

    stats = monthly_stats(by_currency.pop(currency, []), year, month)
    others = {code: monthly_stats(rows, year, month) for code, rows in by_currency.items()}
    month_name = date(year, month, 1).strftime("%B")

    if insights_agent is not None:
        insights = await insights_agent.generate_insights(stats, month_name, currency)
    else:
        insights = list(FALLBACK_INSIGHTS)

    content = render_monthly_report(user.name, month_name, stats, insights, currency, others)
    sent = await email_sender.send(user.email, content)
    if sent and audit_logger:
        await audit_logger.log_monthly_report_sent(user.id, f"{year}-{month:02d}")
    return sent


async def generate_monthly_reports(
    storage: LedgerStorageInterface,
    email_sender: EmailSenderInterface,
    insights_agent: Optional[InsightsAgent] = None,
    now: Optional[datetime] = None,
    default_currency: str = "INR",
    audit_logger: Optional[AuditLogger] = None,
) -> JobSummary:
    """Email every user their report for the month before `now`."""
    now = now or utc_now()
    year, month = previous_month(now.date())
    summary = JobSummary(job=JOB_NAME)

    for user in await storage.list_users():
        summary.processed += 1
        try:
            sent = await _send_report(
                storage,
                email_sender,
                insights_agent,
                user,
                year,
                month,
                default_currency,
                audit_logger,
            )
        except Exception as e:
            logger.error("monthly_report_failed", user_id=str(user.id), error=str(e))
            summary.failed.append(str(user.id))
            if audit_logger:
                await audit_logger.log_error(
                    "monthly_report_failed", str(e), details={"user_id": str(user.id)}
                )
            continue

        if sent:
            summary.sent += 1
        else:
            summary.failed.append(str(user.id))

    logger.info(
        "monthly_report_job_complete",
        month=f"{year}-{month:02d}",
        processed=summary.processed,
        sent=summary.sent,
        failed=len(summary.failed),
    )
    return summary
