"""
Job Registry and Runner

The jobs are plain async functions. This module records when each one
should run (cron expressions for whatever scheduler drives us) and runs
a job with retries.

Retry policy: the delay doubles on every retry, at most
`job_max_attempts` attempts (3 by default). Only a failure of the job
as a whole is retried; per-budget and per-user failures are isolated
inside the job and reported in its JobSummary.
"""

from datetime import datetime
from typing import Awaitable, Callable, NamedTuple, Optional

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from finora.agents import InsightsAgent
from finora.audit import AuditLogger, get_logger
from finora.config import AppSettings
from finora.jobs.budget_alerts import JOB_NAME as BUDGET_ALERTS
from finora.jobs.budget_alerts import check_budget_alerts
from finora.jobs.monthly_reports import JOB_NAME as MONTHLY_REPORTS
from finora.jobs.monthly_reports import generate_monthly_reports
from finora.models.reports import JobSummary
from finora.services.email import EmailSenderInterface
from finora.services.storage import LedgerStorageInterface

logger = get_logger(__name__)


class JobContext:
    """Collaborators every job may use."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        email_sender: EmailSenderInterface,
        app_settings: AppSettings,
        insights_agent: Optional[InsightsAgent] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.storage = storage
        self.email_sender = email_sender
        self.app_settings = app_settings
        self.insights_agent = insights_agent
        self.audit_logger = audit_logger


JobHandler = Callable[[JobContext, Optional[datetime]], Awaitable[JobSummary]]


class ScheduledJob(NamedTuple):
    name: str
    cron: str
    handler: JobHandler


async def _budget_alerts(ctx: JobContext, now: Optional[datetime]) -> JobSummary:
    return await check_budget_alerts(
        ctx.storage,
        ctx.email_sender,
        now=now,
        threshold=ctx.app_settings.budget_alert_threshold,
        audit_logger=ctx.audit_logger,
    )


async def _monthly_reports(ctx: JobContext, now: Optional[datetime]) -> JobSummary:
    return await generate_monthly_reports(
        ctx.storage,
        ctx.email_sender,
        insights_agent=ctx.insights_agent,
        now=now,
        default_currency=ctx.app_settings.default_currency,
        audit_logger=ctx.audit_logger,
    )


JOBS: dict[str, ScheduledJob] = {
    BUDGET_ALERTS: ScheduledJob(BUDGET_ALERTS, "0 */6 * * *", _budget_alerts),
    MONTHLY_REPORTS: ScheduledJob(MONTHLY_REPORTS, "0 0 1 * *", _monthly_reports),
}


async def run_job(
    name: str,
    ctx: JobContext,
    now: Optional[datetime] = None,
) -> JobSummary:
    """
    Run a registered job, retrying the whole run on failure.

    Raises:
        KeyError: Unknown job name
        Exception: Whatever the last attempt raised
    """
    job = JOBS[name]
    settings = ctx.app_settings

    retrying = AsyncRetrying(
        stop=stop_after_attempt(settings.job_max_attempts),
        wait=wait_exponential(multiplier=settings.job_retry_base_seconds, exp_base=2),
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                if number > 1:
                    logger.warning("job_retry", job=name, attempt=number)
                summary = await job.handler(ctx, now)
    except Exception as e:
        logger.error("job_failed", job=name, error=str(e))
        if ctx.audit_logger:
            await ctx.audit_logger.log_error("job_failed", str(e), details={"job": name})
        raise

    logger.info("job_complete", job=name, sent=summary.sent, failed=len(summary.failed))
    return summary
