"""Periodic jobs: budget alerts and monthly reports."""

from finora.jobs.budget_alerts import (
    alerted_this_month,
    check_budget_alerts,
    percentage_used,
    should_send_alert,
)
from finora.jobs.monthly_reports import generate_monthly_reports
from finora.jobs.runner import JOBS, JobContext, ScheduledJob, run_job

__all__ = [
    "JOBS",
    "JobContext",
    "ScheduledJob",
    "alerted_this_month",
    "check_budget_alerts",
    "generate_monthly_reports",
    "percentage_used",
    "run_job",
    "should_send_alert",
]
