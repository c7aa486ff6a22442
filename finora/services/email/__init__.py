"""Email services package."""

from finora.services.email.sender import EmailSenderInterface, SmtpEmailSender
from finora.services.email.rendering import (
    EmailContent,
    render_budget_alert,
    render_monthly_report,
)

__all__ = [
    "EmailContent",
    "EmailSenderInterface",
    "SmtpEmailSender",
    "render_budget_alert",
    "render_monthly_report",
]
