"""
Outbound Email

DESIGN DECISION: Sending mail is best effort from the caller's side.
`send` returns False instead of raising, so a job can decide whether
to stamp its idempotency marker. Nothing is retried here; the job
runner owns retries.
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Optional

from finora.audit import get_logger
from finora.config import EmailSettings, get_settings
from finora.services.email.rendering import EmailContent

logger = get_logger(__name__)


class EmailSenderInterface(ABC):
    """Anything that can deliver a rendered email."""

    @abstractmethod
    async def send(self, to: str, content: EmailContent) -> bool:
        """
        Deliver one message.

        Returns:
            True if the message was handed to the mail server
        """
        pass


class SmtpEmailSender(EmailSenderInterface):
    """Sends multipart (text + HTML) mail through an SMTP server."""

    def __init__(self, settings: Optional[EmailSettings] = None):
        self._settings = settings

    @property
    def settings(self) -> EmailSettings:
        if self._settings is None:
            self._settings = get_settings().email
        return self._settings

    def _build_message(self, to: str, content: EmailContent) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.settings.sender
        message["To"] = to
        message["Subject"] = content.subject
        message.set_content(content.text)
        message.add_alternative(content.html, subtype="html")
        return message

    def _deliver(self, message: EmailMessage) -> None:
        settings = self.settings
        with smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout_seconds) as smtp:
            if settings.use_tls:
                smtp.starttls()
            if settings.username:
                smtp.login(settings.username, settings.password or "")
            smtp.send_message(message)

    async def send(self, to: str, content: EmailContent) -> bool:
        message = self._build_message(to, content)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("email_send_failed", to=to, subject=content.subject, error=str(e))
            return False

        logger.info("email_sent", to=to, subject=content.subject)
        return True
