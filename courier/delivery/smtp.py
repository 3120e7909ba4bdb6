"""SMTP delivery adapter.

Delivers HTML notification e-mails through an SMTP relay.  ``smtplib``
is blocking, so each send runs in a worker thread via
``asyncio.to_thread``; the queue's own timeout still bounds the call.

Safety: recipient addresses are never logged — log records pass through
``RecipientSafeFilter`` and messages here only reference the outcome.
"""
from __future__ import annotations

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

from courier.core.errors import ConfigurationError
from courier.delivery.base import DeliveryResult

logger = logging.getLogger(__name__)

_PERMANENT_EXCEPTIONS = (
    smtplib.SMTPRecipientsRefused,
    smtplib.SMTPSenderRefused,
    smtplib.SMTPNotSupportedError,
)


def _is_permanent(exc: Exception) -> bool:
    if isinstance(exc, _PERMANENT_EXCEPTIONS):
        return True
    if isinstance(exc, smtplib.SMTPResponseException):
        return 500 <= exc.smtp_code < 600
    return False


class SmtpAdapter:
    """Send notification e-mails via SMTP."""

    def __init__(
        self,
        smtp_host: str | None,
        smtp_port: int = 587,
        *,
        mail_from: str = "noreply@notifications.local",
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.mail_from = mail_from
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def check(self) -> None:
        if not self.smtp_host:
            raise ConfigurationError("SMTP_HOST is not configured")
        if bool(self.username) != bool(self.password):
            raise ConfigurationError("SMTP_USERNAME and SMTP_PASSWORD must be set together")

    def _build_message(
        self,
        recipient: str,
        subject: str,
        body_html: str,
        body_text: str | None,
    ) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.mail_from
        msg["To"] = recipient
        msg["Message-ID"] = make_msgid()
        if body_text:
            msg.attach(MIMEText(body_text, "plain", "utf-8"))
        msg.attach(MIMEText(body_html, "html", "utf-8"))
        return msg

    def _send_blocking(self, msg: MIMEMultipart, recipient: str) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password or "")
            server.sendmail(self.mail_from, [recipient], msg.as_string())

    async def send(
        self,
        recipient: str,
        subject: str,
        body_html: str,
        body_text: str | None = None,
    ) -> DeliveryResult:
        msg = self._build_message(recipient, subject, body_html, body_text)
        try:
            await asyncio.to_thread(self._send_blocking, msg, recipient)
        except (smtplib.SMTPException, OSError) as exc:
            permanent = _is_permanent(exc)
            logger.warning(
                "SMTP delivery failed (%s): %s",
                "permanent" if permanent else "transient",
                type(exc).__name__,
            )
            return DeliveryResult.failed(str(exc) or type(exc).__name__, permanent=permanent)

        return DeliveryResult.ok(msg["Message-ID"])
