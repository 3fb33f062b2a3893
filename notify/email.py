"""
notify/email.py -- Outbound transactional email.

The reset coordinator only needs "deliver this subject and body to this
address, or tell me it failed". Anything that implements Notifier.send()
and raises NotifierError on failure can stand in -- the test suite uses a
recording stub.

Two implementations:
  SmtpNotifier -- smtplib with optional STARTTLS and login.
  LogNotifier  -- dev mode (no SMTP_HOST): logs recipient and subject only.
                  The body carries a live reset link and is never logged.

Layer rule: no imports from api/ or auth/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("authgate.notify")


class NotifierError(Exception):
    """The message could not be handed to the mail transport."""


class Notifier(Protocol):
    def send(self, to_email: str, subject: str, body: str) -> None: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpNotifier:
    """Deliver plain-text mail through an SMTP relay."""

    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        from_email: str = "no-reply@localhost",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email
        self.timeout = timeout

    def send(self, to_email: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email
        msg.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls(context=ssl.create_default_context())
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP delivery to %s failed: %s", redact_email(to_email), type(exc).__name__)
            raise NotifierError(str(exc)) from exc
        logger.info("Email sent to %s", redact_email(to_email))


class LogNotifier:
    """Pretend delivery for local development."""

    def send(self, to_email: str, subject: str, body: str) -> None:
        logger.info("Email (dev mode, not sent) to=%s subject=%r", redact_email(to_email), subject)


def build_notifier(settings: Settings) -> Notifier:
    """Return an SmtpNotifier when SMTP_HOST is configured, else a LogNotifier."""
    if not settings.smtp_host:
        logger.warning("SMTP_HOST not set -- outbound email is logged, not sent")
        return LogNotifier()
    return SmtpNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_user,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        from_email=settings.mail_from,
        timeout=settings.smtp_timeout_seconds,
    )
