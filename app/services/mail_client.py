"""
Mail client — plain-text email over SMTP.

One SMTP session is opened per message so the client can be shared by
the dispatcher's worker threads without locking.  ``send`` raises on
failure; the notification dispatcher is responsible for turning errors
into per-recipient results.
"""

import logging
import smtplib
from collections.abc import Mapping
from contextlib import contextmanager
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Any

logger = logging.getLogger(__name__)


class MailNotConfiguredError(RuntimeError):
    """Raised by ``MailClient.send`` when no SMTP server is configured."""


class MailClient:
    """SMTP transport configured from the Flask app config."""

    def __init__(
        self,
        server: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        use_ssl: bool = False,
        default_sender: str = "",
        timeout: int = 10,
    ) -> None:
        self.server = server
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.use_ssl = use_ssl
        self.default_sender = default_sender or username
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "MailClient":
        """Build a client from ``MAIL_*`` settings."""
        client = cls(
            server=config.get("MAIL_SERVER", ""),
            port=int(config.get("MAIL_PORT", 587)),
            username=config.get("MAIL_USERNAME", ""),
            password=config.get("MAIL_PASSWORD", ""),
            use_tls=bool(config.get("MAIL_USE_TLS", True)),
            use_ssl=bool(config.get("MAIL_USE_SSL", False)),
            default_sender=config.get("MAIL_DEFAULT_SENDER", ""),
            timeout=int(config.get("MAIL_TIMEOUT", 10)),
        )
        if not client.enabled:
            logger.warning("MAIL_SERVER not configured, email sending disabled")
        return client

    @property
    def enabled(self) -> bool:
        return bool(self.server)

    @contextmanager
    def _connection(self):
        """Open an authenticated SMTP session and always close it."""
        if self.use_ssl:
            smtp = smtplib.SMTP_SSL(self.server, self.port, timeout=self.timeout)
        else:
            smtp = smtplib.SMTP(self.server, self.port, timeout=self.timeout)
        try:
            if self.use_tls and not self.use_ssl:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            yield smtp
        finally:
            try:
                smtp.quit()
            except smtplib.SMTPException as exc:
                logger.warning("Error closing SMTP connection: %s", exc)

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        display_name: str = "",
    ) -> str:
        """
        Send one plain-text message.

        Returns:
            The generated ``Message-ID`` (an opaque receipt).

        Raises:
            MailNotConfiguredError: If ``MAIL_SERVER`` is empty.
            smtplib.SMTPException / OSError: On delivery failure.
        """
        if not self.enabled:
            raise MailNotConfiguredError("MAIL_SERVER is not configured")

        message = EmailMessage()
        message["From"] = self.default_sender or "no-reply@localhost"
        message["To"] = formataddr((display_name, to)) if display_name else to
        message["Subject"] = subject
        message["Message-ID"] = make_msgid()
        message.set_content(body)

        with self._connection() as smtp:
            smtp.send_message(message)

        logger.debug("Email '%s' sent to %s", subject, to)
        return message["Message-ID"]
