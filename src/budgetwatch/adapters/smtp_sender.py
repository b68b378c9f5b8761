"""SMTP delivery adapter.

Sends multipart (text + HTML) e-mail through ``smtplib``. The blocking SMTP
conversation runs in a worker thread so the dispatcher's other workers keep
going while one is waiting on the server.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SMTPConfig:
    """Connection settings for the SMTP adapter."""

    host: str = "localhost"
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    from_address: str = "alerts@localhost"
    from_name: str = "Budget Alerts"
    timeout: float = 30.0
    # Log instead of sending (local development and CI).
    disabled: bool = False


def build_email(config: SMTPConfig, recipient_address: str, subject: str, html: str, text: str) -> EmailMessage:
    message = EmailMessage()
    message["From"] = formataddr((config.from_name, config.from_address))
    message["To"] = recipient_address
    message["Subject"] = subject
    message.set_content(text)
    message.add_alternative(html, subtype="html")
    return message


class SMTPSender:
    """Sender adapter that delivers alerts by e-mail."""

    def __init__(self, config: SMTPConfig) -> None:
        self._config = config

    def _deliver(self, message: EmailMessage) -> None:
        config = self._config
        with smtplib.SMTP(config.host, config.port, timeout=config.timeout) as client:
            if config.use_tls:
                client.starttls()
            if config.username and config.password:
                client.login(config.username, config.password)
            client.send_message(message)

    async def send(self, recipient_address: str, subject: str, html: str, text: str) -> None:
        """Send one e-mail; SMTP errors propagate to the dispatcher."""

        message = build_email(self._config, recipient_address, subject, html, text)
        if self._config.disabled:
            LOGGER.info("[EMAIL DISABLED] %s -> %s", subject, recipient_address)
            return
        await asyncio.to_thread(self._deliver, message)
        LOGGER.info("E-mail sent to %s with subject %r", recipient_address, subject)
