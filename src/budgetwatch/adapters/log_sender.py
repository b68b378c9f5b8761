"""Logging-only delivery adapter used for dry runs."""

from __future__ import annotations

import logging

LOGGER = logging.getLogger(__name__)


class LogSender:
    """Sender adapter that records alerts in the log instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, recipient_address: str, subject: str, html: str, text: str) -> None:
        self.sent.append((recipient_address, subject))
        LOGGER.info("[DRY RUN] %s -> %s\n%s", subject, recipient_address, text)
