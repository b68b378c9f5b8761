"""Telegram Bot API delivery adapter.

Uses the Bot API for delivery so alerts can be routed to a chat. The
recipient address is the Telegram chat id unless a fixed chat is configured.
"""

from __future__ import annotations

import asyncio
import json
import urllib.error
import urllib.request
from typing import Optional

from budgetwatch.adapters.notification_formatting import format_chat_message


class TelegramBotSender:
    """Sender adapter that posts alerts via the Telegram Bot API."""

    def __init__(self, bot_token: str, chat_id: Optional[str] = None, timeout: float = 10.0) -> None:
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._timeout = timeout

    def _endpoint(self) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"https://api.telegram.org/bot{self._bot_token}/sendMessage"

    def _post(self, chat_id: str, message: str) -> None:
        payload = {
            "chat_id": chat_id,
            "text": message,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(self._endpoint(), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout):
                pass
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise RuntimeError(f"Bot API error {e.code}: {body}") from e

    async def send(self, recipient_address: str, subject: str, html: str, text: str) -> None:
        """Send the alert as an HTML chat message.

        Telegram only accepts a small HTML subset, so the plain-text body is
        used instead of the e-mail HTML.
        """

        message = format_chat_message(subject, text, mode="html")
        # urllib blocks; run it off the event loop so other workers keep going.
        await asyncio.to_thread(self._post, self._chat_id or recipient_address, message)
