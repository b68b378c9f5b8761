from __future__ import annotations

import asyncio

from budgetwatch.adapters.telegram_bot_sender import TelegramBotSender


def test_send_posts_html_chat_message(monkeypatch) -> None:
    posted: list[tuple[str, str]] = []
    sender = TelegramBotSender(bot_token="123:abc")
    monkeypatch.setattr(sender, "_post", lambda chat_id, message: posted.append((chat_id, message)))

    asyncio.run(sender.send("555", "Budget alert <Travel>", "<p>ignored</p>", "Spent & counting"))

    assert posted == [("555", "<b>Budget alert &lt;Travel&gt;</b>\n\nSpent &amp; counting")]


def test_fixed_chat_overrides_recipient(monkeypatch) -> None:
    posted: list[str] = []
    sender = TelegramBotSender(bot_token="123:abc", chat_id="-100200")
    monkeypatch.setattr(sender, "_post", lambda chat_id, message: posted.append(chat_id))

    asyncio.run(sender.send("ana@example.com", "s", "h", "t"))

    assert posted == ["-100200"]
    assert sender._endpoint() == "https://api.telegram.org/bot123:abc/sendMessage"
