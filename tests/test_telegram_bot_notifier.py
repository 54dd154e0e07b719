from __future__ import annotations

import asyncio
import json

from adapters.telegram_bot_notifier import TelegramBotNotifier
from core.models import GroupNotification, NodeLabel


def test_send_posts_html_message(monkeypatch) -> None:
    notifier = TelegramBotNotifier(bot_token="123:abc", chat_id="-10042")
    posted = []
    monkeypatch.setattr(notifier, "_post", lambda data: posted.append(json.loads(data)))
    notification = GroupNotification(
        packet_id=77,
        channel_id="LongFast",
        sender=NodeLabel(node_hex="0000abcd", name="Alice"),
        recipient=NodeLabel(node_hex="ffffffff", name="Everyone"),
        text="fish & chips",
        rx_time=0,
        gateways=(),
    )

    asyncio.run(notifier.send(notification))

    payload = posted[0]
    assert payload["chat_id"] == "-10042"
    assert payload["parse_mode"] == "HTML"
    assert "fish &amp; chips" in payload["text"]
