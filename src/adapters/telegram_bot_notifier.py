"""Telegram Bot API notification adapter.

Uses the Bot API for delivery so mesh messages can be routed to a chat.
"""

from __future__ import annotations

import asyncio
import json
import urllib.error
import urllib.request

from adapters.notification_formatting import format_notification
from core.errors import DispatchError
from core.models import GroupNotification


class TelegramBotNotifier:
    """Notifier adapter that sends messages via the Telegram Bot API."""

    def __init__(self, bot_token: str, chat_id: str, timeout: float = 10.0) -> None:
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._timeout = timeout

    def _endpoint(self) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"https://api.telegram.org/bot{self._bot_token}/sendMessage"

    def _post(self, data: bytes) -> None:
        request = urllib.request.Request(self._endpoint(), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout):
                pass
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise DispatchError(f"Bot API error {e.code}: {body}") from e
        except (urllib.error.URLError, TimeoutError) as e:
            raise DispatchError(f"Bot API unreachable: {e}") from e

    async def send(self, notification: GroupNotification) -> None:
        """Send the formatted notification via the Bot API."""

        payload = {
            "chat_id": self._chat_id,
            "text": format_notification(notification, mode="html"),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        # urllib blocks; keep it off the event loop.
        await asyncio.to_thread(self._post, json.dumps(payload).encode("utf-8"))
