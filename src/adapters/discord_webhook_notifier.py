"""Discord webhook notification adapter.

Posts each message group to a Discord channel webhook. Mesh channels can be
routed to different webhooks; anything unmapped goes to the default one.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from typing import Mapping, Optional

from adapters.notification_formatting import format_notification
from core.errors import DispatchError
from core.models import GroupNotification

LOGGER = logging.getLogger(__name__)

# Discord rejects message content longer than this.
MAX_CONTENT_CHARS = 2000


class DiscordWebhookNotifier:
    """Notifier adapter that posts messages to Discord webhooks."""

    def __init__(
        self,
        default_webhook_url: str,
        channel_webhooks: Optional[Mapping[str, str]] = None,
        avatars: Optional[Mapping[str, str]] = None,
        username: Optional[str] = None,
        timeout: float = 10.0,
    ) -> None:
        self._default_webhook_url = default_webhook_url
        self._channel_webhooks = dict(channel_webhooks or {})
        self._avatars = dict(avatars or {})
        self._username = username
        self._timeout = timeout

    def webhook_for(self, channel_id: str) -> str:
        return self._channel_webhooks.get(channel_id, self._default_webhook_url)

    def build_payload(self, notification: GroupNotification) -> dict:
        content = format_notification(notification, mode="markdown")
        if len(content) > MAX_CONTENT_CHARS:
            content = content[: MAX_CONTENT_CHARS - 1] + "…"
        payload: dict = {"content": content, "allowed_mentions": {"parse": []}}
        if self._username:
            payload["username"] = f"{self._username} · {notification.sender.name}"
        avatar = self._avatars.get(notification.sender.node_hex) or self._avatars.get("default")
        if avatar:
            payload["avatar_url"] = avatar
        return payload

    def _post(self, url: str, data: bytes) -> None:
        request = urllib.request.Request(url, data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        # Discord's edge rejects urllib's default agent string.
        request.add_header("User-Agent", "meshwatch/0.1")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout):
                pass
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise DispatchError(f"Could not send discord message: {e.code} {body}") from e
        except (urllib.error.URLError, TimeoutError) as e:
            raise DispatchError(f"Discord webhook unreachable: {e}") from e

    async def send(self, notification: GroupNotification) -> None:
        """Post the formatted notification to the channel's webhook."""

        url = self.webhook_for(notification.channel_id)
        data = json.dumps(self.build_payload(notification)).encode("utf-8")
        await asyncio.to_thread(self._post, url, data)
        LOGGER.debug("Posted message %s to discord", notification.packet_id)
