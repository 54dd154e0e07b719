"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps messages
consistent regardless of delivery channel.
"""

from __future__ import annotations

import html
from datetime import datetime, timezone
from typing import Optional

from core.models import GatewayReport, GroupNotification

DIVIDER = "──────────────"


def format_hops(hops_away: Optional[int]) -> str:
    """Return a short description of how far away the sender was."""

    if hops_away is None:
        return "hops unknown"
    if hops_away == 0:
        return "direct"
    return f"{hops_away} hop" if hops_away == 1 else f"{hops_away} hops"


def format_gateway_line(report: GatewayReport) -> str:
    """Return one line describing a single gateway reception."""

    details = [format_hops(report.hops_away)]
    if report.rx_snr:
        details.append(f"SNR {report.rx_snr:.1f} dB")
    if report.rx_rssi:
        details.append(f"RSSI {report.rx_rssi} dBm")
    return f"{report.gateway} ({', '.join(details)})"


def _format_timestamp(rx_time: int) -> Optional[str]:
    if not rx_time:
        return None
    moment = datetime.fromtimestamp(rx_time, tz=timezone.utc).astimezone()
    return moment.strftime("%H:%M:%S %d-%m-%Y")


def _format_markdown(notification: GroupNotification) -> str:
    """Create the Markdown notification body used by Discord webhooks."""

    def escape_md(value: str) -> str:
        for ch in "\\*_`~|>":
            value = value.replace(ch, f"\\{ch}")
        return value

    header = f"**{escape_md(str(notification.sender))}** → {escape_md(str(notification.recipient))}"
    timestamp = _format_timestamp(notification.rx_time)
    lines = [f"[{timestamp}]"] if timestamp else []
    lines.extend(
        [
            header,
            f"**Channel:** {escape_md(notification.channel_id or 'unknown')}",
            DIVIDER,
            "",
            escape_md(notification.text),
            "",
            f"**Heard by {len(notification.gateways)} gateway(s):**",
        ]
    )
    lines.extend(f"• {escape_md(format_gateway_line(report))}" for report in notification.gateways)
    lines.append(DIVIDER)
    return "\n".join(lines)


def _format_html(notification: GroupNotification) -> str:
    """Create the HTML notification body used by the Bot API adapter."""

    timestamp = _format_timestamp(notification.rx_time)
    parts = [f"[{html.escape(timestamp)}]"] if timestamp else []
    parts.extend(
        [
            f"<b>{html.escape(str(notification.sender))}</b> → {html.escape(str(notification.recipient))}",
            f"<b>Channel:</b> {html.escape(notification.channel_id or 'unknown')}",
            DIVIDER,
            "",
            html.escape(notification.text),
            "",
            f"<b>Heard by {len(notification.gateways)} gateway(s):</b>",
        ]
    )
    parts.extend(f"• {html.escape(format_gateway_line(report))}" for report in notification.gateways)
    parts.append(DIVIDER)
    return "\n".join(parts)


def format_notification(notification: GroupNotification, mode: str) -> str:
    """Return the notification formatted for the requested mode."""

    if mode == "markdown":
        return _format_markdown(notification)
    if mode == "html":
        return _format_html(notification)
    raise ValueError(f"Unsupported notification format: {mode}")
