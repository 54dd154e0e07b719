"""Dispatch of drained packet groups.

Turns a completed ``PacketGroup`` into a ``GroupNotification``: applies the
ignore list, suppression rules and stale-message check, resolves node names
through the directory port and hands the result to the notifier.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Optional

from meshtastic.protobuf import portnums_pb2

from core.config import FilterConfig
from core.models import GatewayReport, GroupNotification, NodeLabel, PacketGroup
from core.node_ids import is_broadcast, node_id_to_hex, normalize_node_hex
from core.ports import NodeDirectoryPort, NotifierPort
from core.rules_engine import Rule, match_rule

LOGGER = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown"
BROADCAST_NAME = "Everyone"


class GroupDispatcher:
    """Filters, resolves and delivers one drained group at a time."""

    def __init__(
        self,
        directory: NodeDirectoryPort,
        notifier: NotifierPort,
        rules: Iterable[Rule],
        filter_config: FilterConfig,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._directory = directory
        self._notifier = notifier
        self._rules = list(rules)
        self._filters = filter_config
        self._wall_clock = wall_clock

    def _label(self, node_hex: str) -> NodeLabel:
        return NodeLabel(node_hex=node_hex, name=self._directory.get_node_name(node_hex) or UNKNOWN_NAME)

    def _recipient_label(self, node_id: int) -> NodeLabel:
        if is_broadcast(node_id):
            return NodeLabel(node_hex=node_id_to_hex(node_id), name=BROADCAST_NAME)
        return self._label(node_id_to_hex(node_id))

    def _is_stale(self, rx_time: int) -> bool:
        if not rx_time or not self._filters.stale_after_seconds:
            return False
        return rx_time < self._wall_clock() - self._filters.stale_after_seconds

    def build_notification(self, group: PacketGroup) -> Optional[GroupNotification]:
        """Return the notification for ``group``, or None if it is filtered out."""

        packet = group.representative_packet
        if packet.portnum != portnums_pb2.PortNum.TEXT_MESSAGE_APP:
            return None
        text = packet.decoded.payload.decode("utf-8", errors="replace")
        sender = self._label(node_id_to_hex(packet.from_node))
        recipient = self._recipient_label(packet.to_node)

        if sender.node_hex in self._filters.ignore_nodes:
            LOGGER.info(
                "MessageId: %s Ignoring message from %s to %s : %s",
                group.packet_id,
                sender,
                recipient,
                text,
            )
            return None

        match = match_rule(text, sender.node_hex, self._rules)
        if match:
            LOGGER.info(
                "MessageId: %s Suppressed by %s (%s) from %s",
                group.packet_id,
                match.rule_name,
                match.reason,
                sender,
            )
            return None

        if self._is_stale(packet.rx_time):
            LOGGER.info(
                "MessageId: %s Ignoring old message from %s to %s : %s",
                group.packet_id,
                sender,
                recipient,
                text,
            )
            return None

        gateways = []
        for envelope in group.envelopes:
            gateway_hex = normalize_node_hex(envelope.gateway_id) or envelope.gateway_id
            gateways.append(
                GatewayReport(
                    gateway=self._label(gateway_hex),
                    hops_away=envelope.packet.hops_away,
                    rx_snr=envelope.packet.rx_snr,
                    rx_rssi=envelope.packet.rx_rssi,
                )
            )

        return GroupNotification(
            packet_id=group.packet_id,
            channel_id=group.envelopes[0].channel_id,
            sender=sender,
            recipient=recipient,
            text=text,
            rx_time=packet.rx_time,
            gateways=tuple(gateways),
        )

    async def dispatch(self, group: PacketGroup) -> bool:
        """Deliver one drained group. Returns True if a notification was sent."""

        notification = self.build_notification(group)
        if notification is None:
            return False
        await self._notifier.send(notification)
        LOGGER.info(
            "MessageId: %s Sent message from %s via %s gateway(s)",
            notification.packet_id,
            notification.sender,
            len(notification.gateways),
        )
        return True
