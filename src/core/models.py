"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to the protobuf types used on the wire.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

BROADCAST_NODE = 0xFFFFFFFF

GroupKey = Tuple[int, int]


@dataclass(frozen=True)
class DecodedData:
    """Inner payload of a packet after decoding (and decryption, if needed)."""

    portnum: int
    payload: bytes


@dataclass(frozen=True)
class Packet:
    """A logical mesh transmission as seen by one gateway."""

    id: int
    from_node: int
    to_node: int
    channel: int = 0
    hop_start: int = 0
    hop_limit: int = 0
    rx_time: int = 0
    rx_snr: float = 0.0
    rx_rssi: int = 0
    decoded: Optional[DecodedData] = None
    encrypted: bytes = b""

    @property
    def is_encrypted(self) -> bool:
        return self.decoded is None

    @property
    def portnum(self) -> Optional[int]:
        return self.decoded.portnum if self.decoded else None

    @property
    def hops_away(self) -> Optional[int]:
        # Firmware older than 2.3 does not report hop_start.
        if not self.hop_start:
            return None
        return max(self.hop_start - self.hop_limit, 0)


@dataclass(frozen=True)
class Envelope:
    """Wire-level wrapper published by a gateway.

    ``key_index`` is the position in the keyring of the key that decrypted the
    packet, or ``None`` when it arrived unencrypted.
    """

    channel_id: str
    gateway_id: str
    packet: Packet
    key_index: Optional[int] = None


@dataclass
class PacketGroup:
    """All observations of one transmission collected within a grouping window.

    Open groups are owned by the grouping queue. Once drained the group is
    sealed and its envelopes can no longer change.
    """

    group_key: GroupKey
    first_seen_at: float
    envelopes: Tuple[Envelope, ...] = ()
    _sealed: bool = field(default=False, repr=False, compare=False)

    def __setattr__(self, name: str, value) -> None:
        if getattr(self, "_sealed", False):
            raise RuntimeError(f"Packet group {self.group_key} is already drained")
        super().__setattr__(name, value)

    def append(self, envelope: Envelope) -> None:
        self.envelopes = (*self.envelopes, envelope)

    def seal(self) -> None:
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def representative_packet(self) -> Packet:
        return self.envelopes[0].packet

    @property
    def packet_id(self) -> int:
        return self.group_key[1]


@dataclass(frozen=True)
class NodeLabel:
    """Display form of a node: 8-digit hex id plus resolved name."""

    node_hex: str
    name: str

    def __str__(self) -> str:
        return f"{self.node_hex} - {self.name}"


@dataclass(frozen=True)
class GatewayReport:
    """Per-gateway reception metadata for one notification."""

    gateway: NodeLabel
    hops_away: Optional[int]
    rx_snr: float
    rx_rssi: int


@dataclass(frozen=True)
class GroupNotification:
    """Resolved, filter-approved message group ready for formatting."""

    packet_id: int
    channel_id: str
    sender: NodeLabel
    recipient: NodeLabel
    text: str
    rx_time: int
    gateways: Tuple[GatewayReport, ...]
