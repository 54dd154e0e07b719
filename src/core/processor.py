"""Core packet ingestion pipeline.

This module is transport-agnostic. It receives raw ``(topic, payload)`` pairs
and only relies on the node directory port, so the MQTT adapter can be
swapped without changes here.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from typing import Callable, Iterable, Optional

from google.protobuf.message import DecodeError as ProtobufDecodeError
from meshtastic.protobuf import mesh_pb2, portnums_pb2

from core.codec import TransportCodec
from core.config import DedupConfig
from core.dedup import FifoKeyCache, compute_dedup_key, compute_group_key
from core.errors import DecodeError, UndecryptableError
from core.models import Envelope
from core.node_ids import format_user_id, node_id_to_hex
from core.packet_queue import MeshPacketQueue
from core.ports import NodeDirectoryPort

LOGGER = logging.getLogger(__name__)

# Topic segments that carry protobuf ServiceEnvelopes. Other segments such as
# "json", "stat" or "map" carry traffic this pipeline does not consume.
ENVELOPE_SEGMENTS = frozenset({"e", "c"})


def is_envelope_topic(topic: str) -> bool:
    """Return True when the topic carries protobuf ServiceEnvelopes."""

    return any(segment in ENVELOPE_SEGMENTS for segment in topic.split("/"))


def _hw_model_name(value: int) -> str:
    if not value:
        return ""
    try:
        return mesh_pb2.HardwareModel.Name(value)
    except ValueError:
        # Hardware released after our protobuf version.
        return str(value)


class PacketProcessor:
    """Orchestrates decoding, dedup, node directory updates and grouping."""

    def __init__(
        self,
        codec: TransportCodec,
        cache: FifoKeyCache,
        queue: MeshPacketQueue,
        directory: NodeDirectoryPort,
        dedup_config: DedupConfig,
        grouped_portnums: Iterable[int],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._codec = codec
        self._cache = cache
        self._queue = queue
        self._directory = directory
        self._dedup = dedup_config
        self._grouped_portnums = frozenset(grouped_portnums)
        self._clock = clock
        self.stats: Counter = Counter()

    def handle(self, topic: str, payload: bytes) -> bool:
        """Process one transport message. Returns True if it was grouped."""

        self.stats["received"] += 1
        if not is_envelope_topic(topic):
            self.stats["skipped_topic"] += 1
            return False

        envelope = self._decode(topic, payload)
        if envelope is None:
            return False

        # Insert doubles as the membership check so concurrent handlers cannot
        # both accept the same key.
        dedup_key = compute_dedup_key(envelope, self._dedup.mode)
        if dedup_key is not None and not self._cache.insert(dedup_key):
            self.stats["duplicate"] += 1
            LOGGER.debug("Duplicate packet %s via %s", envelope.packet.id, envelope.gateway_id)
            return False

        portnum = envelope.packet.portnum
        if portnum == portnums_pb2.PortNum.NODEINFO_APP:
            self.stats["node_info"] += 1
            self._update_directory(envelope)
            return False

        if portnum not in self._grouped_portnums:
            self.stats["ignored_port"] += 1
            return False

        self._queue.offer(compute_group_key(envelope), envelope, self._clock())
        self.stats["grouped"] += 1
        return True

    def _decode(self, topic: str, payload: bytes) -> Optional[Envelope]:
        try:
            return self._codec.decode(payload)
        except UndecryptableError as exc:
            # Shared brokers carry many channels we hold no key for.
            self.stats["undecryptable"] += 1
            LOGGER.debug("Dropping undecryptable packet on %s: %s", topic, exc)
        except DecodeError as exc:
            self.stats["decode_error"] += 1
            LOGGER.warning("Dropping malformed message on %s: %s", topic, exc)
        return None

    def _update_directory(self, envelope: Envelope) -> None:
        packet = envelope.packet
        user = mesh_pb2.User()
        try:
            user.ParseFromString(packet.decoded.payload)
        except ProtobufDecodeError:
            LOGGER.warning("Malformed node info from %s", format_user_id(packet.from_node))
            return
        if not user.long_name:
            return

        node_hex = node_id_to_hex(packet.from_node)
        try:
            self._directory.upsert_node(
                node_hex,
                long_name=user.long_name,
                short_name=user.short_name,
                hw_model=_hw_model_name(user.hw_model),
                hop_start=packet.hop_start,
            )
        except Exception:
            LOGGER.exception("Failed to update node directory for %s", node_hex)
            return
        LOGGER.info("Node info updated: %s - %s", node_hex, user.long_name)
