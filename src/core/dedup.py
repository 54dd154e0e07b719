"""Deduplication helpers (core domain)."""

from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Hashable, Optional, Set, Tuple

from core.models import Envelope, GroupKey

DEDUP_MODES = ("per_gateway", "per_packet", "off")


def compute_dedup_key(envelope: Envelope, mode: str) -> Optional[Tuple]:
    """Return the dedup key for an envelope based on dedup mode.

    ``per_gateway`` drops repeats of the same transmission from the same
    gateway but lets every other gateway's copy through to be grouped.
    ``per_packet`` keeps only the first copy of a transmission overall.
    """

    if mode == "off":
        return None

    packet = envelope.packet
    if mode == "per_gateway":
        return (packet.from_node, packet.id, envelope.gateway_id)
    if mode == "per_packet":
        return (packet.from_node, packet.id)
    raise ValueError(f"Unsupported dedup mode: {mode}")


def compute_group_key(envelope: Envelope) -> GroupKey:
    """Return the key under which gateway observations are merged."""

    return (envelope.packet.from_node, envelope.packet.id)


class FifoKeyCache:
    """Bounded set that forgets the oldest-inserted key first.

    A deque records insertion order and a set answers membership; the two are
    only ever changed together under the lock. Re-inserting a key does not
    refresh its position.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"Cache capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._order: Deque[Hashable] = deque()
        self._members: Set[Hashable] = set()
        self._lock = threading.Lock()
        self._evictions = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def evictions(self) -> int:
        return self._evictions

    def contains(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._members

    def insert(self, key: Hashable) -> bool:
        """Add ``key`` if absent. Returns ``False`` when it was already present."""

        with self._lock:
            if key in self._members:
                return False
            if len(self._order) >= self._capacity:
                self._members.discard(self._order.popleft())
                self._evictions += 1
            self._order.append(key)
            self._members.add(key)
            return True

    def clear(self) -> None:
        with self._lock:
            self._order.clear()
            self._members.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.contains(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._order)
