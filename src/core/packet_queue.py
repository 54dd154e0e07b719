"""Time-windowed grouping of packet observations (core domain).

Each transmission is usually heard by several gateways within a few seconds.
The queue folds those copies into one open ``PacketGroup`` per group key and
releases a group only after its window, anchored at first sight, has passed.
"""

from __future__ import annotations

import heapq
import itertools
import threading
from typing import Dict, List, Tuple

from core.models import Envelope, GroupKey, PacketGroup


class MeshPacketQueue:
    """Open packet groups keyed by group key.

    A min-heap of ``(first_seen_at, seq, group_key)`` sits next to the group
    map so a drain only visits groups that are due, whatever order ``now``
    values arrive in. Each open group has exactly one heap entry.
    """

    def __init__(self) -> None:
        self._groups: Dict[GroupKey, PacketGroup] = {}
        self._by_first_seen: List[Tuple[float, int, GroupKey]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def offer(self, group_key: GroupKey, envelope: Envelope, now: float) -> None:
        """Start a group for ``group_key`` or append to the open one."""

        with self._lock:
            group = self._groups.get(group_key)
            if group is None:
                self._groups[group_key] = PacketGroup(
                    group_key=group_key,
                    first_seen_at=now,
                    envelopes=(envelope,),
                )
                heapq.heappush(self._by_first_seen, (now, next(self._seq), group_key))
                return
            # Later copies never move first_seen_at, so busy keys still drain.
            group.append(envelope)

    def pop_groups_older_than(self, threshold: float) -> List[PacketGroup]:
        """Remove and return every open group first seen before ``threshold``."""

        drained: List[PacketGroup] = []
        with self._lock:
            while self._by_first_seen and self._by_first_seen[0][0] < threshold:
                _, _, group_key = heapq.heappop(self._by_first_seen)
                group = self._groups.pop(group_key, None)
                if group is None:
                    continue
                group.seal()
                drained.append(group)
        return drained

    def clear(self) -> int:
        """Drop every open group and return how many were discarded."""

        with self._lock:
            count = len(self._groups)
            self._groups.clear()
            self._by_first_seen.clear()
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._groups)
