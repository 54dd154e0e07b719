from __future__ import annotations

import threading
from collections import Counter

import pytest

from core.dedup import FifoKeyCache, compute_dedup_key, compute_group_key
from core.models import DecodedData, Envelope, Packet


def _envelope(gateway_id: str, packet_id: int = 7, from_node: int = 0xABCD) -> Envelope:
    return Envelope(
        channel_id="LongFast",
        gateway_id=gateway_id,
        packet=Packet(
            id=packet_id,
            from_node=from_node,
            to_node=0xFFFFFFFF,
            decoded=DecodedData(portnum=1, payload=b"hi"),
        ),
    )


def test_oldest_key_is_evicted_at_capacity() -> None:
    cache = FifoKeyCache(capacity=2)
    cache.insert("A")
    cache.insert("B")
    cache.insert("C")

    assert not cache.contains("A")
    assert cache.contains("B")
    assert cache.contains("C")
    assert len(cache) == 2
    assert cache.evictions == 1


def test_reinsert_does_not_refresh_age() -> None:
    cache = FifoKeyCache(capacity=2)
    assert cache.insert("A")
    assert cache.insert("B")
    # Recency of use is irrelevant; A stays the oldest entry.
    assert not cache.insert("A")
    cache.insert("C")

    assert "A" not in cache
    assert "B" in cache
    assert "C" in cache


def test_contains_has_no_side_effect() -> None:
    cache = FifoKeyCache(capacity=1)
    assert not cache.contains("A")
    assert len(cache) == 0


def test_clear_resets_membership() -> None:
    cache = FifoKeyCache(capacity=3)
    cache.insert("A")
    cache.clear()

    assert not cache.contains("A")
    assert cache.insert("A")


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        FifoKeyCache(capacity=0)


def test_dedup_key_per_gateway_separates_gateways() -> None:
    first = compute_dedup_key(_envelope("!00000001"), "per_gateway")
    second = compute_dedup_key(_envelope("!00000002"), "per_gateway")
    assert first != second
    assert first == compute_dedup_key(_envelope("!00000001"), "per_gateway")


def test_dedup_key_per_packet_ignores_gateway() -> None:
    first = compute_dedup_key(_envelope("!00000001"), "per_packet")
    second = compute_dedup_key(_envelope("!00000002"), "per_packet")
    assert first == second == (0xABCD, 7)


def test_dedup_key_off_and_unknown_modes() -> None:
    assert compute_dedup_key(_envelope("!00000001"), "off") is None
    with pytest.raises(ValueError):
        compute_dedup_key(_envelope("!00000001"), "global")


def test_group_key_is_sender_and_packet_id() -> None:
    assert compute_group_key(_envelope("!00000009", packet_id=42, from_node=5)) == (5, 42)


def _insert_from_threads(cache: FifoKeyCache, keys: list, workers: int = 8) -> Counter:
    accepted: Counter = Counter()
    lock = threading.Lock()
    start = threading.Barrier(workers)

    def worker() -> None:
        start.wait()
        for key in keys:
            if cache.insert(key):
                with lock:
                    accepted[key] += 1

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return accepted


def test_concurrent_inserts_accept_each_key_once() -> None:
    keys = list(range(200))
    cache = FifoKeyCache(capacity=len(keys))

    accepted = _insert_from_threads(cache, keys)

    assert accepted == Counter({key: 1 for key in keys})
    assert len(cache) == len(keys)
    assert cache.evictions == 0


def test_concurrent_inserts_stay_bounded_and_consistent() -> None:
    cache = FifoKeyCache(capacity=16)

    accepted = _insert_from_threads(cache, [key % 64 for key in range(500)])

    assert len(cache) <= cache.capacity
    assert set(cache._order) == cache._members
    assert len(cache._order) == len(cache._members)
    assert sum(accepted.values()) - cache.evictions == len(cache)
