from __future__ import annotations

import threading

import pytest

from core.models import DecodedData, Envelope, Packet
from core.packet_queue import MeshPacketQueue

DURATION = 10.0


def _envelope(gateway_id: str, packet_id: int = 1) -> Envelope:
    return Envelope(
        channel_id="LongFast",
        gateway_id=gateway_id,
        packet=Packet(
            id=packet_id,
            from_node=0x1234,
            to_node=0xFFFFFFFF,
            decoded=DecodedData(portnum=1, payload=b"hello"),
        ),
    )


def test_group_drains_after_window_with_members_in_order() -> None:
    queue = MeshPacketQueue()
    key = (0x1234, 1)
    first = _envelope("!00000001")
    second = _envelope("!00000002")
    queue.offer(key, first, now=0.0)
    queue.offer(key, second, now=3.0)

    assert queue.pop_groups_older_than(9.0 - DURATION) == []

    drained = queue.pop_groups_older_than(11.0 - DURATION)
    assert len(drained) == 1
    group = drained[0]
    assert group.group_key == key
    assert group.first_seen_at == 0.0
    assert list(group.envelopes) == [first, second]
    assert group.representative_packet is first.packet
    assert len(queue) == 0


def test_groups_inside_window_stay_open() -> None:
    queue = MeshPacketQueue()
    queue.offer((1, 1), _envelope("!00000001", packet_id=1), now=0.0)
    queue.offer((1, 2), _envelope("!00000001", packet_id=2), now=8.0)

    drained = queue.pop_groups_older_than(12.0 - DURATION)

    assert [group.group_key for group in drained] == [(1, 1)]
    assert len(queue) == 1

    late = _envelope("!00000003", packet_id=2)
    queue.offer((1, 2), late, now=12.0)
    drained = queue.pop_groups_older_than(20.0 - DURATION)
    assert len(drained) == 1
    assert drained[0].envelopes[-1] is late


def test_continuous_traffic_does_not_move_first_seen() -> None:
    queue = MeshPacketQueue()
    key = (0x1234, 1)
    for second in range(0, 15):
        queue.offer(key, _envelope(f"!{second:08x}"), now=float(second))

    drained = queue.pop_groups_older_than(15.0 - DURATION)

    assert len(drained) == 1
    assert drained[0].first_seen_at == 0.0
    assert len(drained[0].envelopes) == 15


def test_drained_group_is_sealed_and_key_starts_fresh() -> None:
    queue = MeshPacketQueue()
    key = (0x1234, 1)
    queue.offer(key, _envelope("!00000001"), now=0.0)
    group = queue.pop_groups_older_than(100.0)[0]

    assert group.sealed
    with pytest.raises(RuntimeError):
        group.append(_envelope("!00000002"))

    queue.offer(key, _envelope("!00000002"), now=50.0)
    assert len(queue) == 1
    assert len(group.envelopes) == 1


def test_clear_discards_open_groups() -> None:
    queue = MeshPacketQueue()
    queue.offer((1, 1), _envelope("!00000001"), now=0.0)
    queue.offer((1, 2), _envelope("!00000001", packet_id=2), now=0.0)

    assert queue.clear() == 2
    assert queue.pop_groups_older_than(100.0) == []


def test_due_group_drains_even_when_offered_out_of_order() -> None:
    queue = MeshPacketQueue()
    queue.offer((1, 1), _envelope("!00000001", packet_id=1), now=5.0)
    queue.offer((1, 2), _envelope("!00000001", packet_id=2), now=0.0)

    drained = queue.pop_groups_older_than(3.0)

    assert [group.group_key for group in drained] == [(1, 2)]
    assert len(queue) == 1
    assert [group.group_key for group in queue.pop_groups_older_than(6.0)] == [(1, 1)]


def test_drained_group_fields_cannot_be_reassigned() -> None:
    queue = MeshPacketQueue()
    queue.offer((1, 1), _envelope("!00000001"), now=0.0)
    group = queue.pop_groups_older_than(1.0)[0]

    with pytest.raises(RuntimeError):
        group.envelopes = ()
    with pytest.raises(RuntimeError):
        group.first_seen_at = 99.0
    assert group.first_seen_at == 0.0
    assert len(group.envelopes) == 1


def test_concurrent_offers_and_drains_lose_nothing() -> None:
    queue = MeshPacketQueue()
    offered: list[Envelope] = []
    drained: list = []
    done = threading.Event()

    def producer(worker: int) -> None:
        for index in range(300):
            envelope = _envelope(f"!{worker:08x}", packet_id=index)
            offered.append(envelope)
            queue.offer((0x1234, index % 50), envelope, now=float(index))

    def drainer() -> None:
        while not done.is_set():
            drained.extend(queue.pop_groups_older_than(150.0))
        drained.extend(queue.pop_groups_older_than(float("inf")))

    drain_thread = threading.Thread(target=drainer)
    drain_thread.start()
    producers = [threading.Thread(target=producer, args=(worker,)) for worker in range(4)]
    for thread in producers:
        thread.start()
    for thread in producers:
        thread.join()
    done.set()
    drain_thread.join()

    seen = [id(envelope) for group in drained for envelope in group.envelopes]
    assert len(queue) == 0
    assert sorted(seen) == sorted(id(envelope) for envelope in offered)
