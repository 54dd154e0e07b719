"""Periodic drain of completed packet groups.

The scheduler advances the grouping watermark on a fixed cadence and hands
each completed group to the dispatcher. It runs as a task on the same event
loop that ingests packets, so a tick and an ingest never interleave
mid-mutation.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from core.errors import DispatchError
from core.packet_queue import MeshPacketQueue
from core.ports import DispatchPort

LOGGER = logging.getLogger(__name__)


class DrainScheduler:
    """Drains groups whose window has elapsed and dispatches them."""

    def __init__(
        self,
        queue: MeshPacketQueue,
        dispatcher: DispatchPort,
        grouping_duration: float,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Drain interval must be positive, got {interval}")
        self._queue = queue
        self._dispatcher = dispatcher
        self._grouping_duration = grouping_duration
        self._interval = interval
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> int:
        """Drain and dispatch every due group. Returns the number drained."""

        # The queue pops groups strictly older than the threshold, so a group
        # sitting exactly on the boundary goes out on the next tick.
        threshold = self._clock() - self._grouping_duration
        groups = self._queue.pop_groups_older_than(threshold)
        for group in groups:
            try:
                await self._dispatcher.dispatch(group)
            except DispatchError as exc:
                LOGGER.error("MessageId: %s Could not dispatch group: %s", group.packet_id, exc)
            except Exception:
                LOGGER.exception("MessageId: %s Unexpected dispatch failure", group.packet_id)
        if groups:
            LOGGER.debug("Drained %s group(s), %s still open", len(groups), len(self._queue))
        return len(groups)

    def start(self) -> None:
        """Start ticking on the running event loop. No-op if already running."""

        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run())
        LOGGER.info(
            "Drain scheduler started (window=%ss, interval=%ss)",
            self._grouping_duration,
            self._interval,
        )

    async def stop(self) -> None:
        """Stop issuing ticks. Open groups stay in the queue. Safe to repeat."""

        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        LOGGER.info("Drain scheduler stopped with %s open group(s)", len(self._queue))

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                try:
                    await self.tick()
                except Exception:
                    LOGGER.exception("Drain tick failed; retrying next interval")
