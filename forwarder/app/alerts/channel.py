"""
channel.py — In-process FIFO between webhook handlers and the delivery worker.

Many request handlers push, exactly one worker pops.  Everything runs on
the same event loop, so an ``asyncio.Queue`` gives the required guarantee:
concurrent pushes land in some interleaving and each alert is observed by
exactly one ``get``.

Capacity:
    0 (default)  unbounded — ``put`` never blocks and never drops
    N > 0        bounded   — on overflow the OLDEST queued alert is dropped
                             and logged, and the new alert is accepted
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from forwarder.app.alerts.models import Alert

logger = logging.getLogger(__name__)


class DeliveryChannel:
    """Ordered alert queue with a drop-oldest overflow policy."""

    def __init__(self, capacity: int = 0) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self.capacity = capacity
        self._queue: asyncio.Queue[Alert] = asyncio.Queue(maxsize=capacity)
        self.enqueued = 0
        self.dropped = 0

    def put(self, alert: Alert) -> None:
        """Enqueue without blocking the caller."""
        try:
            self._queue.put_nowait(alert)
        except asyncio.QueueFull:
            try:
                self._queue.get_nowait()
                self._queue.task_done()
                self.dropped += 1
                logger.warning(
                    "Delivery queue full (%d), dropped oldest alert",
                    self.capacity,
                    extra={"queue_depth": self._queue.qsize()},
                )
            except asyncio.QueueEmpty:
                pass
            self._queue.put_nowait(alert)
        self.enqueued += 1

    async def get(self) -> Alert:
        """Wait for the next alert."""
        return await self._queue.get()

    def get_nowait(self) -> Optional[Alert]:
        """Next alert if one is already queued, else None."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued alert has been processed."""
        await self._queue.join()

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()
