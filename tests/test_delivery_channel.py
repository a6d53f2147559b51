"""
test_delivery_channel.py — Tests for the in-process delivery queue.

Covers:
    • FIFO order and non-blocking get_nowait
    • Unbounded default capacity
    • Drop-oldest overflow policy for bounded queues
    • join() / task_done() accounting used by graceful shutdown

Run with:
    pytest tests/test_delivery_channel.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from forwarder.app.alerts.channel import DeliveryChannel
from forwarder.app.alerts.models import Alert


class TestFifo:
    """Basic queue semantics."""

    def test_get_nowait_empty_returns_none(self):
        channel = DeliveryChannel()
        assert channel.get_nowait() is None
        assert channel.empty()

    def test_order_preserved(self):
        channel = DeliveryChannel()
        for text in ("A", "B", "C"):
            channel.put(Alert(text))
        assert [channel.get_nowait().message for _ in range(3)] == ["A", "B", "C"]
        assert channel.get_nowait() is None

    def test_get_waits_for_put(self):
        async def scenario():
            channel = DeliveryChannel()
            waiter = asyncio.create_task(channel.get())
            await asyncio.sleep(0)
            assert not waiter.done()
            channel.put(Alert("late"))
            return await asyncio.wait_for(waiter, timeout=1)

        assert asyncio.run(scenario()).message == "late"

    def test_unbounded_by_default(self):
        channel = DeliveryChannel()
        for i in range(1000):
            channel.put(Alert(str(i)))
        assert channel.qsize() == 1000
        assert channel.dropped == 0
        assert channel.enqueued == 1000


class TestOverflow:
    """Bounded queues drop the oldest alert."""

    def test_drop_oldest(self):
        channel = DeliveryChannel(capacity=2)
        channel.put(Alert("A"))
        channel.put(Alert("B"))
        channel.put(Alert("C"))

        assert channel.dropped == 1
        assert channel.enqueued == 3
        assert channel.get_nowait().message == "B"
        assert channel.get_nowait().message == "C"

    def test_put_never_raises_when_full(self):
        channel = DeliveryChannel(capacity=1)
        for i in range(5):
            channel.put(Alert(str(i)))
        assert channel.qsize() == 1
        assert channel.get_nowait().message == "4"

    def test_negative_capacity_rejected(self):
        with pytest.raises(ValueError):
            DeliveryChannel(capacity=-1)


class TestJoin:
    """task_done accounting, including dropped alerts."""

    def test_join_completes_after_task_done(self):
        async def scenario():
            channel = DeliveryChannel(capacity=1)
            channel.put(Alert("A"))
            channel.put(Alert("B"))  # drops A, which counts as done
            alert = channel.get_nowait()
            channel.task_done()
            await asyncio.wait_for(channel.join(), timeout=1)
            return alert

        assert asyncio.run(scenario()).message == "B"
