"""
test_delivery_worker.py — Tests for the background delivery loop.

Covers:
    • FIFO ordering across alerts, configured order across recipients
    • Batching (one connect/close pair per burst)
    • Session-open failure (exactly one alert dropped, worker keeps going)
    • Per-recipient send failure (other recipients still served, no requeue)
    • Image vs text sends
    • Optional send timeout, close failures, lifecycle & graceful drain

Scenarios are coroutines driven with asyncio.run().

Run with:
    pytest tests/test_delivery_worker.py -v
"""

from __future__ import annotations

import asyncio
from typing import List, Optional

from forwarder.app.alerts.channel import DeliveryChannel
from forwarder.app.alerts.models import Alert, WorkerState
from forwarder.app.alerts.worker import DeliveryWorker

from conftest import RECIPIENT_IDS, RecordingMessenger


def _text_sends(message: str) -> List[tuple]:
    return [("text", rid, message) for rid in RECIPIENT_IDS]


async def _deliver(
    messenger: RecordingMessenger,
    recipients,
    alerts: List[Alert],
    *,
    send_timeout: Optional[float] = None,
) -> DeliveryWorker:
    """Queue all alerts at once, wait until the worker has handled them."""
    channel = DeliveryChannel()
    worker = DeliveryWorker(channel, messenger, recipients, send_timeout=send_timeout)
    worker.start()
    for alert in alerts:
        channel.put(alert)
    await asyncio.wait_for(channel.join(), timeout=5)
    await worker.stop()
    return worker


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Ordering
# ═══════════════════════════════════════════════════════════════════════════

class TestOrdering:
    """Alerts go out FIFO, recipients in configured order."""

    def test_single_alert_reaches_every_recipient_in_order(self, recipients, make_messenger):
        messenger = make_messenger()
        asyncio.run(_deliver(messenger, recipients, [Alert("A")]))
        assert messenger.sent == _text_sends("A")

    def test_fifo_a_fully_before_b(self, recipients, make_messenger):
        messenger = make_messenger()
        asyncio.run(_deliver(messenger, recipients, [Alert("A"), Alert("B")]))
        assert messenger.sent == _text_sends("A") + _text_sends("B")

    def test_many_alerts_keep_order(self, recipients, make_messenger):
        messenger = make_messenger()
        alerts = [Alert(f"alert-{i}") for i in range(10)]
        asyncio.run(_deliver(messenger, recipients, alerts))
        order = [text for _, rid, text in messenger.sent if rid == RECIPIENT_IDS[0]]
        assert order == [a.message for a in alerts]


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Batching
# ═══════════════════════════════════════════════════════════════════════════

class TestBatching:
    """Bursts share a single messaging session."""

    def test_queued_burst_uses_one_session(self, recipients, make_messenger):
        messenger = make_messenger()
        worker = asyncio.run(
            _deliver(messenger, recipients, [Alert("A"), Alert("B"), Alert("C")])
        )
        assert messenger.sessions_opened == 1
        assert messenger.closes == 1
        assert set(messenger.session_of) == {1}
        assert worker.stats.alerts_delivered == 3

    def test_alert_arriving_during_connect_joins_the_batch(self, recipients, make_messenger):
        async def scenario():
            gate = asyncio.Event()
            messenger = make_messenger(connect_gate=gate)
            channel = DeliveryChannel()
            worker = DeliveryWorker(channel, messenger, recipients)
            worker.start()

            channel.put(Alert("A"))
            while messenger.connect_attempts == 0:
                await asyncio.sleep(0)
            channel.put(Alert("B"))
            gate.set()

            await asyncio.wait_for(channel.join(), timeout=5)
            await worker.stop()
            return messenger

        messenger = asyncio.run(scenario())
        assert messenger.connect_attempts == 1
        assert messenger.closes == 1
        assert messenger.sent == _text_sends("A") + _text_sends("B")

    def test_separate_bursts_reconnect(self, recipients, make_messenger):
        async def scenario():
            messenger = make_messenger()
            channel = DeliveryChannel()
            worker = DeliveryWorker(channel, messenger, recipients)
            worker.start()
            channel.put(Alert("A"))
            await asyncio.wait_for(channel.join(), timeout=5)
            channel.put(Alert("B"))
            await asyncio.wait_for(channel.join(), timeout=5)
            await worker.stop()
            return messenger

        messenger = asyncio.run(scenario())
        assert messenger.sessions_opened == 2
        assert messenger.closes == 2


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Failure Policy
# ═══════════════════════════════════════════════════════════════════════════

class TestSessionOpenFailure:
    """A failed connect drops exactly the alert that triggered it."""

    def test_one_alert_dropped_then_worker_recovers(self, recipients, make_messenger):
        messenger = make_messenger(connect_failures=1)
        worker = asyncio.run(_deliver(messenger, recipients, [Alert("A"), Alert("B")]))

        assert messenger.sent == _text_sends("B")
        assert worker.stats.session_failures == 1
        assert worker.stats.alerts_dropped == 1
        assert worker.stats.sessions_opened == 1
        assert worker.stats.alerts_delivered == 1
        assert "network unreachable" in worker.stats.last_error

    def test_failed_connect_never_closes(self, recipients, make_messenger):
        messenger = make_messenger(connect_failures=1)
        asyncio.run(_deliver(messenger, recipients, [Alert("A")]))
        assert messenger.closes == 0
        assert messenger.sent == []


class TestSendFailure:
    """One recipient failing does not affect the others."""

    def test_middle_recipient_fails(self, recipients, make_messenger):
        messenger = make_messenger(failing_recipients={"BOBBY002"})
        worker = asyncio.run(_deliver(messenger, recipients, [Alert("A")]))

        assert messenger.sent == [("text", "ALICE001", "A"), ("text", "CAROL003", "A")]
        assert worker.stats.sends_failed == 1
        assert worker.stats.sends_ok == 2
        assert worker.stats.alerts_delivered == 1

    def test_failed_alert_not_requeued(self, recipients, make_messenger):
        async def scenario():
            messenger = make_messenger(failing_recipients={"BOBBY002"})
            channel = DeliveryChannel()
            worker = DeliveryWorker(channel, messenger, recipients)
            worker.start()
            channel.put(Alert("A"))
            await asyncio.wait_for(channel.join(), timeout=5)
            depth = channel.qsize()
            await worker.stop()
            return messenger, depth

        messenger, depth = asyncio.run(scenario())
        assert depth == 0
        assert len(messenger.sent) == 2

    def test_session_stays_open_for_next_alert(self, recipients, make_messenger):
        messenger = make_messenger(failing_recipients={"ALICE001"})
        asyncio.run(_deliver(messenger, recipients, [Alert("A"), Alert("B")]))
        assert messenger.sessions_opened == 1
        assert [t for _, _, t in messenger.sent] == ["A", "A", "B", "B"]

    def test_all_recipients_failing_counts_as_dropped(self, recipients, make_messenger):
        messenger = make_messenger(failing_recipients=set(RECIPIENT_IDS))
        worker = asyncio.run(_deliver(messenger, recipients, [Alert("A")]))
        assert worker.stats.alerts_dropped == 1
        assert worker.stats.sends_failed == 3

    def test_close_failure_is_tolerated(self, recipients, make_messenger):
        async def scenario():
            messenger = make_messenger(fail_close=True)
            channel = DeliveryChannel()
            worker = DeliveryWorker(channel, messenger, recipients)
            worker.start()
            channel.put(Alert("A"))
            await asyncio.wait_for(channel.join(), timeout=5)
            channel.put(Alert("B"))
            await asyncio.wait_for(channel.join(), timeout=5)
            running = worker.running
            await worker.stop()
            return messenger, running

        messenger, running = asyncio.run(scenario())
        assert running is True
        assert messenger.sent == _text_sends("A") + _text_sends("B")


class TestSendTimeout:
    """A hung send is cut off when a timeout is configured."""

    def test_hung_recipient_skipped(self, recipients, make_messenger):
        messenger = make_messenger(hanging_recipients={"ALICE001"})
        worker = asyncio.run(
            _deliver(messenger, recipients, [Alert("A")], send_timeout=0.05)
        )
        assert messenger.sent == [("text", "BOBBY002", "A"), ("text", "CAROL003", "A")]
        assert worker.stats.sends_failed == 1


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Attachments
# ═══════════════════════════════════════════════════════════════════════════

class TestImageAlerts:
    """Alerts with an image go out as image messages with a caption."""

    def test_image_sent_with_caption(self, recipients, make_messenger):
        messenger = make_messenger()
        asyncio.run(_deliver(messenger, recipients, [Alert("caption", image=b"\x89PNG")]))
        assert messenger.sent == [("image", rid, "caption") for rid in RECIPIENT_IDS]
        assert messenger.images == [b"\x89PNG"] * 3

    def test_empty_image_sent_as_text(self, recipients, make_messenger):
        messenger = make_messenger()
        asyncio.run(_deliver(messenger, recipients, [Alert("plain", image=b"")]))
        assert messenger.sent == _text_sends("plain")


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Lifecycle
# ═══════════════════════════════════════════════════════════════════════════

class TestLifecycle:
    """start / stop / drain behaviour."""

    def test_states(self, recipients, make_messenger):
        async def scenario():
            worker = DeliveryWorker(DeliveryChannel(), make_messenger(), recipients)
            before = worker.state
            worker.start()
            await asyncio.sleep(0)
            during = (worker.state, worker.running)
            await worker.stop()
            return before, during, worker.state, worker.running

        before, during, after, running_after = asyncio.run(scenario())
        assert before == WorkerState.STOPPED
        assert during == (WorkerState.IDLE, True)
        assert after == WorkerState.STOPPED
        assert running_after is False

    def test_start_is_idempotent(self, recipients, make_messenger):
        async def scenario():
            worker = DeliveryWorker(DeliveryChannel(), make_messenger(), recipients)
            worker.start()
            task = worker._task
            worker.start()
            same = worker._task is task
            await worker.stop()
            return same

        assert asyncio.run(scenario()) is True

    def test_stop_drains_queue_when_asked(self, recipients, make_messenger):
        async def scenario():
            messenger = make_messenger()
            channel = DeliveryChannel()
            worker = DeliveryWorker(channel, messenger, recipients)
            worker.start()
            channel.put(Alert("A"))
            channel.put(Alert("B"))
            await worker.stop(drain_timeout=5)
            return messenger, channel.qsize()

        messenger, depth = asyncio.run(scenario())
        assert depth == 0
        assert messenger.sent == _text_sends("A") + _text_sends("B")

    def test_stop_without_drain_leaves_queue(self, recipients, make_messenger):
        async def scenario():
            gate = asyncio.Event()
            messenger = make_messenger(connect_gate=gate)
            channel = DeliveryChannel()
            worker = DeliveryWorker(channel, messenger, recipients)
            worker.start()
            channel.put(Alert("A"))
            channel.put(Alert("B"))
            while messenger.connect_attempts == 0:
                await asyncio.sleep(0)
            await worker.stop()
            return messenger, channel.qsize()

        messenger, depth = asyncio.run(scenario())
        assert messenger.sent == []
        assert depth == 1
