"""
worker.py — The single background task that delivers queued alerts.

═══════════════════════════════════════════════════════════════════════════
STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

            ┌──────────────────────────────┐
            │            IDLE              │◀─────────────────────────┐
            │  await channel.get()         │                          │
            └──────────────┬───────────────┘                          │
                           │ alert                                    │
                           ▼                                          │
                  messenger.connect() ── fails ──▶ log, drop alert ───┤
                           │ ok                                       │
                           ▼                                          │
            ┌──────────────────────────────┐                          │
            │          DRAINING            │                          │
            │  for rcpt in recipients:     │                          │
            │      send (image or text)    │  send failure: log,      │
            │                              │  next recipient          │
            │  next = channel.get_nowait() │                          │
            └──────────────┬───────────────┘                          │
                 next?     │ none                                     │
            yes: loop ─────┘ └──▶ session.close() ────────────────────┘

Alerts that arrive in a burst share one session, so a burst costs a
single connect.  Nothing is retried: a failed connect loses the alert
that triggered it, a failed send loses that (recipient, alert) pair.

Ordering: FIFO across alerts, configured order across recipients.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from forwarder.app.alerts.channel import DeliveryChannel
from forwarder.app.alerts.messengers.base import Messenger, MessagingSession
from forwarder.app.alerts.models import Alert, RecipientSet, WorkerState, WorkerStats
from forwarder.app.core.logging_config import set_delivery_context

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DeliveryWorker:
    """
    Drains the delivery channel through batched messaging sessions.

    Parameters
    ----------
    channel : DeliveryChannel
        Source of alerts (this worker is its only consumer).
    messenger : Messenger
        Messaging network capability.
    recipients : RecipientSet
        Every alert goes to every recipient, in this order.
    send_timeout : float | None
        Upper bound in seconds for each connect/send call.  ``None`` waits
        indefinitely.
    """

    def __init__(
        self,
        channel: DeliveryChannel,
        messenger: Messenger,
        recipients: RecipientSet,
        *,
        send_timeout: Optional[float] = None,
    ) -> None:
        self._channel = channel
        self._messenger = messenger
        self._recipients = recipients
        self._send_timeout = send_timeout
        self._task: Optional[asyncio.Task[None]] = None
        self.state = WorkerState.STOPPED
        self.stats = WorkerStats()

    # ── lifecycle ──

    def start(self) -> None:
        if self._task is not None:
            return
        self.state = WorkerState.IDLE
        self._task = asyncio.create_task(self._run(), name="delivery-worker")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def stop(self, drain_timeout: float = 0.0) -> None:
        """
        Stop the worker, optionally waiting for queued alerts first.

        Alerts still queued when the worker is cancelled are lost.
        """
        if self._task is None:
            return
        if drain_timeout > 0 and self.running:
            try:
                await asyncio.wait_for(self._channel.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning("Delivery queue not drained within %.1fs", drain_timeout)

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.error("Delivery worker had already crashed: %s", exc)
        self._task = None
        self.state = WorkerState.STOPPED

        pending = self._channel.qsize()
        if pending:
            logger.warning(
                "Shutting down with %d undelivered alert(s)", pending,
                extra={"queue_depth": pending},
            )

    async def _run(self) -> None:
        while True:
            self.state = WorkerState.IDLE
            alert = await self._channel.get()
            await self.deliver_batch(alert)

    # ── delivery ──

    async def _bounded(self, call: Awaitable[T]) -> T:
        if self._send_timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=self._send_timeout)

    async def deliver_batch(self, alert: Alert) -> int:
        """
        Open a session for ``alert`` and drain everything queued behind it.

        The caller has already taken ``alert`` off the channel.

        Returns
        -------
        int
            Number of alerts handled under the session (0 if connect failed).
        """
        logger.info("Connecting to the messaging network via %s", self._messenger.name)
        try:
            session = await self._bounded(self._messenger.connect())
        except Exception as exc:
            self.stats.session_failures += 1
            self.stats.alerts_dropped += 1
            self.stats.last_error = str(exc)
            logger.error("Failed to connect to the messaging network: %s", exc)
            self._channel.task_done()
            return 0

        self.stats.sessions_opened += 1
        self.state = WorkerState.DRAINING
        set_delivery_context(batch=self.stats.sessions_opened, messenger=self._messenger.name)
        failed_before = self.stats.sends_failed
        handled = 0
        current: Optional[Alert] = alert
        try:
            while current is not None:
                try:
                    await self._deliver(session, current)
                finally:
                    self._channel.task_done()
                handled += 1
                current = self._channel.get_nowait()
        finally:
            await self._close(session, handled, self.stats.sends_failed - failed_before)
            set_delivery_context()
            self.state = WorkerState.IDLE
        return handled

    async def _deliver(self, session: MessagingSession, alert: Alert) -> None:
        delivered = 0
        for recipient in self._recipients:
            rid = recipient.recipient_id
            logger.info(
                "Sending alert %s to %s", "image" if alert.has_image else "message", rid,
                extra={"recipient_id": rid},
            )
            try:
                if alert.has_image:
                    await self._bounded(session.send_image(rid, alert.image, alert.message))
                else:
                    await self._bounded(session.send_text(rid, alert.message))
            except Exception as exc:
                self.stats.sends_failed += 1
                self.stats.last_error = str(exc)
                logger.error(
                    "Failed to send alert %s to %s: %s",
                    "image" if alert.has_image else "message", rid, exc,
                    extra={"recipient_id": rid},
                )
                continue
            self.stats.sends_ok += 1
            delivered += 1
            logger.info("Alert message sent to %s", rid, extra={"recipient_id": rid})

        if delivered:
            self.stats.alerts_delivered += 1
        else:
            self.stats.alerts_dropped += 1

    async def _close(self, session: MessagingSession, handled: int, failed: int) -> None:
        try:
            await session.close()
        except Exception as exc:
            logger.warning("Failed to close messaging session: %s", exc)
        logger.info(
            "Messaging session closed after %d alert(s), %d failed send(s)", handled, failed,
            extra={"batch_size": handled, "sends_failed": failed},
        )
