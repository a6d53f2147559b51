"""
Shared test fixtures — recording messenger fakes and a valid recipient set.

The recording messenger implements the same connect / send / close
capability as the real backends and keeps every call in memory so tests
can assert on ordering, batching and failure handling.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, List, Optional, Tuple

import pytest

from forwarder.app.alerts.models import RecipientSet, build_recipient_set
from forwarder.app.core.errors import SendError, SessionOpenError

RECIPIENT_IDS = ("ALICE001", "BOBBY002", "CAROL003")
RECIPIENT_KEYS = ("11" * 32, "22" * 32, "33" * 32)


class RecordingSession:
    def __init__(self, messenger: "RecordingMessenger", number: int) -> None:
        self._messenger = messenger
        self.number = number

    async def _check(self, recipient_id: str) -> None:
        await asyncio.sleep(0)
        if recipient_id in self._messenger.hanging_recipients:
            await asyncio.sleep(3600)
        if recipient_id in self._messenger.failing_recipients:
            raise SendError(recipient_id, "recipient unreachable")

    async def send_text(self, recipient_id: str, text: str) -> None:
        await self._check(recipient_id)
        self._messenger.sent.append(("text", recipient_id, text))
        self._messenger.session_of.append(self.number)

    async def send_image(self, recipient_id: str, image: bytes, caption: str) -> None:
        await self._check(recipient_id)
        self._messenger.sent.append(("image", recipient_id, caption))
        self._messenger.images.append(image)
        self._messenger.session_of.append(self.number)

    async def close(self) -> None:
        self._messenger.closes += 1
        if self._messenger.fail_close:
            raise RuntimeError("socket already closed")


class RecordingMessenger:
    """In-memory messenger that records every delivery."""

    name = "recording"

    def __init__(
        self,
        *,
        failing_recipients: Iterable[str] = (),
        hanging_recipients: Iterable[str] = (),
        connect_failures: int = 0,
        connect_gate: Optional[asyncio.Event] = None,
        fail_close: bool = False,
    ) -> None:
        self.failing_recipients = set(failing_recipients)
        self.hanging_recipients = set(hanging_recipients)
        self.connect_failures = connect_failures
        self.connect_gate = connect_gate
        self.fail_close = fail_close
        self.connect_attempts = 0
        self.sessions_opened = 0
        self.closes = 0
        self.sent: List[Tuple[str, str, str]] = []
        self.images: List[bytes] = []
        self.session_of: List[int] = []

    async def connect(self) -> RecordingSession:
        self.connect_attempts += 1
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        await asyncio.sleep(0)
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise SessionOpenError("network unreachable")
        self.sessions_opened += 1
        return RecordingSession(self, self.sessions_opened)


@pytest.fixture
def recipients() -> RecipientSet:
    return build_recipient_set(",".join(RECIPIENT_IDS), ",".join(RECIPIENT_KEYS))


@pytest.fixture
def make_messenger():
    """Factory for recording messengers with configurable failures."""
    def _make(**kwargs) -> RecordingMessenger:
        return RecordingMessenger(**kwargs)
    return _make
