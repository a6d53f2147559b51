"""
base.py — The messaging capability the delivery worker depends on.

    messenger.connect()                         → MessagingSession
    session.send_text(recipient_id, text)
    session.send_image(recipient_id, image, caption)
    session.close()

Backends raise ``SessionOpenError`` from ``connect`` and ``SendError`` from
the send methods.  Sessions are send-only: nothing received from the
network is ever acted upon.
"""

from __future__ import annotations

from typing import Protocol


class MessagingSession(Protocol):
    async def send_text(self, recipient_id: str, text: str) -> None: ...

    async def send_image(self, recipient_id: str, image: bytes, caption: str) -> None: ...

    async def close(self) -> None: ...


class Messenger(Protocol):
    name: str

    async def connect(self) -> MessagingSession: ...
