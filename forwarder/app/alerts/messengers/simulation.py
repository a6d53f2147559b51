"""
simulation.py — Log-only messenger for development and dry runs.

Every send succeeds and is logged; nothing leaves the process.  Selected
with ``MESSENGER_PROVIDER=simulation`` (the default).
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class SimulatedSession:
    def __init__(self, identity: str) -> None:
        self.identity = identity
        self.sent = 0

    async def send_text(self, recipient_id: str, text: str) -> None:
        self.sent += 1
        logger.info(
            "[SIMULATION] %s → %s: %d chars → '%s'",
            self.identity or "<anonymous>",
            recipient_id,
            len(text),
            text[:80] + ("..." if len(text) > 80 else ""),
            extra={"recipient_id": recipient_id},
        )

    async def send_image(self, recipient_id: str, image: bytes, caption: str) -> None:
        self.sent += 1
        logger.info(
            "[SIMULATION] %s → %s: image %d bytes, caption %d chars",
            self.identity or "<anonymous>",
            recipient_id,
            len(image),
            len(caption),
            extra={"recipient_id": recipient_id, "image_bytes": len(image)},
        )

    async def close(self) -> None:
        logger.debug("[SIMULATION] session closed after %d sends", self.sent)


class SimulatedMessenger:
    name = "simulation"

    def __init__(self, identity: str = "") -> None:
        self.identity = identity

    async def connect(self) -> SimulatedSession:
        logger.info("[SIMULATION] Connecting to the messaging network")
        return SimulatedSession(self.identity)
