"""
ingress.py — Turn a webhook body into a queued Alert.

Steps, all on the request path:
    1. Decode the body (malformed → MalformedAlertError, nothing queued)
    2. Download ``imageUrl`` if set (failure degrades to a notice line)
    3. Compose the message text
    4. Push the Alert onto the delivery channel and return

The image download is awaited inline, so webhook latency is bounded by
the slowest image; delivery itself never delays the response.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import httpx
from pydantic import ValidationError

from forwarder.app.alerts.channel import DeliveryChannel
from forwarder.app.alerts.composer import compose_message
from forwarder.app.alerts.models import Alert
from forwarder.app.api.schemas import WebhookAlert
from forwarder.app.core.errors import AttachmentFetchError, MalformedAlertError

logger = logging.getLogger(__name__)


def parse_webhook(body: bytes) -> WebhookAlert:
    """Decode a webhook body or raise ``MalformedAlertError``."""
    try:
        return WebhookAlert.model_validate_json(body)
    except ValidationError as exc:
        raise MalformedAlertError(str(exc)) from exc


class IngressHandler:
    """Parses, formats and enqueues incoming alerts."""

    def __init__(self, channel: DeliveryChannel, http_client: httpx.AsyncClient) -> None:
        self._channel = channel
        self._http = http_client

    async def fetch_image(self, url: str) -> bytes:
        """
        Download an alert image.

        Raises
        ------
        AttachmentFetchError
            On transport errors or a non-2xx response.
        """
        try:
            response = await self._http.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise AttachmentFetchError(url, f"HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise AttachmentFetchError(url, str(exc) or type(exc).__name__) from exc
        return response.content

    async def _attachment(self, url: str) -> Tuple[Optional[bytes], Optional[str]]:
        if not url:
            return None, None
        try:
            image = await self.fetch_image(url)
        except AttachmentFetchError as exc:
            logger.warning("Failed to attach image: %s", exc.message)
            return None, exc.reason
        return (image or None), None

    async def handle(self, body: bytes) -> Alert:
        """Process one webhook call; returns the queued alert."""
        payload = parse_webhook(body)

        image, image_error = await self._attachment(payload.image_url)

        alert = Alert(
            message=compose_message(payload, image_error=image_error),
            image=image,
        )
        self._channel.put(alert)

        logger.info(
            "Queued %s alert '%s'%s",
            payload.state or "unknown",
            payload.title,
            f" with {len(image)} byte image" if image else "",
            extra={"queue_depth": self._channel.qsize()},
        )
        return alert
