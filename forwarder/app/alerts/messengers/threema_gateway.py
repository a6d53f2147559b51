"""
threema_gateway.py — Threema Gateway messenger over HTTPS.

Delivery mechanism:
    • Gateway identity (``*XXXXXXX``) + API secret, issued by Threema
    • End-to-end mode when a private key is configured: messages are
      encrypted locally for each recipient's configured public key
    • Basic mode otherwise: the gateway encrypts on our behalf
    • One ``httpx.AsyncClient`` per session, i.e. per drained batch

═══════════════════════════════════════════════════════════════════════════
GATEWAY CALLS
═══════════════════════════════════════════════════════════════════════════

    connect()      GET  /credits?from=ID&secret=S            credential check

    End-to-end mode
    send_text()    POST /send_e2e     from,to,nonce,box,secret
    send_image()   POST /upload_blob  encrypted image      → blob id
                   POST /send_e2e     image message, then caption as text

    Basic mode
    send_text()    POST /send_simple  from,to,secret,text
    send_image()   POST /send_simple  caption only (no media support)

    close()        closes the HTTP client

    Status   Meaning
    ──────   ─────────────────────────────────────────────
    400      recipient identity invalid
    401      wrong gateway identity or secret
    402      no credits remaining
    413      message or blob too long
    5xx      gateway trouble
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

from forwarder.app.alerts.messengers.threema_e2e import BLOB_ID_SIZE, E2EEncryptor
from forwarder.app.alerts.models import RecipientSet
from forwarder.app.core.errors import SendError, SessionOpenError

logger = logging.getLogger(__name__)

MAX_TEXT_BYTES = 3500

_STATUS_REASONS: Dict[int, str] = {
    400: "recipient identity invalid",
    401: "API identity or secret incorrect",
    402: "no credits remaining",
    404: "recipient not found",
    413: "message too long",
}


def _describe(exc: httpx.HTTPError) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return f"HTTP {code} ({_STATUS_REASONS.get(code, 'gateway error')})"
    return f"{type(exc).__name__}: {exc}"


class ThreemaGatewaySession:
    """An authenticated gateway client, valid until ``close``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        identity: str,
        secret: str,
        encryptor: Optional[E2EEncryptor] = None,
    ) -> None:
        self._client = client
        self._identity = identity
        self._secret = secret
        self._encryptor = encryptor

    async def _post(self, recipient_id: str, path: str, **kwargs) -> str:
        try:
            response = await self._client.post(path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SendError(recipient_id, _describe(exc)) from exc
        return response.text.strip()

    async def _send_simple(self, recipient_id: str, text: str) -> str:
        if len(text.encode("utf-8")) > MAX_TEXT_BYTES:
            logger.warning(
                "Message for %s exceeds %d bytes, the gateway may reject it",
                recipient_id, MAX_TEXT_BYTES,
                extra={"recipient_id": recipient_id},
            )
        return await self._post(recipient_id, "/send_simple", data={
            "from": self._identity,
            "to": recipient_id,
            "secret": self._secret,
            "text": text,
        })

    async def _send_e2e(self, recipient_id: str, nonce: bytes, box: bytes) -> str:
        return await self._post(recipient_id, "/send_e2e", data={
            "from": self._identity,
            "to": recipient_id,
            "nonce": nonce.hex(),
            "box": box.hex(),
            "secret": self._secret,
        })

    async def _upload_blob(self, recipient_id: str, blob: bytes) -> bytes:
        blob_id = await self._post(
            recipient_id,
            "/upload_blob",
            params={"from": self._identity, "secret": self._secret},
            files={"blob": ("blob", blob, "application/octet-stream")},
        )
        try:
            raw = bytes.fromhex(blob_id)
        except ValueError:
            raw = b""
        if len(raw) != BLOB_ID_SIZE:
            raise SendError(recipient_id, f"gateway returned invalid blob id {blob_id!r}")
        return raw

    async def send_text(self, recipient_id: str, text: str) -> None:
        if self._encryptor is None:
            message_id = await self._send_simple(recipient_id, text)
        else:
            nonce, box = self._encryptor.text_message(recipient_id, text)
            message_id = await self._send_e2e(recipient_id, nonce, box)
        logger.debug("Gateway accepted message %s for %s", message_id, recipient_id)

    async def send_image(self, recipient_id: str, image: bytes, caption: str) -> None:
        if self._encryptor is None:
            logger.warning(
                "Gateway basic mode cannot carry images, sending caption only (%d bytes omitted)",
                len(image),
                extra={"recipient_id": recipient_id, "image_bytes": len(image)},
            )
            await self.send_text(recipient_id, caption)
            return

        blob_nonce, blob = self._encryptor.encrypt(recipient_id, image)
        blob_id = await self._upload_blob(recipient_id, blob)
        nonce, box = self._encryptor.image_message(recipient_id, blob_id, len(blob), blob_nonce)
        message_id = await self._send_e2e(recipient_id, nonce, box)
        logger.debug(
            "Gateway accepted image %s (blob %s) for %s",
            message_id, blob_id.hex(), recipient_id,
            extra={"recipient_id": recipient_id, "image_bytes": len(image)},
        )
        # Image messages carry no caption
        await self.send_text(recipient_id, caption)

    async def close(self) -> None:
        await self._client.aclose()


class ThreemaGatewayMessenger:
    name = "threema_gateway"

    def __init__(
        self,
        identity: str,
        secret: str,
        *,
        private_key: str = "",
        recipients: Optional[RecipientSet] = None,
        base_url: str = "https://msgapi.threema.ch",
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.identity = identity
        self._secret = secret
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport
        self._encryptor: Optional[E2EEncryptor] = None
        if private_key:
            self._encryptor = E2EEncryptor(
                private_key,
                {r.recipient_id: r.public_key for r in recipients or ()},
            )

    @property
    def mode(self) -> str:
        return "basic" if self._encryptor is None else "e2e"

    async def connect(self) -> ThreemaGatewaySession:
        client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )
        try:
            response = await client.get(
                "/credits",
                params={"from": self.identity, "secret": self._secret},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            await client.aclose()
            raise SessionOpenError(_describe(exc), gateway=self.base_url) from exc

        logger.info(
            "Connected to Threema Gateway as %s in %s mode (%s credits left)",
            self.identity, self.mode, response.text.strip(),
        )
        return ThreemaGatewaySession(client, self.identity, self._secret, self._encryptor)
