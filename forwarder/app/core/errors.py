"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Plain-text 400 response for malformed webhook bodies
    • Consistent JSON error response format for everything else
    • Automatic logging of unhandled errors

Failure classes and where they surface:

    Exception               Raised by             Handled by
    ─────────────────────   ───────────────────   ──────────────────────────
    MalformedAlertError     ingress handler       HTTP handler (400)
    AttachmentFetchError    image fetcher         ingress handler (degrade)
    SessionOpenError        messenger.connect     delivery worker (drop alert)
    SendError               session.send_*        delivery worker (next rcpt)
    ConfigurationError      build_relay_config    startup (process exits)

Usage:
    from forwarder.app.core.errors import MalformedAlertError

    raise MalformedAlertError("unexpected end of JSON input")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class ForwarderError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class MalformedAlertError(ForwarderError):
    """Webhook body could not be decoded (400)."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=400,
            error_code="MALFORMED_ALERT",
        )


class AttachmentFetchError(ForwarderError):
    """Alert image could not be downloaded (502)."""

    def __init__(self, url: str, reason: str):
        super().__init__(
            message=f"Failed to fetch image {url}: {reason}",
            status_code=502,
            error_code="ATTACHMENT_FETCH_ERROR",
            details={"url": url},
        )
        self.url = url
        self.reason = reason


class MessagingError(ForwarderError):
    """The messaging network rejected or failed an operation (502)."""

    def __init__(self, message: str, *, error_code: str = "MESSAGING_ERROR", **details: Any):
        super().__init__(
            message=message,
            status_code=502,
            error_code=error_code,
            details=details,
        )


class SessionOpenError(MessagingError):
    """Connecting to the messaging network failed."""

    def __init__(self, message: str = "", **details: Any):
        super().__init__(
            f"Failed to connect to the messaging network: {message}",
            error_code="SESSION_OPEN_ERROR",
            **details,
        )


class SendError(MessagingError):
    """A single message could not be sent to one recipient."""

    def __init__(self, recipient_id: str, message: str = ""):
        super().__init__(
            f"Failed to send alert to {recipient_id}: {message}",
            error_code="SEND_ERROR",
            recipient_id=recipient_id,
        )
        self.recipient_id = recipient_id


class ConfigurationError(ForwarderError):
    """Startup configuration is invalid; the service must not start."""

    def __init__(self, message: str, *, setting: Optional[str] = None, **details: Any):
        d = {**details}
        if setting:
            d["setting"] = setting
        super().__init__(
            message=message,
            status_code=500,
            error_code="CONFIGURATION_ERROR",
            details=d,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
    *,
    include_path: bool = True,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    if request and include_path:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI, *, debug: bool = False, production: bool = False) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(MalformedAlertError)
    async def handle_malformed(request: Request, exc: MalformedAlertError):
        logger.warning("Rejected malformed alert: %s", exc.message)
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    @app.exception_handler(ForwarderError)
    async def handle_forwarder_error(request: Request, exc: ForwarderError):
        logger.error(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request, include_path=not production,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if debug else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if debug else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
            include_path=not production,
        )
