"""
Request middleware — correlation IDs and one access line per webhook call.

Provides:
    • X-Request-ID header (taken from the caller or generated)
    • X-Process-Time header
    • Access log line with the delivery queue depth after the call

The timing covers the synchronous part of a webhook only (parse, image
fetch, enqueue).  Delivery happens later on the worker and is logged under
its batch tag, not the request id.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from forwarder.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

# Polled constantly by orchestrators; only logged when they fail
_QUIET_PREFIXES = ("/health", "/docs", "/redoc", "/openapi", "/favicon")


def _queue_depth(request: Request) -> Dict[str, Any]:
    channel = getattr(request.app.state, "channel", None)
    return {"queue_depth": channel.qsize()} if channel is not None else {}


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path
        set_request_context(
            request_id=request_id,
            client_ip=client_ip,
            endpoint=path,
            method=request.method,
        )

        status_code = 500
        start = time.perf_counter()
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            quiet = any(path.startswith(p) for p in _QUIET_PREFIXES)
            if not quiet or status_code >= 400:
                logger.log(
                    logging.WARNING if status_code >= 400 else logging.INFO,
                    "%s %s → %d (%.1fms) [%s]",
                    request.method, path, status_code, duration_ms, client_ip,
                    extra={
                        "duration_ms": round(duration_ms, 1),
                        "status_code": status_code,
                        **_queue_depth(request),
                    },
                )
            set_request_context()

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"
        return response
