"""
Structured logging for the relay.

Two independent log contexts, both carried in ``ContextVar``s:

    Context     Set by                  Fields
    ─────────   ─────────────────────   ──────────────────────────────
    request     RequestLoggingMiddleware request_id, client_ip, endpoint
    delivery    DeliveryWorker           batch, messenger

The delivery worker is an asyncio task with its own copy of the context,
so a batch tag set while draining never leaks into request log lines and
vice versa.  Backend log lines emitted inside a session (gateway calls,
simulation output) inherit the batch tag automatically.

Delivery has no HTTP caller to report to, so these logs are the only place
where fetch, connect and send failures become visible.

Usage:
    from forwarder.app.core.logging_config import setup_logging, get_logger

    setup_logging(config)
    logger = get_logger(__name__)
    logger.info("Alert sent", extra={"recipient_id": "ECHOECHO"})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from forwarder.app.core.config import Settings, get_settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar("request_context", default={})
_delivery_context: ContextVar[Dict[str, Any]] = ContextVar("delivery_context", default={})

# Record attributes passed through ``extra=``
DELIVERY_FIELDS = ("recipient_id", "queue_depth", "batch_size", "image_bytes", "sends_failed")
TIMING_FIELDS = ("duration_ms", "status_code")


def set_request_context(**kwargs: Any) -> None:
    """Set request-scoped log context (call from middleware)."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def set_delivery_context(**kwargs: Any) -> None:
    """Tag log lines emitted by the current delivery batch."""
    _delivery_context.set(kwargs)


def get_delivery_context() -> Dict[str, Any]:
    return _delivery_context.get()


def _record_fields(record: logging.LogRecord, names) -> Dict[str, Any]:
    return {key: getattr(record, key) for key in names if hasattr(record, key)}


# ── JSON Formatter (Production) ──

class JSONFormatter(logging.Formatter):
    """One JSON object per line, with request or delivery context attached."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request = get_request_context()
        if request:
            log_entry["request"] = request

        delivery = {**get_delivery_context(), **_record_fields(record, DELIVERY_FIELDS)}
        if delivery:
            log_entry["delivery"] = delivery

        log_entry.update(_record_fields(record, TIMING_FIELDS))

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(log_entry, default=str, ensure_ascii=False)


# ── Pretty Formatter (Development) ──

class PrettyFormatter(logging.Formatter):
    """Coloured console lines tagged with request id or delivery batch."""

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    @staticmethod
    def _tag(record: logging.LogRecord) -> str:
        request = get_request_context()
        if request.get("request_id"):
            return f" [{request['request_id'][:8]}]"
        delivery = get_delivery_context()
        if "batch" in delivery:
            tag = f" [batch {delivery['batch']}"
            if hasattr(record, "recipient_id"):
                tag += f" → {record.recipient_id}"
            return tag + "]"
        return ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        ts = self.formatTime(record, "%H:%M:%S")

        formatted = (
            f"{color}{ts} {record.levelname:8s}{self.RESET}"
            f"{self._tag(record)} {record.name}: {record.getMessage()}"
        )

        if record.exc_info and record.exc_info[1]:
            formatted += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"

        return formatted


# ── Setup ──

def setup_logging(config: Optional[Settings] = None) -> None:
    """Install the environment's formatter on the root logger."""
    config = config or get_settings()

    root = logging.getLogger()
    root.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if config.is_production else PrettyFormatter())
    root.addHandler(handler)

    # The middleware already writes one line per request
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    # httpx logs every gateway call, including the API secret in query strings
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
