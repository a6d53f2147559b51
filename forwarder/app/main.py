"""
FastAPI application entry point.

Run with:
    uvicorn forwarder.app.main:app --port 8000

Or via the console script:
    forwarder

Exactly one server process must run: the delivery queue lives in memory.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from forwarder.app.core.config import Settings, build_relay_config, get_settings
from forwarder.app.core.logging_config import setup_logging, get_logger
from forwarder.app.core.errors import register_error_handlers
from forwarder.app.core.middleware import RequestLoggingMiddleware
from forwarder.app.core.health import HealthStatus, run_health_check

# ── Relay ──
from forwarder.app.alerts.channel import DeliveryChannel
from forwarder.app.alerts.ingress import IngressHandler
from forwarder.app.alerts.messengers import Messenger, build_messenger
from forwarder.app.alerts.worker import DeliveryWorker

# ── API routers ──
from forwarder.app.api.v1.webhook import router as webhook_router

logger = get_logger(__name__)


def create_app(
    config: Optional[Settings] = None,
    *,
    messenger: Optional[Messenger] = None,
    image_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the application.

    Parameters
    ----------
    config : Settings | None
        Defaults to the environment-derived settings.
    messenger : Messenger | None
        Overrides the backend chosen by ``MESSENGER_PROVIDER``.
    image_transport : httpx transport | None
        Overrides the transport used to download alert images.
    """
    config = config or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Validate configuration, start the worker, drain on shutdown."""
        # Raises ConfigurationError before any request is served
        relay = build_relay_config(config)
        logger.info(
            "Starting %s v%s [%s] → %d recipient(s) via %s",
            config.APP_NAME, config.APP_VERSION, config.ENVIRONMENT,
            len(relay.recipients), relay.messenger_provider,
        )

        channel = DeliveryChannel(capacity=relay.queue_capacity)
        http_client = httpx.AsyncClient(
            timeout=relay.image_fetch_timeout,
            follow_redirects=True,
            transport=image_transport,
        )
        worker = DeliveryWorker(
            channel,
            messenger or build_messenger(relay),
            relay.recipients,
            send_timeout=relay.send_timeout,
        )

        app.state.relay = relay
        app.state.channel = channel
        app.state.worker = worker
        app.state.ingress = IngressHandler(channel, http_client)

        worker.start()
        try:
            yield
        finally:
            logger.info("Shutting down %s", config.APP_NAME)
            await worker.stop(drain_timeout=relay.shutdown_drain_seconds)
            await http_client.aclose()

    app = FastAPI(
        title=config.APP_NAME,
        description=(
            "Relays Grafana webhook alerts to Threema. Alerts are queued "
            "in memory and delivered by a single background worker that "
            "batches bursts into one messaging session."
        ),
        version=config.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = config

    app.add_middleware(RequestLoggingMiddleware)
    register_error_handlers(app, debug=config.DEBUG, production=config.is_production)

    app.include_router(webhook_router)

    def _health_report():
        relay = getattr(app.state, "relay", None)
        return run_health_check(
            worker=getattr(app.state, "worker", None),
            channel=getattr(app.state, "channel", None),
            provider=relay.messenger_provider if relay else config.MESSENGER_PROVIDER,
            recipient_count=len(relay.recipients) if relay else 0,
            version=config.APP_VERSION,
            environment=config.ENVIRONMENT,
        )

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health check of the worker, queue and messenger."""
        return _health_report().to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Liveness check: is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        """Readiness check: is the delivery worker draining the queue?"""
        report = _health_report()
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


# ── Initialise logging ──
setup_logging()

app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    config = get_settings()
    uvicorn.run(
        "forwarder.app.main:app",
        host=config.HOST,
        port=config.PORT,
        workers=1,
        log_config=None,
    )
