"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development, except the
recipient list which must always be provided.

The raw ``Settings`` are turned into an immutable ``RelayConfig`` exactly
once, at application startup.  The relay components (ingress handler,
delivery worker, messenger) receive that value through their
constructors and never read the settings themselves.

Usage:
    from forwarder.app.core.config import get_settings, build_relay_config

    relay_config = build_relay_config(get_settings())
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from forwarder.app.alerts.models import RecipientSet, build_recipient_set
from forwarder.app.core.errors import ConfigurationError

MESSENGER_PROVIDERS = ("simulation", "threema_gateway")

# Threema tools export keys as "private:<64 hex>"
_PRIVATE_KEY_PREFIX = "private:"
_PRIVATE_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        frozen=True,
    )

    # ── Application ──
    APP_NAME: str = "Grafana Threema Forwarder"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── Sender identity ──
    G2T_ID: str = ""         # gateway identity, e.g. *ALERTS1
    G2T_ID_SECRET: str = ""  # gateway API secret
    G2T_PRIVATE_KEY: str = ""  # hex private key, enables end-to-end mode

    # ── Recipients (comma-separated, same length) ──
    G2T_RCPT_ID: str = ""
    G2T_RCPT_PUBKEY: str = ""

    # ── Messaging network ──
    MESSENGER_PROVIDER: str = "simulation"  # simulation | threema_gateway
    THREEMA_GATEWAY_URL: str = "https://msgapi.threema.ch"
    MESSENGER_TIMEOUT: float = 20.0  # seconds, per gateway HTTP call

    # ── Relay ──
    QUEUE_CAPACITY: int = 0  # 0 = unbounded; otherwise drop-oldest on overflow
    IMAGE_FETCH_TIMEOUT: float = 30.0
    DELIVERY_SEND_TIMEOUT: Optional[float] = None  # unset = no bound on connect/send
    SHUTDOWN_DRAIN_SECONDS: float = 0.0

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


@dataclass(frozen=True)
class RelayConfig:
    """Immutable relay configuration, resolved once at startup."""
    recipients: RecipientSet
    identity: str = ""
    secret: str = ""
    private_key: str = ""
    messenger_provider: str = "simulation"
    gateway_url: str = "https://msgapi.threema.ch"
    messenger_timeout: float = 20.0
    queue_capacity: int = 0
    image_fetch_timeout: float = 30.0
    send_timeout: Optional[float] = None
    shutdown_drain_seconds: float = 0.0


def build_relay_config(config: Settings) -> RelayConfig:
    """
    Validate the settings and freeze them into a ``RelayConfig``.

    Raises
    ------
    ConfigurationError
        Mismatched or empty recipient lists, malformed public keys, an
        unknown messenger provider, missing gateway credentials or a
        malformed private key.
    """
    recipients = build_recipient_set(config.G2T_RCPT_ID, config.G2T_RCPT_PUBKEY)

    provider = config.MESSENGER_PROVIDER.strip().lower()
    if provider not in MESSENGER_PROVIDERS:
        raise ConfigurationError(
            f"Unknown messenger provider: {config.MESSENGER_PROVIDER}",
            setting="MESSENGER_PROVIDER",
        )
    if provider == "threema_gateway":
        if not config.G2T_ID or not config.G2T_ID_SECRET:
            raise ConfigurationError(
                "Threema Gateway requires both G2T_ID and G2T_ID_SECRET",
                setting="G2T_ID",
            )
        if not config.G2T_ID.startswith("*") or len(config.G2T_ID) != 8:
            raise ConfigurationError(
                f"Invalid gateway identity: {config.G2T_ID!r}",
                setting="G2T_ID",
            )

    private_key = config.G2T_PRIVATE_KEY.strip()
    if private_key.startswith(_PRIVATE_KEY_PREFIX):
        private_key = private_key[len(_PRIVATE_KEY_PREFIX):]
    if private_key and not _PRIVATE_KEY_RE.match(private_key):
        raise ConfigurationError(
            "G2T_PRIVATE_KEY must be 64 hex characters",
            setting="G2T_PRIVATE_KEY",
        )

    if config.QUEUE_CAPACITY < 0:
        raise ConfigurationError(
            "QUEUE_CAPACITY must be zero (unbounded) or positive",
            setting="QUEUE_CAPACITY",
        )
    if config.DELIVERY_SEND_TIMEOUT is not None and config.DELIVERY_SEND_TIMEOUT <= 0:
        raise ConfigurationError(
            "DELIVERY_SEND_TIMEOUT must be positive when set",
            setting="DELIVERY_SEND_TIMEOUT",
        )

    return RelayConfig(
        recipients=recipients,
        identity=config.G2T_ID,
        secret=config.G2T_ID_SECRET,
        private_key=private_key.lower(),
        messenger_provider=provider,
        gateway_url=config.THREEMA_GATEWAY_URL.rstrip("/"),
        messenger_timeout=config.MESSENGER_TIMEOUT,
        queue_capacity=config.QUEUE_CAPACITY,
        image_fetch_timeout=config.IMAGE_FETCH_TIMEOUT,
        send_timeout=config.DELIVERY_SEND_TIMEOUT,
        shutdown_drain_seconds=max(config.SHUTDOWN_DRAIN_SECONDS, 0.0),
    )
