"""
messengers — Messaging network backends.

Each backend exposes:
    connect() → session with send_text / send_image / close

Backends are chosen by ``MESSENGER_PROVIDER``; delivery policy (batching,
per-recipient failure handling) lives in the delivery worker.
"""

from __future__ import annotations

from forwarder.app.alerts.messengers.base import Messenger, MessagingSession
from forwarder.app.alerts.messengers.simulation import SimulatedMessenger
from forwarder.app.alerts.messengers.threema_gateway import ThreemaGatewayMessenger
from forwarder.app.core.config import RelayConfig
from forwarder.app.core.errors import ConfigurationError

__all__ = [
    "Messenger",
    "MessagingSession",
    "SimulatedMessenger",
    "ThreemaGatewayMessenger",
    "build_messenger",
]


def build_messenger(config: RelayConfig) -> Messenger:
    """Instantiate the configured messaging backend."""
    if config.messenger_provider == "simulation":
        return SimulatedMessenger(identity=config.identity)
    if config.messenger_provider == "threema_gateway":
        return ThreemaGatewayMessenger(
            config.identity,
            config.secret,
            private_key=config.private_key,
            recipients=config.recipients,
            base_url=config.gateway_url,
            timeout=config.messenger_timeout,
        )
    raise ConfigurationError(
        f"Unknown messenger provider: {config.messenger_provider}",
        setting="MESSENGER_PROVIDER",
    )
