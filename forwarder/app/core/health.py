"""
Health check aggregation — deep health check for the relay.

Checks:
    • Delivery worker task is alive (and its delivery counters)
    • Delivery queue depth and overflow drops
    • Messaging backend selection

Delivery failures themselves never make the service unhealthy: the relay
is best-effort and keeps accepting alerts.  Only a dead worker task does,
because alerts would then pile up with nobody draining them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from forwarder.app.alerts.channel import DeliveryChannel
from forwarder.app.alerts.worker import DeliveryWorker

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = ""
    environment: str = ""
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


def check_worker(worker: Optional[DeliveryWorker]) -> ComponentHealth:
    comp = ComponentHealth(name="delivery_worker")
    if worker is None:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Worker not started"
        return comp

    comp.details = {"state": worker.state.value, **worker.stats.to_dict()}
    if not worker.running:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Worker task is not running"
    elif worker.stats.session_failures or worker.stats.sends_failed:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Some deliveries failed"
    else:
        comp.message = "Delivering"
    return comp


def check_queue(channel: Optional[DeliveryChannel]) -> ComponentHealth:
    comp = ComponentHealth(name="delivery_queue")
    if channel is None:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Queue not initialised"
        return comp

    depth = channel.qsize()
    comp.details = {
        "depth": depth,
        "capacity": channel.capacity or "unbounded",
        "enqueued": channel.enqueued,
        "dropped_on_overflow": channel.dropped,
    }
    if channel.dropped:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"{channel.dropped} alert(s) dropped on overflow"
    else:
        comp.message = f"{depth} alert(s) queued"
    return comp


def check_messenger(provider: str, recipient_count: int) -> ComponentHealth:
    comp = ComponentHealth(name="messenger")
    comp.details = {"provider": provider, "recipients": recipient_count}
    if provider == "simulation":
        comp.status = HealthStatus.DEGRADED
        comp.message = "Simulation mode, alerts are only logged"
    else:
        comp.message = "Configured"
    return comp


def run_health_check(
    *,
    worker: Optional[DeliveryWorker],
    channel: Optional[DeliveryChannel],
    provider: str,
    recipient_count: int,
    version: str = "",
    environment: str = "",
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        version=version,
        environment=environment,
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
        components=[
            check_worker(worker),
            check_queue(channel),
            check_messenger(provider, recipient_count),
        ],
    )

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
