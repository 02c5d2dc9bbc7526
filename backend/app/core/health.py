"""
Health check aggregation — deep health probe for dispatch subsystems.

Checks:
    • Notification providers (per-channel availability, simulation mode)
    • Persistence backend (in-memory or PostgreSQL)
    • Real-time broadcaster (in-memory or Redis)

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
    - Monitoring dashboards

Simulation mode is DEGRADED, not UNHEALTHY: activations still succeed
and are audited, but nobody is actually contacted.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from backend.app.core.config import Settings, settings

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
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


def _redact_url(url: str) -> str:
    return url.split("@")[-1] if "@" in url else url


async def check_notification_providers(dispatcher: Any) -> ComponentHealth:
    """Per-channel provider availability; DEGRADED in simulation mode."""
    comp = ComponentHealth(name="notification_providers")
    start = time.monotonic()
    try:
        info = dispatcher.provider_info()
        comp.details = info
        if info.get("simulation_mode"):
            comp.status = HealthStatus.DEGRADED
            comp.message = "Simulation mode: no SMS or WhatsApp provider configured"
        else:
            unavailable = [
                channel for channel, entry in info.items()
                if isinstance(entry, dict) and not entry.get("available")
            ]
            if unavailable:
                comp.status = HealthStatus.DEGRADED
                comp.message = f"Simulated channels: {', '.join(unavailable)}"
            else:
                comp.message = "All channels configured"
    except Exception as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_persistence(cfg: Settings) -> ComponentHealth:
    comp = ComponentHealth(name="persistence")
    start = time.monotonic()
    comp.details = {"backend": cfg.PERSISTENCE_BACKEND}
    if cfg.PERSISTENCE_BACKEND == "database":
        comp.details["host"] = _redact_url(cfg.DATABASE_URL)
        comp.message = "SQL stores configured"
    else:
        comp.status = HealthStatus.HEALTHY if not cfg.is_production else HealthStatus.DEGRADED
        comp.message = "In-memory stores (data lost on restart)"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_broadcaster(cfg: Settings, broadcaster: Optional[Any] = None) -> ComponentHealth:
    comp = ComponentHealth(name="broadcaster")
    start = time.monotonic()
    comp.details = {"backend": cfg.BROADCASTER_BACKEND}
    if cfg.BROADCASTER_BACKEND == "redis":
        comp.details["url"] = _redact_url(cfg.REDIS_URL)
        ping = getattr(broadcaster, "ping", None)
        if ping is not None and not await ping():
            comp.status = HealthStatus.DEGRADED
            comp.message = "Redis unreachable; real-time events are dropped"
        else:
            comp.message = "Redis pub/sub"
    else:
        comp.message = "In-process bus"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(
    dispatcher: Any,
    broadcaster: Optional[Any] = None,
    cfg: Optional[Settings] = None,
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    cfg = cfg or settings
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [
        check_notification_providers(dispatcher),
        check_persistence(cfg),
        check_broadcaster(cfg, broadcaster),
    ]

    # Run all checks
    for coro in checks:
        comp = await coro
        report.components.append(comp)

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
