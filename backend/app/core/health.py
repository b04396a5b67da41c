"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Database connectivity (SELECT 1 on the configured engine)
    • Expiry reaper state (background purge of expired alerts)

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
    - Monitoring dashboards
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from backend.app.core.config import settings
from backend.app.core.database import engine as default_engine

if TYPE_CHECKING:
    from backend.app.alerts.reaper import ExpiryReaper

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


async def check_database(bind: Optional[AsyncEngine] = None) -> ComponentHealth:
    """Round-trip a trivial query through the connection pool."""
    bind = bind or default_engine
    comp = ComponentHealth(name="database")
    start = time.monotonic()
    try:
        async with bind.connect() as conn:
            await conn.execute(text("SELECT 1"))
        comp.status = HealthStatus.HEALTHY
        comp.message = "Connection pool available"
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.details = {
        "dialect": bind.dialect.name,
        "url": bind.url.render_as_string(hide_password=True).split("@")[-1],
    }
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_reaper(reaper: Optional["ExpiryReaper"]) -> ComponentHealth:
    """A stopped reaper only delays cleanup; reads still hide expired alerts."""
    comp = ComponentHealth(name="expiry_reaper")
    if not settings.ALERT_REAPER_ENABLED:
        comp.message = "Disabled by configuration"
        return comp
    if reaper is None or not reaper.is_running:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Not running; expired alerts are hidden but not purged"
    elif reaper.last_error:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"Last sweep failed: {reaper.last_error}"
    else:
        comp.message = "Running"
    if reaper is not None:
        comp.details = reaper.status()
    return comp


async def run_health_check(
    *,
    bind: Optional[AsyncEngine] = None,
    reaper: Optional["ExpiryReaper"] = None,
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    report.components.append(await check_database(bind))
    report.components.append(await check_reaper(reaper))

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
