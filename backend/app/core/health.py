"""
Health report for the seismic service.

Components:
    redis             cluster cache reachability (degraded when down; the
                      service still answers, clusters are recomputed)
    seismic_feeds     per-horizon freshness from the data store
    upstream_sources  configured feed endpoints (no network call)

The report status is the worst component status. ``/health/ready``
answers 503 only when it is UNHEALTHY, i.e. no horizon has any data.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from backend.app.core.cache import ping_redis
from backend.app.core.config import settings
from backend.app.seismic.reducer import Horizon, SeismicDataStore

logger = logging.getLogger(__name__)

_STARTED = time.monotonic()


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.UNHEALTHY: 2}


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    message: str = ""
    latency_ms: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"name": self.name, "status": self.status.value}
        if self.message:
            d["message"] = self.message
        if self.latency_ms:
            d["latency_ms"] = round(self.latency_ms, 2)
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    components: List[ComponentHealth]
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status(self) -> HealthStatus:
        if not self.components:
            return HealthStatus.HEALTHY
        return max((c.status for c in self.components), key=lambda s: s.severity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "timestamp": self.checked_at.isoformat(),
            "uptime_seconds": round(time.monotonic() - _STARTED, 1),
            "components": [c.to_dict() for c in self.components],
        }


async def check_redis() -> ComponentHealth:
    started = time.perf_counter()
    reachable = await ping_redis()
    comp = ComponentHealth(
        name="redis",
        latency_ms=(time.perf_counter() - started) * 1000,
        details={"url": settings.REDIS_URL.split("@")[-1]},
    )
    if reachable:
        comp.message = "Cluster cache available"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Cache unreachable; clusters computed per request"
    return comp


def check_feeds(store: Optional[SeismicDataStore], now_ms: Optional[int] = None) -> ComponentHealth:
    """
    DEGRADED when any horizon is unloaded, its latest refresh failed, or its
    last success is older than twice the refresh interval. UNHEALTHY when no
    horizon has loaded at all.
    """
    comp = ComponentHealth(name="seismic_feeds")
    if store is None:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Data store not initialised"
        return comp

    if now_ms is None:
        now_ms = int(time.time() * 1000)
    max_age_seconds = 2 * settings.REFRESH_INTERVAL_SECONDS
    loaded: List[str] = []
    lagging: List[str] = []
    for horizon in Horizon:
        status = store.status(horizon)
        info = status.to_dict()
        stale = False
        if status.last_success_at is not None:
            age_seconds = round((now_ms - status.last_success_at) / 1000, 1)
            info["age_seconds"] = age_seconds
            stale = age_seconds > max_age_seconds
        comp.details[horizon.value] = info

        if store.get(horizon) is not None:
            loaded.append(horizon.value)
        if stale or status.last_error or store.get(horizon) is None:
            lagging.append(horizon.value)

    if not loaded:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "No horizon has loaded yet"
    elif lagging:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"Stale or failing horizons: {', '.join(lagging)}"
    else:
        comp.message = "All horizons current"
    return comp


def check_sources() -> ComponentHealth:
    return ComponentHealth(
        name="upstream_sources",
        message="Sources configured",
        details={
            "primary": settings.PRIMARY_STORE_URL,
            "primary_marker": settings.PRIMARY_SOURCE_MARKER,
            "secondary": settings.RAW_FEED_BASE_URL,
            "timeout_seconds": settings.FETCH_TIMEOUT_SECONDS,
        },
    )


async def run_health_check(store: Optional[SeismicDataStore] = None) -> HealthReport:
    report = HealthReport(components=[
        await check_redis(),
        check_feeds(store),
        check_sources(),
    ])
    if report.status is not HealthStatus.HEALTHY:
        logger.debug("Health check: %s", report.status.value)
    return report
