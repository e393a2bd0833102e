"""
Seismic monitoring service — fetch, reduce and serve.

Ties the fallback fetcher to the data store and exposes clustering over
the retained windows. One instance lives for the lifetime of the app
(see ``get_monitor_service``).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from backend.app.core.config import settings
from backend.app.seismic.cluster_cache import ClusterCache, ClusterResult, compute_clusters_cached
from backend.app.seismic.fetcher import FetchOutcome, SourceFallbackFetcher
from backend.app.seismic.models import Event
from backend.app.seismic.reducer import DerivedWindowState, Horizon, SeismicDataStore

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    horizon: Horizon
    outcome: FetchOutcome
    state: Optional[DerivedWindowState] = None

    @property
    def ok(self) -> bool:
        return self.state is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "horizon": self.horizon.value,
            "status": self.outcome.status.value,
            "source": self.outcome.source.value if self.outcome.source else None,
            "event_count": len(self.outcome.events),
            "error": self.outcome.error_message,
            "duration_ms": round(self.outcome.duration_ms, 1),
        }


class SeismicMonitorService:
    """
    Usage:
        service = SeismicMonitorService()
        await service.refresh_all()
        state = service.store.get(Horizon.MEDIUM)
    """

    def __init__(
        self,
        fetcher: Optional[SourceFallbackFetcher] = None,
        store: Optional[SeismicDataStore] = None,
        cluster_cache: Optional[ClusterCache] = None,
    ):
        self.fetcher = fetcher or SourceFallbackFetcher()
        self.store = store or SeismicDataStore()
        self.cluster_cache = cluster_cache or ClusterCache()

    async def refresh(self, horizon: Horizon) -> RefreshResult:
        """Fetch one horizon and, on success, replace its derived state."""
        outcome = await self.fetcher.fetch(horizon)
        if not outcome.ok:
            self.store.record_failure(horizon, outcome.error_message, outcome.fetched_at)
            return RefreshResult(horizon=horizon, outcome=outcome)

        state = self.store.apply_snapshot(
            horizon,
            outcome.events,
            outcome.fetched_at,
            source=outcome.source.value,
            generated_at=outcome.generated_at,
        )
        return RefreshResult(horizon=horizon, outcome=outcome, state=state)

    async def refresh_all(self) -> List[RefreshResult]:
        """Refresh every horizon concurrently; failures stay per horizon."""
        results = await asyncio.gather(*(self.refresh(h) for h in Horizon))
        failed = [r.horizon.value for r in results if not r.ok]
        if failed:
            logger.warning("Refresh finished with failed horizons: %s", ", ".join(failed))
        return list(results)

    def events_for(self, horizon: Horizon, window: Optional[str] = None) -> Optional[List[Event]]:
        """
        Events of a retained window, or of the horizon's widest window when
        ``window`` is omitted. None if the horizon has never loaded.

        Raises
        ------
        KeyError
            If the horizon has loaded but has no such window.
        """
        state = self.store.get(horizon)
        if state is None:
            return None
        if window is None:
            return max(state.windows.values(), key=len, default=[])
        return state.windows[window]

    async def clusters(
        self,
        events: Sequence[Event],
        max_distance_km: Optional[float] = None,
        min_events: Optional[int] = None,
        time_window_hours: Optional[float] = None,
    ) -> ClusterResult:
        return await compute_clusters_cached(
            events,
            max_distance_km if max_distance_km is not None else settings.CLUSTER_MAX_DISTANCE_KM,
            min_events if min_events is not None else settings.CLUSTER_MIN_EVENTS,
            time_window_hours if time_window_hours is not None else settings.CLUSTER_TIME_WINDOW_HOURS,
            self.cluster_cache,
        )

    async def close(self) -> None:
        await self.fetcher.close()


_service: Optional[SeismicMonitorService] = None


def get_monitor_service() -> SeismicMonitorService:
    """Process-wide service instance (FastAPI dependency)."""
    global _service
    if _service is None:
        _service = SeismicMonitorService()
    return _service
