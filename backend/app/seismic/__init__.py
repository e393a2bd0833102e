"""
Seismic feed aggregation and clustering.

This package provides:
- Event model parsed from GeoJSON feed features
- Half-open time windows and id deduplication
- Major-event history shared across horizons
- Priority sampling, magnitude histograms and per-day counts
- Spatio-temporal clustering with a Redis-backed result cache
- Multi-horizon reduction of feed snapshots
- Primary/secondary feed fetch with combined failure reporting
- Scheduled refresh of every horizon
"""

from .models import AlertLevel, Event, parse_feature
from .window_filter import dedupe_by_id, select_window
from .major_events import MajorEventHistory, MajorEventTracker, consolidate
from .sampler import MAGNITUDE_RANGES, histogram, priority_sample, uniform_sample
from .clustering import Cluster, compute_clusters, locate_cluster_by_representative
from .reducer import DerivedWindowState, Horizon, SeismicDataStore, reduce_snapshot
from .fetcher import FetchOutcome, FetchStatus, SourceFallbackFetcher
from .service import SeismicMonitorService, get_monitor_service
from .refresh_jobs import ScheduledRefreshRunner

__all__ = [
    "AlertLevel",
    "Event",
    "parse_feature",
    "dedupe_by_id",
    "select_window",
    "MajorEventHistory",
    "MajorEventTracker",
    "consolidate",
    "MAGNITUDE_RANGES",
    "histogram",
    "priority_sample",
    "uniform_sample",
    "Cluster",
    "compute_clusters",
    "locate_cluster_by_representative",
    "DerivedWindowState",
    "Horizon",
    "SeismicDataStore",
    "reduce_snapshot",
    "FetchOutcome",
    "FetchStatus",
    "SourceFallbackFetcher",
    "SeismicMonitorService",
    "get_monitor_service",
    "ScheduledRefreshRunner",
]
