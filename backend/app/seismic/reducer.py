"""
Multi-horizon aggregation of feed snapshots.

Each horizon turns one raw snapshot into a fresh ``DerivedWindowState``:

    ┌─────────┬────────────┬───────────────────────────────────────────────┐
    │ Horizon │ Feed       │ Derived views                                 │
    ├─────────┼────────────┼───────────────────────────────────────────────┤
    │ short   │ all_day    │ last hour, prior hour, last 24 h, alerts,     │
    │         │            │ tsunami flag                                  │
    │ medium  │ all_week   │ last 72 h (deduped), prev 24 h, last 7 d,     │
    │         │            │ map subset, 7-day counts, sample, histogram   │
    │ long    │ all_month  │ 14 / 30 d windows, prev 7 / 14 d, counts,     │
    │         │            │ samples and histograms for 14 and 30 days     │
    └─────────┴────────────┴───────────────────────────────────────────────┘

What each horizon derives is table-driven (``HORIZON_PROFILES``). State
for a horizon is replaced wholesale by ``SeismicDataStore`` and only after
the reduction has completed.
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from backend.app.core.config import settings
from backend.app.seismic.major_events import MajorEventHistory, MajorEventTracker
from backend.app.seismic.models import AlertLevel, Event
from backend.app.seismic.sampler import daily_counts, histogram, priority_sample
from backend.app.seismic.window_filter import (
    MS_PER_DAY,
    MS_PER_HOUR,
    dedupe_by_id,
    select_window,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Horizons & profiles
# ═══════════════════════════════════════════════════════════════════════════

class Horizon(str, Enum):
    SHORT  = "short"
    MEDIUM = "medium"
    LONG   = "long"

    @property
    def feed(self) -> str:
        """Feed selector shared by both sources."""
        return _FEEDS[self]


_FEEDS = {Horizon.SHORT: "day", Horizon.MEDIUM: "week", Horizon.LONG: "month"}


@dataclass(frozen=True)
class WindowSpec:
    """A named half-open window ``[ref - start, ref - end)``."""
    name: str
    start: float
    end: float
    unit_ms: int
    dedupe: bool = False


@dataclass(frozen=True)
class SampleSpec:
    name: str
    source: str
    size_setting: str  # Settings attribute, read per reduction

    @property
    def size(self) -> int:
        return getattr(settings, self.size_setting)


@dataclass(frozen=True)
class HorizonProfile:
    horizon: Horizon
    windows: Tuple[WindowSpec, ...]
    list_source: Optional[str] = None    # feelable / significant lists
    map_source: Optional[str] = None
    daily_counts: Tuple[Tuple[str, str, int], ...] = ()  # (name, source, days)
    samples: Tuple[SampleSpec, ...] = ()
    histograms: Tuple[Tuple[str, str], ...] = ()         # (name, source)
    alert_source: Optional[str] = None
    keep_all: bool = False


def _hours(name: str, start: float, end: float = 0, dedupe: bool = False) -> WindowSpec:
    return WindowSpec(name, start, end, MS_PER_HOUR, dedupe)


def _days(name: str, start: float, end: float = 0) -> WindowSpec:
    return WindowSpec(name, start, end, MS_PER_DAY)


HORIZON_PROFILES: Dict[Horizon, HorizonProfile] = {
    Horizon.SHORT: HorizonProfile(
        horizon=Horizon.SHORT,
        windows=(
            _hours("last_hour", 1),
            _hours("prior_hour", 2, 1),
            _hours("last_24_hours", 24),
        ),
        list_source="last_24_hours",
        alert_source="last_24_hours",
    ),
    Horizon.MEDIUM: HorizonProfile(
        horizon=Horizon.MEDIUM,
        windows=(
            _hours("last_72_hours", 72, dedupe=True),
            _hours("prev_24_hours", 48, 24),
            _days("last_7_days", 7),
        ),
        list_source="last_7_days",
        map_source="last_72_hours",
        daily_counts=(("last_7_days", "last_7_days", 7),),
        samples=(SampleSpec("last_7_days", "last_7_days", "SAMPLE_SIZE_WEEK"),),
        histograms=(("last_7_days", "last_7_days"),),
    ),
    Horizon.LONG: HorizonProfile(
        horizon=Horizon.LONG,
        windows=(
            _days("last_14_days", 14),
            _days("last_30_days", 30),
            _days("prev_7_days", 14, 7),
            _days("prev_14_days", 28, 14),
        ),
        list_source="last_30_days",
        daily_counts=(
            ("last_14_days", "last_14_days", 14),
            ("last_30_days", "last_30_days", 30),
        ),
        samples=(
            SampleSpec("last_14_days", "last_14_days", "SAMPLE_SIZE_14_DAYS"),
            SampleSpec("last_30_days", "last_30_days", "SAMPLE_SIZE_30_DAYS"),
        ),
        histograms=(
            ("last_14_days", "last_14_days"),
            ("last_30_days", "last_30_days"),
        ),
        keep_all=True,
    ),
}


# ═══════════════════════════════════════════════════════════════════════════
# Derived state
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class AlertSummary:
    highest_level: Optional[AlertLevel] = None
    alert_events: List[Event] = field(default_factory=list)
    has_tsunami: bool = False
    latest_tsunami_event: Optional[Event] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "highest_level": self.highest_level.value if self.highest_level else None,
            "alert_events": [e.to_dict() for e in self.alert_events],
            "has_tsunami": self.has_tsunami,
            "latest_tsunami_event": (
                self.latest_tsunami_event.to_dict() if self.latest_tsunami_event else None
            ),
        }


def compute_alert_summary(events: Sequence[Event]) -> AlertSummary:
    """
    Highest non-green PAGER level and the events carrying it, plus the
    most recent tsunami-flagged event.
    """
    summary = AlertSummary()
    alerting = [
        e for e in events
        if e.alert_level is not None and e.alert_level is not AlertLevel.GREEN
    ]
    if alerting:
        top = max(e.alert_level.rank for e in alerting)
        summary.highest_level = next(e.alert_level for e in alerting if e.alert_level.rank == top)
        summary.alert_events = [e for e in alerting if e.alert_level.rank == top]

    tsunami = [e for e in events if e.tsunami and e.has_valid_time]
    if tsunami:
        summary.has_tsunami = True
        summary.latest_tsunami_event = max(tsunami, key=lambda e: e.time)
    return summary


def map_display_subset(events: Sequence[Event], limit: int) -> List[Event]:
    """Strongest ``limit`` events, invalid magnitudes last, ties by id."""
    ranked = sorted(
        dedupe_by_id(events),
        key=lambda e: (e.magnitude is None, -(e.magnitude or 0.0), e.id),
    )
    return ranked[:limit]


@dataclass
class DerivedWindowState:
    horizon: Horizon
    reference_time: int
    source: str = ""
    generated_at: Optional[int] = None
    windows: Dict[str, List[Event]] = field(default_factory=dict)
    map_display: List[Event] = field(default_factory=list)
    daily_counts: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    samples: Dict[str, List[Event]] = field(default_factory=dict)
    histograms: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    feelable: List[Event] = field(default_factory=list)
    significant: List[Event] = field(default_factory=list)
    alert_summary: Optional[AlertSummary] = None

    def window_counts(self) -> Dict[str, int]:
        return {name: len(events) for name, events in self.windows.items()}

    def to_dict(self, include_events: bool = True) -> Dict[str, Any]:
        def _events(items: Sequence[Event]) -> List[Dict[str, Any]]:
            return [e.to_dict() for e in items]

        d: Dict[str, Any] = {
            "horizon": self.horizon.value,
            "reference_time": self.reference_time,
            "source": self.source,
            "generated_at": self.generated_at,
            "window_counts": self.window_counts(),
            "daily_counts": self.daily_counts,
            "histograms": self.histograms,
            "feelable_count": len(self.feelable),
            "significant_count": len(self.significant),
            "alert_summary": self.alert_summary.to_dict() if self.alert_summary else None,
        }
        if include_events:
            d["windows"] = {name: _events(items) for name, items in self.windows.items()}
            d["map_display"] = _events(self.map_display)
            d["samples"] = {name: _events(items) for name, items in self.samples.items()}
            d["feelable"] = _events(self.feelable)
            d["significant"] = _events(self.significant)
        return d


# ═══════════════════════════════════════════════════════════════════════════
# Reduction
# ═══════════════════════════════════════════════════════════════════════════

def reduce_snapshot(
    horizon: Horizon,
    events: Sequence[Event],
    reference_time: int,
    *,
    source: str = "",
    generated_at: Optional[int] = None,
    profile: Optional[HorizonProfile] = None,
    rng: Optional[random.Random] = None,
) -> DerivedWindowState:
    """
    Build the derived state for one horizon from a raw snapshot.

    Pure: reads nothing but its arguments and returns a new object.
    """
    profile = profile or HORIZON_PROFILES[horizon]
    state = DerivedWindowState(
        horizon=horizon,
        reference_time=reference_time,
        source=source,
        generated_at=generated_at,
    )

    if profile.keep_all:
        state.windows["all_events"] = list(events)
    for spec in profile.windows:
        selected = select_window(events, spec.start, spec.end, reference_time, spec.unit_ms)
        state.windows[spec.name] = dedupe_by_id(selected) if spec.dedupe else selected

    if profile.map_source:
        state.map_display = map_display_subset(
            state.windows[profile.map_source], settings.MAP_DISPLAY_LIMIT,
        )
    for name, src, days in profile.daily_counts:
        state.daily_counts[name] = daily_counts(state.windows[src], days, reference_time)
    for sample in profile.samples:
        state.samples[sample.name] = priority_sample(
            state.windows[sample.source], sample.size, settings.MAJOR_EVENT_THRESHOLD, rng,
        )
    for name, src in profile.histograms:
        state.histograms[name] = histogram(state.windows[src])

    if profile.list_source:
        pool = state.windows[profile.list_source]
        state.feelable = [e for e in pool if e.magnitude_at_least(settings.FEELABLE_THRESHOLD)]
        state.significant = [e for e in pool if e.magnitude_at_least(settings.MAJOR_EVENT_THRESHOLD)]
    if profile.alert_source:
        state.alert_summary = compute_alert_summary(state.windows[profile.alert_source])

    return state


# ═══════════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class HorizonStatus:
    last_success_at: Optional[int] = None
    last_source: Optional[str] = None
    last_error: Optional[str] = None
    last_error_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_success_at": self.last_success_at,
            "last_source": self.last_source,
            "last_error": self.last_error,
            "last_error_at": self.last_error_at,
        }


class SeismicDataStore:
    """
    Latest derived state per horizon plus the shared major-event history.

    A horizon's state is only ever swapped for a fully built replacement;
    a failed refresh records its error and leaves every state untouched.
    """

    def __init__(self, tracker: Optional[MajorEventTracker] = None):
        self.tracker = tracker or MajorEventTracker(settings.MAJOR_EVENT_THRESHOLD)
        self._states: Dict[Horizon, DerivedWindowState] = {}
        self._status: Dict[Horizon, HorizonStatus] = {h: HorizonStatus() for h in Horizon}
        self._lock = threading.Lock()

    def apply_snapshot(
        self,
        horizon: Horizon,
        events: Sequence[Event],
        reference_time: int,
        *,
        source: str = "",
        generated_at: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ) -> DerivedWindowState:
        state = reduce_snapshot(
            horizon, events, reference_time,
            source=source, generated_at=generated_at, rng=rng,
        )

        with self._lock:
            self._states[horizon] = state
            status = self._status[horizon]
            status.last_success_at = reference_time
            status.last_source = source
            status.last_error = None

        # Every horizon offers its whole snapshot
        self.tracker.merge(events)

        logger.info(
            "Horizon %s reduced: %d events from %s",
            horizon.value, len(events), source or "unknown source",
            extra={"horizon": horizon.value, "event_count": len(events), "source": source},
        )
        return state

    def record_failure(self, horizon: Horizon, message: str, at: int) -> None:
        with self._lock:
            status = self._status[horizon]
            status.last_error = message
            status.last_error_at = at
        logger.warning(
            "Horizon %s refresh failed: %s", horizon.value, message,
            extra={"horizon": horizon.value},
        )

    def get(self, horizon: Horizon) -> Optional[DerivedWindowState]:
        with self._lock:
            return self._states.get(horizon)

    def status(self, horizon: Horizon) -> HorizonStatus:
        with self._lock:
            current = self._status[horizon]
            return HorizonStatus(**vars(current))

    @property
    def major_events(self) -> MajorEventHistory:
        return self.tracker.history
