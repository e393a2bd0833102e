"""
Spatio-temporal clustering of seismic events.

Two events are linked when they are within ``max_distance_km`` of each
other (great-circle) **and** within ``time_window_hours`` of each other.
A cluster is a connected component of that relation with at least
``min_events`` members; smaller groups are left unclustered.

Algorithm
=========
1. Deduplicate by id (first copy wins) and skip events lacking a valid
   time or epicentre; they cannot be linked to anything.
2. Bucket events into a lat/lon grid whose cells are at least as tall as
   ``max_distance_km``. A candidate pair must sit in adjacent rows and in
   columns no further apart than the longitude extent of the search
   circle at the event's latitude (wrapping across the antimeridian).
3. Exact distance and time checks on candidates; links are merged with a
   union-find.
4. Components are filtered by size, members ordered strongest first and
   clusters ordered by their representative.

The representative of a cluster is its highest valid magnitude, ties
broken by earliest time and then by id, so identical input always yields
identical clusters.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from backend.app.core.cache import make_cache_key
from backend.app.seismic.models import Event
from backend.app.seismic.window_filter import MS_PER_HOUR, dedupe_by_id
from backend.app.spatial.geo_math import EARTH_RADIUS_KM, KM_PER_DEGREE, haversine_km

logger = logging.getLogger(__name__)

OVERVIEW_CLUSTER_PREFIX = "overview_cluster_"
STABLE_KEY_VERSION = "v1"
STABLE_KEY_TIME_BUCKET_MS = 6 * MS_PER_HOUR


def strength_key(event: Event) -> Tuple[int, float, float, str]:
    """Sort key putting the strongest event first."""
    if event.magnitude is None:
        mag_rank: Tuple[int, float] = (1, 0.0)
    else:
        mag_rank = (0, -event.magnitude)
    time = event.time if event.time is not None else math.inf
    return (mag_rank[0], mag_rank[1], time, event.id)


# ═══════════════════════════════════════════════════════════════════════════
# Cluster record
# ═══════════════════════════════════════════════════════════════════════════

def _slugify(text: str) -> str:
    text = re.sub(r"[^a-z0-9\s-]", "", text.lower()).strip()
    text = re.sub(r"\s+", "-", text)
    return re.sub(r"-+", "-", text)


@dataclass(frozen=True)
class Cluster:
    """A group of linked events, strongest first."""
    events: Tuple[Event, ...]

    def __post_init__(self) -> None:
        if not self.events:
            raise ValueError("A cluster needs at least one event")

    # ── Identity ──

    @property
    def representative(self) -> Event:
        return self.events[0]

    @property
    def representative_id(self) -> str:
        return self.events[0].id

    @property
    def member_ids(self) -> List[str]:
        return [e.id for e in self.events]

    @property
    def count(self) -> int:
        return len(self.events)

    @property
    def overview_id(self) -> str:
        """Id used by the older overview labelling scheme."""
        return f"{OVERVIEW_CLUSTER_PREFIX}{self.representative_id}_{self.count}"

    # ── Magnitude ──

    def _magnitudes(self) -> List[float]:
        return [e.magnitude for e in self.events if e.magnitude is not None]

    @property
    def max_magnitude(self) -> Optional[float]:
        mags = self._magnitudes()
        return max(mags) if mags else None

    @property
    def min_magnitude(self) -> Optional[float]:
        mags = self._magnitudes()
        return min(mags) if mags else None

    @property
    def mean_magnitude(self) -> Optional[float]:
        mags = self._magnitudes()
        return sum(mags) / len(mags) if mags else None

    # ── Time ──

    @property
    def start_time(self) -> int:
        return min(e.time for e in self.events)

    @property
    def end_time(self) -> int:
        return max(e.time for e in self.events)

    @property
    def duration_hours(self) -> float:
        return (self.end_time - self.start_time) / MS_PER_HOUR

    # ── Place ──

    @property
    def location_label(self) -> str:
        return self.representative.place or "Unknown Location"

    @property
    def centroid(self) -> Tuple[Optional[float], Optional[float]]:
        """(lat, lon) of the representative event."""
        return self.representative.latitude, self.representative.longitude

    @property
    def depth_range(self) -> str:
        depths = [e.depth_km for e in self.events if e.depth_km is not None]
        if not depths:
            return "Unknown"
        return f"{min(depths):.1f}-{max(depths):.1f}km"

    # ── Derived labels ──

    @property
    def significance(self) -> float:
        max_mag = self.max_magnitude
        if max_mag is None:
            return 0.0
        return max_mag * math.log10(self.count)

    @property
    def stable_key(self) -> str:
        """
        Key that survives membership churn between refreshes:
        ``v1_<general place>_<6h bucket of start>_<lat>-<lon>``.
        """
        location = "unknown-location"
        place = self.representative.place
        if place:
            general = place.split(" of ")[-1]
            location = _slugify(general)[:30] or "unknown-location"
        bucket = self.start_time // STABLE_KEY_TIME_BUCKET_MS
        lat, lon = self.centroid
        geo = f"{lat:.1f}-{lon:.1f}" if lat is not None and lon is not None else "0.0-0.0"
        return f"{STABLE_KEY_VERSION}_{location}_{bucket}_{geo}"

    @property
    def slug(self) -> str:
        location = _slugify(self.location_label)[:30].strip("-")
        parts = self.stable_key.split("_")
        time_part = parts[2]
        geo_part = re.sub(r"[^a-z0-9-]", "", parts[3].replace(".", "d"))[:15]
        max_mag = self.max_magnitude
        mag = f"{max_mag:.1f}" if max_mag is not None else "unknown"
        return f"{self.count}-quakes-near-{location}-m{mag}-{time_part}-{geo_part}"

    @property
    def title(self) -> str:
        max_mag = self.max_magnitude
        mag = f"M{max_mag:.1f}" if max_mag is not None else "unknown magnitude"
        return f"Cluster: {self.count} events near {self.location_label}, max {mag}"

    @property
    def description(self) -> str:
        hours = self.duration_hours
        duration = f"approx {hours:.1f} hours" if hours > 0 else "a short period"
        max_mag = self.max_magnitude
        strongest = f"M{max_mag:.1f}" if max_mag is not None else "unknown"
        return (
            f"A cluster of {self.count} earthquakes occurred near "
            f"{self.location_label}. Strongest: {strongest}. Duration: {duration}."
        )

    def to_dict(self, include_events: bool = True) -> Dict[str, Any]:
        lat, lon = self.centroid
        d: Dict[str, Any] = {
            "representative_id": self.representative_id,
            "overview_id": self.overview_id,
            "stable_key": self.stable_key,
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "location": self.location_label,
            "count": self.count,
            "max_magnitude": self.max_magnitude,
            "min_magnitude": self.min_magnitude,
            "mean_magnitude": (
                round(self.mean_magnitude, 2) if self.mean_magnitude is not None else None
            ),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_hours": round(self.duration_hours, 2),
            "depth_range": self.depth_range,
            "centroid_lat": lat,
            "centroid_lon": lon,
            "significance": round(self.significance, 3),
            "member_ids": self.member_ids,
        }
        if include_events:
            d["events"] = [e.to_dict() for e in self.events]
        return d


# ═══════════════════════════════════════════════════════════════════════════
# Grid index
# ═══════════════════════════════════════════════════════════════════════════

class _GridIndex:
    """Lat/lon buckets sized so linked events sit in neighbouring cells."""

    def __init__(self, events: Sequence[Event], max_distance_km: float):
        self.cell_deg = max(1.0, max_distance_km / KM_PER_DEGREE)
        self.n_cols = int(math.ceil(360.0 / self.cell_deg))
        self.angular = max_distance_km / EARTH_RADIUS_KM
        self.cells: Dict[Tuple[int, int], List[int]] = {}
        for i, event in enumerate(events):
            self.cells.setdefault(self._cell_of(event), []).append(i)

    def _cell_of(self, event: Event) -> Tuple[int, int]:
        row = int(math.floor((event.latitude + 90.0) / self.cell_deg))
        col = int(math.floor((event.longitude + 180.0) / self.cell_deg)) % self.n_cols
        return row, col

    def _column_span(self, latitude: float) -> Optional[int]:
        """Columns to search either side; None means every column."""
        cos_lat = math.cos(math.radians(latitude))
        sin_ang = math.sin(min(self.angular, math.pi / 2))
        if cos_lat <= sin_ang:
            return None  # the search circle covers a pole
        delta_lon = math.degrees(math.asin(sin_ang / cos_lat))
        span = max(1, int(math.ceil(delta_lon / self.cell_deg)))
        if 2 * span + 1 >= self.n_cols:
            return None
        return span

    def candidates(self, event: Event) -> Iterable[int]:
        row, col = self._cell_of(event)
        span = self._column_span(event.latitude)
        if span is None:
            columns = range(self.n_cols)
        else:
            columns = {(col + dc) % self.n_cols for dc in range(-span, span + 1)}
        for r in (row - 1, row, row + 1):
            for c in columns:
                yield from self.cells.get((r, c), ())


class _UnionFind:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            # Smaller index becomes the root to keep runs reproducible
            if rb < ra:
                ra, rb = rb, ra
            self.parent[rb] = ra


# ═══════════════════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════════════════

def _check_parameters(max_distance_km: float, min_events: int, time_window_hours: float) -> None:
    if not max_distance_km > 0:
        raise ValueError(f"max_distance_km must be > 0, got {max_distance_km}")
    if min_events < 1:
        raise ValueError(f"min_events must be >= 1, got {min_events}")
    if not time_window_hours > 0:
        raise ValueError(f"time_window_hours must be > 0, got {time_window_hours}")


def clusterable_events(events: Sequence[Event]) -> List[Event]:
    """Deduplicated events that have both a valid time and epicentre."""
    return [
        e for e in dedupe_by_id(events)
        if e.has_valid_time and e.has_valid_coordinates
    ]


def compute_clusters(
    events: Sequence[Event],
    max_distance_km: float,
    min_events: int,
    time_window_hours: float,
) -> List[Cluster]:
    """
    Group events into spatio-temporal clusters.

    Parameters
    ----------
    events : sequence of Event
        Snapshot or derived window; duplicates by id are ignored.
    max_distance_km : float
        Link distance between two events (great-circle, km).
    min_events : int
        Smallest group size reported as a cluster.
    time_window_hours : float
        Largest time difference between two linked events.

    Returns
    -------
    list of Cluster
        Ordered by representative strength. Empty when nothing qualifies.
    """
    _check_parameters(max_distance_km, min_events, time_window_hours)

    usable = clusterable_events(events)
    skipped = len(events) - len(usable)
    if skipped:
        logger.debug("Clustering skipped %d duplicate or unlocated events", skipped)

    window_ms = time_window_hours * MS_PER_HOUR
    index = _GridIndex(usable, max_distance_km)
    uf = _UnionFind(len(usable))

    for i, a in enumerate(usable):
        for j in index.candidates(a):
            if j <= i:
                continue
            b = usable[j]
            if abs(a.time - b.time) > window_ms:
                continue
            if haversine_km(a.latitude, a.longitude, b.latitude, b.longitude) <= max_distance_km:
                uf.union(i, j)

    groups: Dict[int, List[Event]] = {}
    for i, event in enumerate(usable):
        groups.setdefault(uf.find(i), []).append(event)

    clusters = [
        Cluster(events=tuple(sorted(members, key=strength_key)))
        for members in groups.values()
        if len(members) >= min_events
    ]
    clusters.sort(key=lambda c: strength_key(c.representative))

    logger.debug(
        "Computed %d clusters from %d events (d=%.1fkm, min=%d, window=%.1fh)",
        len(clusters), len(usable), max_distance_km, min_events, time_window_hours,
        extra={"cluster_count": len(clusters), "event_count": len(usable)},
    )
    return clusters


def locate_cluster_by_representative(
    clusters: Iterable[Cluster],
    representative_id: str,
) -> Optional[Cluster]:
    """The cluster whose representative has ``representative_id``, if any."""
    for cluster in clusters:
        if cluster.representative_id == representative_id:
            return cluster
    return None


def parse_overview_cluster_id(cluster_id: str) -> Optional[Tuple[str, int]]:
    """
    Split an ``overview_cluster_<representative id>_<count>`` id.

    >>> parse_overview_cluster_id("overview_cluster_us7000abcd_5")
    ('us7000abcd', 5)
    >>> parse_overview_cluster_id("some-slug") is None
    True
    """
    if not cluster_id.startswith(OVERVIEW_CLUSTER_PREFIX):
        return None
    rest = cluster_id[len(OVERVIEW_CLUSTER_PREFIX):]
    rep_id, sep, count = rest.rpartition("_")
    if not sep or not rep_id or not count.isdigit():
        return None
    return rep_id, int(count)


def events_fingerprint(events: Sequence[Event]) -> str:
    """Content hash of the clustering-relevant fields, order-independent."""
    rows = sorted(
        (e.id, e.time, e.magnitude, e.longitude, e.latitude)
        for e in dedupe_by_id(events)
    )
    digest = hashlib.sha256()
    for row in rows:
        digest.update(repr(row).encode())
        digest.update(b"\n")
    return digest.hexdigest()


def cluster_signature(
    events: Sequence[Event],
    max_distance_km: float,
    min_events: int,
    time_window_hours: float,
) -> str:
    """Deterministic cache key for a clustering request."""
    return make_cache_key("clusters", {
        "max_distance_km": float(max_distance_km),
        "min_events": int(min_events),
        "time_window_hours": float(time_window_hours),
        "fingerprint": events_fingerprint(events),
    })
