"""
geo_math.py — Great-circle geometry for seismic proximity queries.

Provides:
    - Haversine distance between two (lat, lon) points
    - Point-to-segment and point-to-polyline distance (fault traces,
      plate boundaries and other linear features)
    - Bounding-box pre-filter for radius queries
    - Regional-context filters: events within a radius of a point, and
      events within a distance of a polyline

All distances are in **kilometers**. Coordinates are in **decimal degrees**.

Haversine
=========
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Point-to-segment
================
The point is projected onto the segment in plain degree space (adequate for
the short segments of a digitised fault trace), the projection parameter is
clamped to [0, 1] so the closest point never leaves the segment, and the
great-circle distance to that closest point is returned.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_KM: float = 6_371.0088  # IAU mean radius
KM_PER_DEGREE: float = math.pi * EARTH_RADIUS_KM / 180.0  # ≈ 111.195 km


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(
                f"Latitude must be in [-90, 90], got {self.latitude}"
            )
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(
                f"Longitude must be in [-180, 180], got {self.longitude}"
            )

    @classmethod
    def from_lon_lat(cls, pair: Sequence[float]) -> "Coordinate":
        """Build from a GeoJSON-ordered ``[lon, lat]`` pair."""
        return cls(latitude=float(pair[1]), longitude=float(pair[0]))


# ---------------------------------------------------------------------------
# Distances
# ---------------------------------------------------------------------------

def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance in km between two raw coordinate pairs.

    Unrounded, for use in tight loops (clustering, polyline scans).

    Examples
    --------
    >>> round(haversine_km(0.0, 0.0, 0.0, 1.0), 3)
    111.195
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2.0) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    )
    # Floating error can push a marginally above 1 for antipodal points
    a = min(1.0, a)
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


def haversine(point1: Coordinate, point2: Coordinate) -> float:
    """
    Compute the great-circle distance between two Coordinates.

    Returns
    -------
    float
        Distance in kilometers, rounded to 4 decimal places.

    Examples
    --------
    >>> haversine(Coordinate(0, 0), Coordinate(0, 0))
    0.0
    """
    return round(
        haversine_km(point1.latitude, point1.longitude,
                     point2.latitude, point2.longitude),
        4,
    )


def _lon_delta(from_lon: float, to_lon: float) -> float:
    """Signed longitude difference wrapped into [-180, 180)."""
    return (to_lon - from_lon + 180.0) % 360.0 - 180.0


def point_to_segment_km(
    point: Coordinate,
    seg_start: Coordinate,
    seg_end: Coordinate,
) -> float:
    """
    Distance in km from ``point`` to the closest point on a segment.

    Longitudes are unwrapped relative to ``seg_start``, so a segment that
    crosses the antimeridian takes the short way round. A degenerate
    segment (start == end) is treated as a single point.
    """
    dx = _lon_delta(seg_start.longitude, seg_end.longitude)
    dy = seg_end.latitude - seg_start.latitude
    length_sq = dx * dx + dy * dy

    if length_sq == 0.0:
        return haversine_km(point.latitude, point.longitude,
                            seg_start.latitude, seg_start.longitude)

    px = _lon_delta(seg_start.longitude, point.longitude)
    t = (px * dx + (point.latitude - seg_start.latitude) * dy) / length_sq
    t = max(0.0, min(1.0, t))

    closest_lon = seg_start.longitude + t * dx
    closest_lat = seg_start.latitude + t * dy
    return haversine_km(point.latitude, point.longitude, closest_lat, closest_lon)


def distance_to_polyline_km(
    point: Coordinate,
    line: Sequence[Coordinate],
) -> Optional[float]:
    """
    Minimum distance in km from ``point`` to any segment of ``line``.

    Returns None for an empty line; a single-vertex line is a point.
    """
    if not line:
        return None
    if len(line) == 1:
        return haversine_km(point.latitude, point.longitude,
                            line[0].latitude, line[0].longitude)

    return min(
        point_to_segment_km(point, line[i], line[i + 1])
        for i in range(len(line) - 1)
    )


# ---------------------------------------------------------------------------
# Bounding-box pre-filter (fast rejection before exact distance)
# ---------------------------------------------------------------------------

def bounding_box(center: Coordinate, radius_km: float) -> Tuple[float, float, float, float]:
    """
    Lat/lon box that fully contains the circle (center, radius_km).

    Returns (min_lat, max_lat, min_lon, max_lon) in degrees. Longitudes are
    not wrapped; a box crossing the antimeridian extends beyond ±180 and
    ``in_bounding_box`` accounts for that.
    """
    angular = radius_km / EARTH_RADIUS_KM

    min_lat = center.latitude - math.degrees(angular)
    max_lat = center.latitude + math.degrees(angular)

    # Longitude delta widens toward the poles
    lat_rad = math.radians(center.latitude)
    if math.cos(lat_rad) > 1e-10 and max_lat < 90.0 and min_lat > -90.0:
        delta_lon = math.degrees(angular / math.cos(lat_rad))
    else:
        delta_lon = 180.0

    return (
        max(min_lat, -90.0),
        min(max_lat, 90.0),
        center.longitude - min(delta_lon, 180.0),
        center.longitude + min(delta_lon, 180.0),
    )


def in_bounding_box(
    latitude: float,
    longitude: float,
    box: Tuple[float, float, float, float],
) -> bool:
    """Whether a point lies inside a (possibly antimeridian-crossing) box."""
    min_lat, max_lat, min_lon, max_lon = box
    if not (min_lat <= latitude <= max_lat):
        return False
    if max_lon - min_lon >= 360.0:
        return True
    for shift in (0.0, 360.0, -360.0):
        if min_lon <= longitude + shift <= max_lon:
            return True
    return False


# ---------------------------------------------------------------------------
# Regional-context filters
# ---------------------------------------------------------------------------

def filter_events_within_radius(
    events: Sequence[Any],
    center: Coordinate,
    radius_km: float,
) -> List[Tuple[Any, float]]:
    """
    Events whose epicentre lies within ``radius_km`` of ``center``.

    Events are anything exposing ``latitude`` / ``longitude`` attributes
    (None when unknown); those without coordinates are skipped.

    Returns
    -------
    list of (event, distance_km)
        Sorted nearest first.
    """
    if radius_km < 0:
        raise ValueError(f"radius_km must be >= 0, got {radius_km}")

    box = bounding_box(center, radius_km)
    matched: List[Tuple[Any, float]] = []
    for event in events:
        lat = getattr(event, "latitude", None)
        lon = getattr(event, "longitude", None)
        if lat is None or lon is None:
            continue
        if not in_bounding_box(lat, lon, box):
            continue
        dist = haversine_km(center.latitude, center.longitude, lat, lon)
        if dist <= radius_km:
            matched.append((event, round(dist, 4)))

    matched.sort(key=lambda pair: pair[1])
    return matched


def filter_events_near_polyline(
    events: Sequence[Any],
    line: Sequence[Coordinate],
    max_distance_km: float,
) -> List[Tuple[Any, float]]:
    """
    Events within ``max_distance_km`` of a linear feature, nearest first.

    An empty line matches nothing.
    """
    if max_distance_km < 0:
        raise ValueError(f"max_distance_km must be >= 0, got {max_distance_km}")
    if not line:
        return []

    matched: List[Tuple[Any, float]] = []
    for event in events:
        lat = getattr(event, "latitude", None)
        lon = getattr(event, "longitude", None)
        if lat is None or lon is None:
            continue
        dist = distance_to_polyline_km(Coordinate(lat, lon), line)
        if dist is not None and dist <= max_distance_km:
            matched.append((event, round(dist, 4)))

    matched.sort(key=lambda pair: pair[1])
    return matched


def format_distance(km: float) -> str:
    """
    Human-readable distance string.

    >>> format_distance(0.35)
    '350 m'
    >>> format_distance(12.678)
    '12.7 km'
    """
    if km < 1.0:
        return f"{km * 1000:.0f} m"
    return f"{km:.1f} km"
