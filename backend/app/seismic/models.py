"""
Seismic domain models.

Defines:
    - AlertLevel            — PAGER alert colours, ordered red > orange > yellow > green
    - Event                 — one seismic occurrence parsed from a GeoJSON feature
    - feature_shape_error() — minimal shape check shared by the feed validators
    - parse_feature()       — GeoJSON feature → Event
    - magnitude_to_mmi()    — rough magnitude → Mercalli intensity label

Every numeric field on ``Event`` is either a valid finite number or None.
Parsing never coerces silently: booleans, strings, NaN and infinities are
treated as absent. Consumers check ``has_valid_time`` /
``has_valid_magnitude`` / ``has_valid_coordinates`` before using a field.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class AlertLevel(str, Enum):
    """USGS PAGER alert level."""
    GREEN  = "green"
    YELLOW = "yellow"
    ORANGE = "orange"
    RED    = "red"

    @property
    def rank(self) -> int:
        return _ALERT_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> Optional["AlertLevel"]:
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


_ALERT_RANK = {
    AlertLevel.GREEN: 0,
    AlertLevel.YELLOW: 1,
    AlertLevel.ORANGE: 2,
    AlertLevel.RED: 3,
}


# ---------------------------------------------------------------------------
# Field coercion helpers
# ---------------------------------------------------------------------------

def valid_number(value: Any) -> Optional[float]:
    """Return ``value`` as float if it is a real finite number, else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def _boolean_like(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true")
    return False


def _optional_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


# ---------------------------------------------------------------------------
# Event
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Event:
    """
    One seismic occurrence.

    Two events describe the same occurrence iff their ``id`` matches. The
    original GeoJSON feature is kept in ``feature`` for pass-through
    serialisation; it takes no part in comparisons.
    """
    id: str
    time: Optional[int] = None             # epoch ms
    magnitude: Optional[float] = None
    place: Optional[str] = None
    alert_level: Optional[AlertLevel] = None
    tsunami: bool = False
    depth_km: Optional[float] = None
    longitude: Optional[float] = None
    latitude: Optional[float] = None
    url: Optional[str] = None
    felt: Optional[int] = None
    event_type: Optional[str] = None
    feature: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def has_valid_time(self) -> bool:
        return self.time is not None

    @property
    def has_valid_magnitude(self) -> bool:
        return self.magnitude is not None

    @property
    def has_valid_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def magnitude_at_least(self, threshold: float) -> bool:
        """True only when the magnitude is valid and ``>= threshold``."""
        return self.magnitude is not None and self.magnitude >= threshold

    def to_feature(self) -> Dict[str, Any]:
        """GeoJSON feature for this event (the source feature when known)."""
        if self.feature:
            return self.feature
        coordinates = [self.longitude, self.latitude]
        if self.depth_km is not None:
            coordinates.append(self.depth_km)
        return {
            "type": "Feature",
            "id": self.id,
            "properties": {
                "mag": self.magnitude,
                "place": self.place,
                "time": self.time,
                "alert": self.alert_level.value if self.alert_level else None,
                "tsunami": 1 if self.tsunami else 0,
                "url": self.url,
                "felt": self.felt,
                "type": self.event_type,
            },
            "geometry": {"type": "Point", "coordinates": coordinates},
        }

    def to_dict(self) -> Dict[str, Any]:
        """Flat JSON-friendly view used by API responses."""
        return {
            "id": self.id,
            "time": self.time,
            "magnitude": self.magnitude,
            "place": self.place,
            "alert_level": self.alert_level.value if self.alert_level else None,
            "tsunami": self.tsunami,
            "depth_km": self.depth_km,
            "longitude": self.longitude,
            "latitude": self.latitude,
            "url": self.url,
        }


# ---------------------------------------------------------------------------
# GeoJSON parsing
# ---------------------------------------------------------------------------

def feature_shape_error(feature: Any) -> Optional[str]:
    """
    Describe why ``feature`` is not a usable event, or None if it is.

    Minimum shape: a non-empty string ``id``, a ``properties`` object and a
    ``geometry.coordinates`` list holding at least longitude and latitude
    as numbers.
    """
    if not isinstance(feature, Mapping):
        return "element is not an object"
    if not isinstance(feature.get("id"), str) or not feature["id"]:
        return "missing id"
    if not isinstance(feature.get("properties"), Mapping):
        return f"event {feature['id']} has no properties object"
    geometry = feature.get("geometry")
    if not isinstance(geometry, Mapping):
        return f"event {feature['id']} has no geometry"
    coords = geometry.get("coordinates")
    if not isinstance(coords, list) or len(coords) < 2:
        return f"event {feature['id']} has no coordinates"
    if valid_number(coords[0]) is None or valid_number(coords[1]) is None:
        return f"event {feature['id']} has non-numeric coordinates"
    return None


def parse_feature(feature: Mapping[str, Any]) -> Event:
    """
    Build an Event from a GeoJSON feature.

    Raises
    ------
    ValueError
        If the feature has no usable id. Every other field degrades to
        None / False when missing or malformed.
    """
    event_id = feature.get("id") if isinstance(feature, Mapping) else None
    if not isinstance(event_id, str) or not event_id:
        raise ValueError("GeoJSON feature has no id")

    props = feature.get("properties")
    if not isinstance(props, Mapping):
        props = {}

    time = valid_number(props.get("time"))
    felt = valid_number(props.get("felt"))

    longitude = latitude = depth = None
    geometry = feature.get("geometry")
    coords = geometry.get("coordinates") if isinstance(geometry, Mapping) else None
    if isinstance(coords, list):
        if len(coords) >= 2:
            lon = valid_number(coords[0])
            lat = valid_number(coords[1])
            if (lon is not None and lat is not None
                    and -180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0):
                longitude, latitude = lon, lat
        if len(coords) >= 3:
            depth = valid_number(coords[2])

    return Event(
        id=event_id,
        time=int(time) if time is not None else None,
        magnitude=valid_number(props.get("mag")),
        place=_optional_str(props.get("place")),
        alert_level=AlertLevel.parse(props.get("alert")),
        tsunami=_boolean_like(props.get("tsunami")),
        depth_km=depth,
        longitude=longitude,
        latitude=latitude,
        url=_optional_str(props.get("url")),
        felt=int(felt) if felt is not None else None,
        event_type=_optional_str(props.get("type")),
        feature=dict(feature),
    )


# ---------------------------------------------------------------------------
# Intensity
# ---------------------------------------------------------------------------

# (upper magnitude bound, MMI label); the last entry catches everything above
_MMI_SCALE = (
    (3.5, "I"),
    (4.2, "II-III"),
    (4.8, "IV"),
    (5.4, "V"),
    (6.1, "VI"),
    (6.5, "VII"),
    (7.0, "VIII"),
    (7.4, "IX"),
    (8.1, "X"),
    (8.9, "XI"),
)


def magnitude_to_mmi(magnitude: Optional[float]) -> Optional[str]:
    """
    Simplified Modified Mercalli Intensity near the epicentre.

    Ignores depth, distance and site conditions. None for an invalid
    magnitude.

    >>> magnitude_to_mmi(5.0)
    'V'
    >>> magnitude_to_mmi(9.1)
    'XII'
    """
    if valid_number(magnitude) is None:
        return None
    for upper, label in _MMI_SCALE:
        if magnitude < upper:
            return label
    return "XII"
