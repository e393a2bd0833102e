"""
Payload-bounding helpers for visualisation: random sampling that never
drops significant events, magnitude histograms and per-day counts.

Sampling policy for invalid magnitudes
---------------------------------------
An event whose magnitude is missing or unusable can never be "priority",
but it stays eligible as filler in the "other" pool. A priority sample of
size ``n`` therefore always has ``min(n, len(events))`` members.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from backend.app.seismic.models import Event
from backend.app.seismic.window_filter import MS_PER_DAY


# ═══════════════════════════════════════════════════════════════════════════
# Sampling
# ═══════════════════════════════════════════════════════════════════════════

def uniform_sample(
    events: Sequence[Event],
    size: int,
    rng: Optional[random.Random] = None,
) -> List[Event]:
    """
    ``size`` events drawn without replacement, or a copy of all of them
    when ``size >= len(events)``.
    """
    if size <= 0:
        return []
    if size >= len(events):
        return list(events)
    return (rng or random).sample(list(events), size)


def priority_sample(
    events: Sequence[Event],
    size: int,
    threshold: float,
    rng: Optional[random.Random] = None,
) -> List[Event]:
    """
    Sample that keeps every event at or above ``threshold`` when room allows.

    If the priority events alone fill ``size``, a uniform sample of them is
    returned. Otherwise all priority events are kept and the remainder is
    drawn uniformly from everything else.
    """
    if size <= 0:
        return []

    priority: List[Event] = []
    other: List[Event] = []
    for event in events:
        (priority if event.magnitude_at_least(threshold) else other).append(event)

    if len(priority) >= size:
        return uniform_sample(priority, size, rng)
    return priority + uniform_sample(other, size - len(priority), rng)


# ═══════════════════════════════════════════════════════════════════════════
# Magnitude histogram
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MagnitudeRange:
    """Half-open magnitude bin ``[min_value, max_value)``."""
    name: str
    min_value: float
    max_value: float

    def contains(self, magnitude: float) -> bool:
        return self.min_value <= magnitude < self.max_value


MAGNITUDE_RANGES: Tuple[MagnitudeRange, ...] = (
    MagnitudeRange("<1", -math.inf, 1.0),
    MagnitudeRange("1-1.9", 1.0, 2.0),
    MagnitudeRange("2-2.9", 2.0, 3.0),
    MagnitudeRange("3-3.9", 3.0, 4.0),
    MagnitudeRange("4-4.9", 4.0, 5.0),
    MagnitudeRange("5-5.9", 5.0, 6.0),
    MagnitudeRange("6-6.9", 6.0, 7.0),
    MagnitudeRange("7+", 7.0, math.inf),
)


def validate_ranges(ranges: Sequence[MagnitudeRange]) -> None:
    """
    Check that ``ranges`` are ordered, contiguous and cover the real line.

    Raises
    ------
    ValueError
        On an empty set, a gap, an overlap or a bounded extreme.
    """
    if not ranges:
        raise ValueError("At least one magnitude range is required")
    if ranges[0].min_value != -math.inf:
        raise ValueError(f"First range '{ranges[0].name}' must be open below")
    if ranges[-1].max_value != math.inf:
        raise ValueError(f"Last range '{ranges[-1].name}' must be open above")
    for r in ranges:
        if not r.min_value < r.max_value:
            raise ValueError(f"Range '{r.name}' is empty")
    for prev, nxt in zip(ranges, ranges[1:]):
        if prev.max_value != nxt.min_value:
            raise ValueError(
                f"Ranges '{prev.name}' and '{nxt.name}' are not contiguous"
            )


def histogram(
    events: Sequence[Event],
    ranges: Sequence[MagnitudeRange] = MAGNITUDE_RANGES,
) -> List[Dict[str, Any]]:
    """
    Count of events per magnitude range, in range order.

    Events with an invalid magnitude land in no bucket, so the counts sum
    to the number of events with a valid magnitude.
    """
    validate_ranges(ranges)
    counts = [0] * len(ranges)
    for event in events:
        if event.magnitude is None:
            continue
        for i, r in enumerate(ranges):
            if r.contains(event.magnitude):
                counts[i] += 1
                break
    return [{"name": r.name, "count": c} for r, c in zip(ranges, counts)]


# ═══════════════════════════════════════════════════════════════════════════
# Per-day counts
# ═══════════════════════════════════════════════════════════════════════════

def _day_label(day: datetime) -> str:
    return f"{day.strftime('%b')} {day.day}"


def daily_counts(
    events: Sequence[Event],
    days: int,
    reference_time: int,
) -> List[Dict[str, Any]]:
    """
    Events per UTC calendar day for the ``days`` days ending on the
    reference day, oldest first.

    Each bucket is ``{"date": "Jan 5", "day_start": <epoch ms>, "count": n}``.
    Events outside the span or without a valid time are ignored.
    """
    if days <= 0:
        return []

    ref_day = datetime.fromtimestamp(reference_time / 1000, tz=timezone.utc).replace(
        hour=0, minute=0, second=0, microsecond=0,
    )
    first_day = ref_day - timedelta(days=days - 1)
    first_ms = int(first_day.timestamp() * 1000)

    buckets = [
        {
            "date": _day_label(first_day + timedelta(days=i)),
            "day_start": first_ms + i * MS_PER_DAY,
            "count": 0,
        }
        for i in range(days)
    ]
    for event in events:
        if event.time is None:
            continue
        index = (event.time - first_ms) // MS_PER_DAY
        if 0 <= index < days:
            buckets[index]["count"] += 1
    return buckets
