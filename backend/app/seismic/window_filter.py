"""
Time-window selection and id deduplication over event collections.

Windows are half-open: ``[reference - start, reference - end)``. An event
exactly at the start boundary is included, one exactly at the end boundary
is excluded. Events without a valid time never match a window.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence, Set

from backend.app.seismic.models import Event

MS_PER_HOUR: int = 3_600_000
MS_PER_DAY: int = 24 * MS_PER_HOUR


def select_window(
    events: Iterable[Event],
    start_offset: float,
    end_offset: float,
    reference_time: int,
    unit_ms: int = MS_PER_HOUR,
) -> List[Event]:
    """
    Events with ``time`` in ``[reference - start·unit, reference - end·unit)``.

    Parameters
    ----------
    events : iterable of Event
    start_offset : float
        Older edge of the window, in ``unit_ms`` units before the reference.
    end_offset : float
        Newer edge of the window; must not exceed ``start_offset``.
    reference_time : int
        Epoch milliseconds the offsets are measured back from.
    unit_ms : int
        Size of one offset unit in milliseconds (hours by default).
    """
    if end_offset > start_offset:
        raise ValueError(
            f"end_offset ({end_offset}) must not exceed start_offset ({start_offset})"
        )
    window_start = reference_time - start_offset * unit_ms
    window_end = reference_time - end_offset * unit_ms
    return [
        e for e in events
        if e.time is not None and window_start <= e.time < window_end
    ]


def select_hours(
    events: Iterable[Event], start_hours: float, end_hours: float, reference_time: int,
) -> List[Event]:
    return select_window(events, start_hours, end_hours, reference_time, MS_PER_HOUR)


def select_days(
    events: Iterable[Event], start_days: float, end_days: float, reference_time: int,
) -> List[Event]:
    return select_window(events, start_days, end_days, reference_time, MS_PER_DAY)


def dedupe_by_id(events: Sequence[Event]) -> List[Event]:
    """First occurrence of each id, input order preserved."""
    seen: Set[str] = set()
    unique: List[Event] = []
    for event in events:
        if event.id in seen:
            continue
        seen.add(event.id)
        unique.append(event)
    return unique
