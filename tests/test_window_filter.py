"""
test_window_filter.py — Tests for half-open time windows and id dedup.

Run with:
    pytest tests/test_window_filter.py -v
"""

from __future__ import annotations

import pytest

from backend.app.seismic.models import Event
from backend.app.seismic.window_filter import (
    MS_PER_DAY,
    MS_PER_HOUR,
    dedupe_by_id,
    select_days,
    select_hours,
    select_window,
)

REF = 1_700_000_000_000


def _make_event(eid: str, time=None, mag=None) -> Event:
    return Event(id=eid, time=time, magnitude=mag)


class TestSelectWindow:

    def test_start_boundary_included(self):
        e = _make_event("start", REF - 24 * MS_PER_HOUR)
        assert select_window([e], 24, 0, REF) == [e]

    def test_end_boundary_excluded(self):
        e = _make_event("end", REF - 1 * MS_PER_HOUR)
        assert select_window([e], 2, 1, REF) == []

    def test_reference_time_itself_excluded_when_end_zero(self):
        e = _make_event("now", REF)
        assert select_window([e], 1, 0, REF) == []

    def test_interior_event_included(self):
        e = _make_event("inside", REF - 90 * 60 * 1000)
        assert select_window([e], 2, 1, REF) == [e]

    def test_events_without_time_excluded(self):
        events = [_make_event("no-time"), _make_event("ok", REF - 1000)]
        assert [e.id for e in select_window(events, 1, 0, REF)] == ["ok"]

    def test_preserves_input_order(self):
        events = [_make_event(str(i), REF - i * 1000) for i in (5, 1, 3)]
        assert [e.id for e in select_window(events, 1, 0, REF)] == ["5", "1", "3"]

    def test_day_unit(self):
        e7 = _make_event("7d", REF - 7 * MS_PER_DAY)
        e14 = _make_event("14d", REF - 14 * MS_PER_DAY)
        assert select_window([e7, e14], 14, 7, REF, MS_PER_DAY) == [e14]
        assert select_days([e7, e14], 7, 0, REF) == [e7]

    def test_hours_helper(self):
        e = _make_event("a", REF - 30 * 60 * 1000)
        assert select_hours([e], 1, 0, REF) == [e]

    def test_inverted_offsets_rejected(self):
        with pytest.raises(ValueError):
            select_window([], 1, 2, REF)


class TestDedupeById:

    def test_exact_duplicate_collapses_to_one(self):
        a1 = _make_event("a", REF, 5.0)
        a2 = _make_event("a", REF, 5.0)
        result = dedupe_by_id([a1, a2])
        assert len(result) == 1
        assert result[0].id == "a"

    def test_first_occurrence_wins(self):
        first = _make_event("a", REF, 5.0)
        later = _make_event("a", REF, 5.5)
        assert dedupe_by_id([first, later])[0].magnitude == 5.0

    def test_order_preserved(self):
        events = [_make_event(i) for i in ("c", "a", "c", "b", "a")]
        assert [e.id for e in dedupe_by_id(events)] == ["c", "a", "b"]

    def test_idempotent(self):
        events = [_make_event(i) for i in ("x", "y", "x", "z", "y", "y")]
        once = dedupe_by_id(events)
        assert dedupe_by_id(once) == once

    def test_empty(self):
        assert dedupe_by_id([]) == []
