"""
Major-event history: the two most recent distinct events at or above the
significance threshold, carried across feed refreshes of every horizon.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from backend.app.seismic.models import Event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MajorEventHistory:
    most_recent: Optional[Event] = None
    previous: Optional[Event] = None

    @property
    def interval_ms(self) -> Optional[int]:
        """Time between the two slots, None unless both are filled."""
        if self.most_recent is None or self.previous is None:
            return None
        return self.most_recent.time - self.previous.time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "most_recent": self.most_recent.to_dict() if self.most_recent else None,
            "previous": self.previous.to_dict() if self.previous else None,
            "interval_ms": self.interval_ms,
        }


def qualifying_events(events: Iterable[Event], threshold: float) -> List[Event]:
    """Events with a valid time and a valid magnitude ``>= threshold``."""
    return [e for e in events if e.has_valid_time and e.magnitude_at_least(threshold)]


def consolidate(
    most_recent: Optional[Event],
    previous: Optional[Event],
    new_qualifying: Iterable[Event],
) -> MajorEventHistory:
    """
    Merge new qualifying events into the 2-slot history.

    The union keeps the last copy of each id (fresher data replaces
    stale), drops events without a valid time, sorts newest first and
    keeps the top two.
    """
    union: List[Event] = [e for e in (most_recent, previous) if e is not None]
    union.extend(new_qualifying)

    latest_by_id: Dict[str, Event] = {}
    for event in union:
        # Re-inserting moves the key to the end; last occurrence wins
        latest_by_id.pop(event.id, None)
        latest_by_id[event.id] = event

    ranked = sorted(
        (e for e in latest_by_id.values() if e.has_valid_time),
        key=lambda e: e.time,
        reverse=True,
    )
    return MajorEventHistory(
        most_recent=ranked[0] if ranked else None,
        previous=ranked[1] if len(ranked) > 1 else None,
    )


class MajorEventTracker:
    """
    Owner of the shared MajorEventHistory.

    Horizons complete concurrently; ``merge`` serialises their updates so
    each one reads and replaces the history as a single step.
    """

    def __init__(self, threshold: float):
        self.threshold = threshold
        self._history = MajorEventHistory()
        self._lock = threading.Lock()

    @property
    def history(self) -> MajorEventHistory:
        return self._history

    def merge(self, events: Iterable[Event]) -> MajorEventHistory:
        """Fold the qualifying subset of ``events`` into the history."""
        candidates = qualifying_events(events, self.threshold)
        with self._lock:
            current = self._history
            updated = consolidate(current.most_recent, current.previous, candidates)
            self._history = updated

        if updated.most_recent is not None and (
            current.most_recent is None or current.most_recent.id != updated.most_recent.id
        ):
            logger.info(
                "New most recent major event %s (M%s, %s)",
                updated.most_recent.id, updated.most_recent.magnitude,
                updated.most_recent.place,
            )
        return updated

    def reset(self) -> None:
        with self._lock:
            self._history = MajorEventHistory()
