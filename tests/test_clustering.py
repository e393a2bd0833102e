"""
test_clustering.py — Tests for spatio-temporal clustering.

Covers:
    • Minimum size, distance and time-window linking
    • Transitive (chain) membership
    • Representative selection and deterministic ordering
    • Grid edge cases (antimeridian, poles, large distances)
    • Cluster summary fields and legacy overview ids
    • Cache signature stability

Run with:
    pytest tests/test_clustering.py -v
"""

from __future__ import annotations

import itertools
import math
import random

import pytest

from backend.app.seismic.clustering import (
    Cluster,
    cluster_signature,
    compute_clusters,
    events_fingerprint,
    locate_cluster_by_representative,
    parse_overview_cluster_id,
)
from backend.app.seismic.models import Event
from backend.app.seismic.window_filter import MS_PER_HOUR
from backend.app.spatial.geo_math import haversine_km

T0 = 1_700_000_000_000

# Off the Sanriku coast
BASE_LAT = 38.3
BASE_LON = 142.4


def _make_event(
    eid: str,
    dlat: float = 0.0,
    dlon: float = 0.0,
    hours: float = 0.0,
    mag=3.0,
    lat: float = BASE_LAT,
    lon: float = BASE_LON,
    depth=10.0,
    place: str = "80 km E of Namie, Japan",
) -> Event:
    return Event(
        id=eid,
        time=int(T0 + hours * MS_PER_HOUR),
        magnitude=mag,
        latitude=lat + dlat,
        longitude=lon + dlon,
        depth_km=depth,
        place=place,
    )


def _ids(cluster: Cluster):
    return sorted(cluster.member_ids)


def _brute_force_components(events, max_km, min_events, window_h):
    """Reference O(n²) connected components."""
    parent = list(range(len(events)))

    def find(x):
        while parent[x] != x:
            x = parent[x]
        return x

    for i, j in itertools.combinations(range(len(events)), 2):
        a, b = events[i], events[j]
        if (abs(a.time - b.time) <= window_h * MS_PER_HOUR
                and haversine_km(a.latitude, a.longitude, b.latitude, b.longitude) <= max_km):
            parent[find(i)] = find(j)

    groups = {}
    for i, e in enumerate(events):
        groups.setdefault(find(i), set()).add(e.id)
    return sorted(sorted(g) for g in groups.values() if len(g) >= min_events)


# ═══════════════════════════════════════════════════════════════════════════
# Linking rules
# ═══════════════════════════════════════════════════════════════════════════

class TestComputeClusters:

    def test_three_close_events_form_cluster(self):
        events = [_make_event("a"), _make_event("b", 0.1), _make_event("c", 0.0, 0.1)]
        clusters = compute_clusters(events, 100, 3, 48)
        assert len(clusters) == 1
        assert _ids(clusters[0]) == ["a", "b", "c"]

    def test_group_below_minimum_discarded(self):
        events = [_make_event("a"), _make_event("b", 0.1)]
        assert compute_clusters(events, 100, 3, 48) == []

    def test_far_event_excluded(self):
        events = [
            _make_event("a"), _make_event("b", 0.1), _make_event("c", 0.2),
            _make_event("far", 5.0),
        ]
        clusters = compute_clusters(events, 100, 3, 48)
        assert _ids(clusters[0]) == ["a", "b", "c"]

    def test_distance_threshold_inclusive(self):
        a = _make_event("a")
        b = _make_event("b", 0.5)
        d = haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)
        assert len(compute_clusters([a, b], d, 2, 48)) == 1
        assert compute_clusters([a, b], d * 0.999, 2, 48) == []

    def test_time_window_separates_close_events(self):
        events = [
            _make_event("a", hours=0), _make_event("b", 0.05, hours=1),
            _make_event("c", 0.1, hours=100),
        ]
        assert compute_clusters(events, 100, 3, 48) == []
        assert len(compute_clusters(events, 100, 2, 48)) == 1

    def test_time_window_inclusive(self):
        events = [_make_event("a", hours=0), _make_event("b", 0.05, hours=48)]
        assert len(compute_clusters(events, 100, 2, 48)) == 1

    def test_chain_is_transitive(self):
        # Consecutive links of ~78 km; ends ~310 km apart
        events = [_make_event(f"c{i}", 0.7 * i) for i in range(5)]
        clusters = compute_clusters(events, 100, 5, 48)
        assert len(clusters) == 1
        assert clusters[0].count == 5

    def test_two_separate_clusters(self):
        north = [_make_event(f"n{i}", 0.05 * i, mag=4.0) for i in range(3)]
        south = [_make_event(f"s{i}", -10 + 0.05 * i, mag=5.0) for i in range(4)]
        clusters = compute_clusters(north + south, 100, 3, 48)
        assert [c.count for c in clusters] == [4, 3]

    def test_duplicates_count_once(self):
        events = [_make_event("a"), _make_event("a"), _make_event("b", 0.1)]
        assert compute_clusters(events, 100, 3, 48) == []

    def test_events_without_time_or_location_skipped(self):
        events = [
            _make_event("a"), _make_event("b", 0.1),
            Event(id="notime", latitude=BASE_LAT, longitude=BASE_LON, magnitude=3.0),
            Event(id="noloc", time=T0, magnitude=3.0),
        ]
        assert compute_clusters(events, 100, 3, 48) == []

    def test_empty_input(self):
        assert compute_clusters([], 100, 3, 48) == []

    @pytest.mark.parametrize("kwargs", [
        {"max_distance_km": 0, "min_events": 3, "time_window_hours": 48},
        {"max_distance_km": 100, "min_events": 0, "time_window_hours": 48},
        {"max_distance_km": 100, "min_events": 3, "time_window_hours": 0},
    ])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ValueError):
            compute_clusters([], **kwargs)


class TestGridEdgeCases:

    def test_across_antimeridian(self):
        events = [
            _make_event("w", lat=-17.0, lon=179.9),
            _make_event("e", lat=-17.0, lon=-179.9),
            _make_event("e2", lat=-17.1, lon=-179.8),
        ]
        clusters = compute_clusters(events, 100, 3, 48)
        assert len(clusters) == 1

    def test_near_pole(self):
        events = [
            _make_event("p1", lat=89.8, lon=0.0),
            _make_event("p2", lat=89.8, lon=180.0),
            _make_event("p3", lat=89.9, lon=90.0),
        ]
        assert len(compute_clusters(events, 100, 3, 48)) == 1

    def test_large_distance_beyond_one_degree(self):
        events = [_make_event(f"w{i}", 0.0, 3.0 * i) for i in range(3)]
        # ~262 km spacing at 38°N
        assert compute_clusters(events, 200, 3, 48) == []
        assert len(compute_clusters(events, 300, 3, 48)) == 1

    def test_matches_brute_force_on_random_snapshot(self):
        rng = random.Random(2024)
        events = [
            Event(
                id=f"r{i:03d}",
                time=T0 + rng.randint(0, 72) * MS_PER_HOUR,
                magnitude=round(rng.uniform(1, 6), 1),
                latitude=rng.uniform(30, 45),
                longitude=rng.uniform(135, 150),
            )
            for i in range(300)
        ]
        got = sorted(_ids(c) for c in compute_clusters(events, 120, 3, 24))
        assert got == _brute_force_components(events, 120, 3, 24)


# ═══════════════════════════════════════════════════════════════════════════
# Representative & determinism
# ═══════════════════════════════════════════════════════════════════════════

class TestRepresentative:

    def test_highest_magnitude_wins(self):
        events = [_make_event("a", mag=3.0), _make_event("b", 0.1, mag=5.5), _make_event("c", 0.2)]
        cluster = compute_clusters(events, 100, 3, 48)[0]
        assert cluster.representative_id == "b"
        assert cluster.member_ids[0] == "b"

    def test_tie_broken_by_earliest_time(self):
        events = [
            _make_event("late", mag=5.0, hours=2),
            _make_event("early", 0.1, mag=5.0, hours=1),
            _make_event("other", 0.2, mag=2.0),
        ]
        assert compute_clusters(events, 100, 3, 48)[0].representative_id == "early"

    def test_tie_broken_by_id(self):
        events = [
            _make_event("zeta", mag=5.0),
            _make_event("alpha", 0.1, mag=5.0),
            _make_event("mid", 0.2, mag=2.0),
        ]
        assert compute_clusters(events, 100, 3, 48)[0].representative_id == "alpha"

    def test_invalid_magnitudes_rank_last(self):
        events = [_make_event("none", mag=None), _make_event("weak", 0.1, mag=0.5), _make_event("x", 0.2, mag=None)]
        assert compute_clusters(events, 100, 3, 48)[0].representative_id == "weak"

    def test_deterministic_across_runs_and_input_order(self):
        rng = random.Random(99)
        events = [_make_event(f"q{i}", rng.uniform(0, 1), rng.uniform(0, 1),
                              rng.uniform(0, 10), round(rng.uniform(1, 5), 1))
                  for i in range(40)]
        first = compute_clusters(events, 60, 3, 48)
        shuffled = events[:]
        rng.shuffle(shuffled)
        second = compute_clusters(shuffled, 60, 3, 48)
        assert [c.member_ids for c in first] == [c.member_ids for c in second]
        assert [c.representative_id for c in first] == [c.representative_id for c in second]


# ═══════════════════════════════════════════════════════════════════════════
# Cluster summary
# ═══════════════════════════════════════════════════════════════════════════

class TestClusterSummary:

    def _cluster(self) -> Cluster:
        events = [
            _make_event("big", mag=5.2, hours=0, depth=12.0),
            _make_event("m1", 0.1, mag=3.0, hours=3, depth=8.5),
            _make_event("m2", 0.2, mag=2.8, hours=6, depth=30.25),
            _make_event("m3", 0.3, mag=3.2, hours=9, depth=None),
        ]
        return compute_clusters(events, 100, 3, 48)[0]

    def test_magnitude_stats(self):
        c = self._cluster()
        assert c.count == 4
        assert c.max_magnitude == 5.2
        assert c.min_magnitude == 2.8
        assert c.mean_magnitude == pytest.approx((5.2 + 3.0 + 2.8 + 3.2) / 4)

    def test_time_span(self):
        c = self._cluster()
        assert c.start_time == T0
        assert c.end_time == T0 + 9 * MS_PER_HOUR
        assert c.duration_hours == pytest.approx(9.0)

    def test_depth_range(self):
        assert self._cluster().depth_range == "8.5-30.2km"

    def test_labels(self):
        c = self._cluster()
        assert c.location_label == "80 km E of Namie, Japan"
        assert c.title == "Cluster: 4 events near 80 km E of Namie, Japan, max M5.2"
        assert c.description.endswith("Duration: approx 9.0 hours.")

    def test_stable_key(self):
        c = self._cluster()
        bucket = T0 // (6 * MS_PER_HOUR)
        assert c.stable_key == f"v1_namie-japan_{bucket}_38.3-142.4"

    def test_slug(self):
        c = self._cluster()
        bucket = T0 // (6 * MS_PER_HOUR)
        assert c.slug == f"4-quakes-near-80-km-e-of-namie-japan-m5.2-{bucket}-38d3-142d4"

    def test_significance(self):
        assert self._cluster().significance == pytest.approx(5.2 * math.log10(4))

    def test_overview_id(self):
        assert self._cluster().overview_id == "overview_cluster_big_4"

    def test_to_dict_without_events(self):
        d = self._cluster().to_dict(include_events=False)
        assert "events" not in d
        assert d["member_ids"][0] == "big"

    def test_empty_cluster_rejected(self):
        with pytest.raises(ValueError):
            Cluster(events=())


# ═══════════════════════════════════════════════════════════════════════════
# Lookup & legacy ids
# ═══════════════════════════════════════════════════════════════════════════

class TestLocate:

    def test_locate_by_representative(self):
        north = [_make_event(f"n{i}", 0.05 * i, mag=4.0 + i / 10) for i in range(3)]
        south = [_make_event(f"s{i}", -10 + 0.05 * i, mag=5.0) for i in range(3)]
        clusters = compute_clusters(north + south, 100, 3, 48)
        found = locate_cluster_by_representative(clusters, "n2")
        assert found is not None
        assert found.representative_id == "n2"

    def test_locate_missing(self):
        assert locate_cluster_by_representative([], "nope") is None

    def test_parse_overview_id(self):
        assert parse_overview_cluster_id("overview_cluster_us7000abcd_5") == ("us7000abcd", 5)

    def test_parse_overview_id_with_underscores_in_event_id(self):
        assert parse_overview_cluster_id("overview_cluster_ak_024_3") == ("ak_024", 3)

    @pytest.mark.parametrize("value", [
        "10-quakes-near-somewhere", "overview_cluster_", "overview_cluster_abc",
        "overview_cluster_abc_x",
    ])
    def test_parse_rejects_other_formats(self, value):
        assert parse_overview_cluster_id(value) is None


class TestSignature:

    def test_order_independent(self):
        events = [_make_event("a"), _make_event("b", 0.1)]
        assert cluster_signature(events, 100, 3, 48) == cluster_signature(events[::-1], 100, 3, 48)

    def test_changes_with_parameters(self):
        events = [_make_event("a")]
        base = cluster_signature(events, 100, 3, 48)
        assert cluster_signature(events, 50, 3, 48) != base
        assert cluster_signature(events, 100, 4, 48) != base
        assert cluster_signature(events, 100, 3, 24) != base

    def test_changes_with_content(self):
        assert events_fingerprint([_make_event("a", mag=3.0)]) != events_fingerprint(
            [_make_event("a", mag=3.1)]
        )

    def test_prefix(self):
        assert cluster_signature([], 100, 3, 48).startswith("clusters:")
