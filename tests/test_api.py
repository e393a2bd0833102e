"""
test_api.py — HTTP tests for the seismic and cluster routes.

Uses FastAPI's TestClient with the monitor service overridden by one
wired to a scripted fetcher and an in-memory cache.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from backend.app import main as main_module
from backend.app.core import cache
from backend.app.core import health as health_module
from backend.app.main import app
from backend.app.seismic.fetcher import FetchOutcome, FetchStatus
from backend.app.seismic.models import parse_feature
from backend.app.seismic.reducer import Horizon, SeismicDataStore
from backend.app.seismic.service import SeismicMonitorService, get_monitor_service
from backend.app.seismic.window_filter import MS_PER_HOUR


def _make_feature(fid: str, hours_ago: float = 1.5, mag: float = 3.0, lon: float = -117.6, lat: float = 35.7) -> dict:
    return {
        "type": "Feature",
        "id": fid,
        "properties": {
            "mag": mag,
            "time": int(time.time() * 1000) - int(hours_ago * MS_PER_HOUR),
            "place": "10 km N of Ridgecrest, CA",
        },
        "geometry": {"type": "Point", "coordinates": [lon, lat, 7.5]},
    }


def _swarm():
    """Three linked events near Ridgecrest plus one far away."""
    return [
        _make_feature("ci1", mag=4.8),
        _make_feature("ci2", hours_ago=3, lat=35.75),
        _make_feature("ci3", hours_ago=5, lat=35.8),
        _make_feature("nc9", lon=-122.3, lat=37.9),
    ]


class ScriptedFetcher:
    def __init__(self, features=None):
        self.features = features

    async def fetch(self, horizon: Horizon) -> FetchOutcome:
        now = int(time.time() * 1000)
        if self.features is None:
            return FetchOutcome(
                horizon=horizon,
                status=FetchStatus.BOTH_FAILED,
                primary_error="HTTP 500 Internal Server Error",
                secondary_error="features array is empty",
                fetched_at=now,
            )
        return FetchOutcome(
            horizon=horizon,
            status=FetchStatus.PRIMARY_OK,
            events=[parse_feature(f) for f in self.features],
            fetched_at=now,
        )

    async def close(self) -> None:
        pass


@pytest.fixture
def memory_cache(monkeypatch):
    store = {}

    async def _get(key):
        return store.get(key)

    async def _set(key, value, ttl=None):
        store[key] = value
        return True

    monkeypatch.setattr(cache, "cache_get", _get)
    monkeypatch.setattr(cache, "cache_set", _set)
    return store


@pytest.fixture
def make_client(monkeypatch, memory_cache):
    async def _no_ping():
        return False

    monkeypatch.setattr(health_module, "ping_redis", _no_ping)

    def _factory(features=None):
        service = SeismicMonitorService(
            fetcher=ScriptedFetcher(features), store=SeismicDataStore(),
        )
        app.dependency_overrides[get_monitor_service] = lambda: service
        monkeypatch.setattr(main_module, "get_monitor_service", lambda: service)
        return TestClient(app), service

    yield _factory
    app.dependency_overrides.clear()


# ═══════════════════════════════════════════════════════════════════════════
# Seismic feed routes
# ═══════════════════════════════════════════════════════════════════════════

class TestHorizonRoutes:

    def test_get_horizon_loads_on_demand(self, make_client):
        client, _ = make_client(_swarm())
        resp = client.get("/api/v1/seismic/horizons/short", params={"include_events": False})
        assert resp.status_code == 200
        body = resp.json()
        assert body["horizon"] == "short"
        assert body["window_counts"]["last_24_hours"] == 4
        assert body["source"] == "primary"
        assert body["status"]["last_error"] is None

    def test_both_sources_failing_returns_502(self, make_client):
        client, _ = make_client(None)
        resp = client.get("/api/v1/seismic/horizons/medium")
        assert resp.status_code == 502
        error = resp.json()["error"]
        assert error["code"] == "EXTERNAL_SERVICE_ERROR"
        assert "Primary source failed" in error["message"]
        assert "secondary source failed" in error["message"]

    def test_unknown_horizon_rejected(self, make_client):
        client, _ = make_client(_swarm())
        assert client.get("/api/v1/seismic/horizons/decade").status_code == 422

    def test_refresh_all(self, make_client):
        client, _ = make_client(_swarm())
        resp = client.post("/api/v1/seismic/refresh")
        assert resp.status_code == 200
        body = resp.json()
        assert {r["horizon"] for r in body["results"]} == {"short", "medium", "long"}
        assert body["major_events"]["most_recent"]["id"] == "ci1"

    def test_status(self, make_client):
        client, _ = make_client(None)
        client.post("/api/v1/seismic/refresh")
        body = client.get("/api/v1/seismic/status").json()
        assert body["short"]["last_error"].startswith("Primary source failed")

    def test_major_events_unavailable_before_any_load(self, make_client):
        client, _ = make_client(None)
        resp = client.get("/api/v1/seismic/major-events")
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "DATA_UNAVAILABLE"


class TestRegionalRoutes:

    def test_nearby(self, make_client):
        client, _ = make_client(_swarm())
        resp = client.post("/api/v1/seismic/nearby", json={
            "latitude": 35.7, "longitude": -117.6, "radius_km": 50, "horizon": "short",
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["results_count"] == 3
        assert body["events"][0]["id"] == "ci1"
        assert body["events"][0]["distance_km"] == 0.0
        assert body["events"][0]["intensity"] == "IV"

    def test_nearby_min_magnitude(self, make_client):
        client, _ = make_client(_swarm())
        resp = client.post("/api/v1/seismic/nearby", json={
            "latitude": 35.7, "longitude": -117.6, "radius_km": 50,
            "horizon": "short", "min_magnitude": 4.0,
        })
        assert [e["id"] for e in resp.json()["events"]] == ["ci1"]

    def test_near_feature(self, make_client):
        client, _ = make_client(_swarm())
        resp = client.post("/api/v1/seismic/near-feature", json={
            "features": _swarm(),
            "coordinates": [[-122.5, 37.7], [-122.0, 38.1]],
            "max_distance_km": 30,
        })
        assert resp.status_code == 200
        assert [e["id"] for e in resp.json()["events"]] == ["nc9"]

    def test_unknown_window_is_404(self, make_client):
        client, _ = make_client(_swarm())
        resp = client.post("/api/v1/seismic/nearby", json={
            "latitude": 35.7, "longitude": -117.6, "horizon": "short", "window": "last_decade",
        })
        assert resp.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Cluster routes
# ═══════════════════════════════════════════════════════════════════════════

class TestClusterRoutes:

    def test_calculate_sets_cache_header(self, make_client):
        client, _ = make_client(_swarm())
        payload = {"features": _swarm(), "max_distance_km": 50, "min_events": 3}

        first = client.post("/api/v1/clusters/calculate", json=payload)
        assert first.status_code == 200
        assert first.headers["X-Cache-Hit"] == "false"
        body = first.json()
        assert body["cluster_count"] == 1
        assert body["clusters"][0]["representative_id"] == "ci1"
        assert body["clusters"][0]["member_ids"] == ["ci1", "ci3", "ci2"]
        assert body["clusters"][0]["events"] is None

        second = client.post("/api/v1/clusters/calculate", json=payload)
        assert second.headers["X-Cache-Hit"] == "true"
        assert second.json()["clusters"] == body["clusters"]

    def test_calculate_from_retained_window(self, make_client):
        client, _ = make_client(_swarm())
        resp = client.post("/api/v1/clusters/calculate", json={
            "horizon": "medium", "window": "last_72_hours", "include_events": True,
        })
        assert resp.status_code == 200
        cluster = resp.json()["clusters"][0]
        assert len(cluster["events"]) == 3

    def test_malformed_features_rejected(self, make_client):
        client, _ = make_client(_swarm())
        bad = _swarm()
        del bad[2]["geometry"]
        resp = client.post("/api/v1/clusters/calculate", json={"features": bad})
        assert resp.status_code == 422
        assert "index 2" in resp.json()["error"]["message"]

    def test_invalid_parameters_rejected(self, make_client):
        client, _ = make_client(_swarm())
        resp = client.post("/api/v1/clusters/calculate", json={"features": [], "min_events": 0})
        assert resp.status_code == 422

    def test_locate_by_overview_id(self, make_client):
        client, _ = make_client(_swarm())
        resp = client.post("/api/v1/clusters/locate", json={
            "features": _swarm(), "cluster_id": "overview_cluster_ci1_5",
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["cluster"]["representative_id"] == "ci1"
        assert body["cluster"]["count"] == 3
        assert body["previous_count"] == 5

    def test_locate_by_representative(self, make_client):
        client, _ = make_client(_swarm())
        resp = client.post("/api/v1/clusters/locate", json={
            "features": _swarm(), "representative_id": "ci1",
        })
        assert resp.status_code == 200
        assert resp.json()["previous_count"] is None

    def test_locate_unknown_is_404(self, make_client):
        client, _ = make_client(_swarm())
        resp = client.post("/api/v1/clusters/locate", json={
            "features": _swarm(), "representative_id": "nc9",
        })
        assert resp.status_code == 404

    def test_locate_unparseable_id_is_404(self, make_client):
        client, _ = make_client(_swarm())
        resp = client.post("/api/v1/clusters/locate", json={
            "features": _swarm(), "cluster_id": "3-quakes-near-somewhere",
        })
        assert resp.status_code == 404

    def test_locate_requires_an_identifier(self, make_client):
        client, _ = make_client(_swarm())
        resp = client.post("/api/v1/clusters/locate", json={"features": _swarm()})
        assert resp.status_code == 422


# ═══════════════════════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:

    def test_liveness(self, make_client):
        client, _ = make_client(None)
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_readiness_unhealthy_before_load(self, make_client):
        client, _ = make_client(None)
        resp = client.get("/health/ready")
        assert resp.status_code == 503
        assert resp.json()["status"] == "unhealthy"

    def test_degraded_with_partial_data(self, make_client):
        client, service = make_client(_swarm())
        client.get("/api/v1/seismic/horizons/short")
        resp = client.get("/health/ready")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "degraded"
        feeds = next(c for c in body["components"] if c["name"] == "seismic_feeds")
        assert "medium" in feeds["message"]

    def test_root(self, make_client):
        client, _ = make_client(None)
        assert "spatio-temporal-clustering" in client.get("/").json()["modules"]


class TestMiddleware:

    def test_request_id_echoed(self, make_client):
        client, _ = make_client(None)
        resp = client.get("/", headers={"X-Request-ID": "req-42"})
        assert resp.headers["X-Request-ID"] == "req-42"
        assert resp.headers["X-Process-Time"].endswith("ms")

    def test_cors_preflight_passes_through_request_logging(self, make_client):
        client, _ = make_client(None)
        resp = client.options(
            "/api/v1/clusters/calculate",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
                "X-Request-ID": "pre-1",
            },
        )
        assert resp.status_code == 200
        assert "access-control-allow-origin" in resp.headers
        assert resp.headers["X-Request-ID"] == "pre-1"
