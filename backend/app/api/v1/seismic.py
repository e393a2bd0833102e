"""
FastAPI seismic feed endpoints.

Endpoints:
    GET  /api/v1/seismic/horizons/{horizon} — Derived state of one horizon
    POST /api/v1/seismic/refresh            — Refresh every horizon now
    GET  /api/v1/seismic/status             — Per-horizon refresh status
    GET  /api/v1/seismic/major-events       — Two most recent major events
    POST /api/v1/seismic/nearby             — Events within a radius of a point
    POST /api/v1/seismic/near-feature       — Events near a fault trace / polyline
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from backend.app.api.schemas import (
    EventSelection,
    NearbyEventOut,
    NearbyEventsRequest,
    NearbyEventsResponse,
    NearFeatureRequest,
)
from backend.app.core.errors import (
    DataUnavailableError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from backend.app.seismic.models import Event, feature_shape_error, magnitude_to_mmi, parse_feature
from backend.app.seismic.reducer import DerivedWindowState, Horizon
from backend.app.seismic.service import SeismicMonitorService, get_monitor_service
from backend.app.spatial.geo_math import (
    Coordinate,
    filter_events_near_polyline,
    filter_events_within_radius,
    format_distance,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/seismic", tags=["seismic-feed"])


# ---------------------------------------------------------------------------
# Helpers shared with the cluster routes
# ---------------------------------------------------------------------------

async def ensure_state(service: SeismicMonitorService, horizon: Horizon) -> DerivedWindowState:
    """Current state of ``horizon``, loading it first if it never has been."""
    state = service.store.get(horizon)
    if state is not None:
        return state
    result = await service.refresh(horizon)
    if not result.ok:
        raise ExternalServiceError(
            "seismic-feed", result.outcome.error_message, horizon=horizon.value,
        )
    return result.state


async def resolve_events(service: SeismicMonitorService, selection: EventSelection) -> List[Event]:
    """Events named by a request: its own features, or a retained window."""
    if selection.features is not None:
        for index, feature in enumerate(selection.features):
            problem = feature_shape_error(feature)
            if problem:
                raise ValidationError(
                    f"Malformed feature at index {index}: {problem}", field="features",
                )
        return [parse_feature(f) for f in selection.features]

    await ensure_state(service, selection.horizon)
    try:
        return service.events_for(selection.horizon, selection.window)
    except KeyError:
        raise NotFoundError(
            "Window", horizon=selection.horizon.value, window=selection.window,
        )


def _nearby_out(event: Event, distance_km: float) -> NearbyEventOut:
    return NearbyEventOut(
        **event.to_dict(),
        distance_km=round(distance_km, 2),
        distance_display=format_distance(distance_km),
        intensity=magnitude_to_mmi(event.magnitude),
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/horizons/{horizon}", summary="Derived state of one horizon")
async def get_horizon(
    horizon: Horizon,
    refresh: bool = Query(False, description="Fetch the feed before answering"),
    include_events: bool = Query(True, description="Include event arrays"),
    service: SeismicMonitorService = Depends(get_monitor_service),
) -> Dict[str, Any]:
    if refresh:
        result = await service.refresh(horizon)
        if not result.ok:
            raise ExternalServiceError(
                "seismic-feed", result.outcome.error_message, horizon=horizon.value,
            )
        state = result.state
    else:
        state = await ensure_state(service, horizon)

    body = state.to_dict(include_events=include_events)
    body["status"] = service.store.status(horizon).to_dict()
    return body


@router.post("/refresh", summary="Refresh every horizon now")
async def refresh_all(
    service: SeismicMonitorService = Depends(get_monitor_service),
) -> Dict[str, Any]:
    results = await service.refresh_all()
    return {
        "results": [r.to_dict() for r in results],
        "major_events": service.store.major_events.to_dict(),
    }


@router.get("/status", summary="Per-horizon refresh status")
async def get_status(
    service: SeismicMonitorService = Depends(get_monitor_service),
) -> Dict[str, Any]:
    return {h.value: service.store.status(h).to_dict() for h in Horizon}


@router.get("/major-events", summary="Most recent and previous major events")
async def get_major_events(
    service: SeismicMonitorService = Depends(get_monitor_service),
) -> Dict[str, Any]:
    if all(service.store.get(h) is None for h in Horizon):
        raise DataUnavailableError(
            "any", service.store.status(Horizon.SHORT).last_error,
        )
    return service.store.major_events.to_dict()


@router.post(
    "/nearby",
    response_model=NearbyEventsResponse,
    summary="Events within a radius of a point",
)
async def get_nearby_events(
    body: NearbyEventsRequest,
    service: SeismicMonitorService = Depends(get_monitor_service),
):
    events = await resolve_events(service, body)
    if body.min_magnitude is not None:
        events = [e for e in events if e.magnitude_at_least(body.min_magnitude)]

    center = Coordinate(latitude=body.latitude, longitude=body.longitude)
    matched = filter_events_within_radius(events, center, body.radius_km)[: body.max_results]

    return NearbyEventsResponse(
        horizon=body.horizon,
        window=body.window,
        total_checked=len(events),
        results_count=len(matched),
        events=[_nearby_out(e, d) for e, d in matched],
    )


@router.post(
    "/near-feature",
    response_model=NearbyEventsResponse,
    summary="Events near a linear feature",
)
async def get_events_near_feature(
    body: NearFeatureRequest,
    service: SeismicMonitorService = Depends(get_monitor_service),
):
    events = await resolve_events(service, body)
    line = [Coordinate.from_lon_lat(pair) for pair in body.coordinates]
    matched = filter_events_near_polyline(events, line, body.max_distance_km)[: body.max_results]

    return NearbyEventsResponse(
        horizon=body.horizon,
        window=body.window,
        total_checked=len(events),
        results_count=len(matched),
        events=[_nearby_out(e, d) for e, d in matched],
    )
