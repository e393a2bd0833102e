"""
Pydantic schemas for the seismic monitoring API.

Separated from the route handlers so they are reusable across the
codebase (background workers, tests).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from backend.app.core.config import settings
from backend.app.seismic.reducer import Horizon


# ---------------------------------------------------------------------------
# Shared pieces
# ---------------------------------------------------------------------------

class EventSelection(BaseModel):
    """
    Which events a request operates on: explicit GeoJSON features, or a
    retained window of one horizon (the horizon's widest window when
    ``window`` is omitted).
    """
    features: Optional[List[Dict[str, Any]]] = Field(
        default=None,
        description="GeoJSON features to use instead of retained data",
    )
    horizon: Horizon = Field(
        default=Horizon.MEDIUM,
        description="Horizon whose retained window supplies the events",
    )
    window: Optional[str] = Field(
        default=None,
        description="Window name, e.g. 'last_72_hours' or 'last_30_days'",
        examples=["last_7_days"],
    )


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class NearbyEventsRequest(EventSelection):
    """Request body for POST /api/v1/seismic/nearby."""
    latitude: float = Field(..., ge=-90.0, le=90.0, examples=[35.68])
    longitude: float = Field(..., ge=-180.0, le=180.0, examples=[139.69])
    radius_km: float = Field(
        default=500.0, gt=0, le=20_000,
        description="Search radius in kilometers",
    )
    min_magnitude: Optional[float] = Field(default=None, ge=-2, le=10)
    max_results: int = Field(default=100, ge=1, le=1000)


class NearFeatureRequest(EventSelection):
    """Request body for POST /api/v1/seismic/near-feature."""
    coordinates: List[List[float]] = Field(
        ...,
        min_length=1,
        description="Polyline vertices as [longitude, latitude] pairs",
        examples=[[[-122.5, 37.7], [-122.0, 37.3]]],
    )
    max_distance_km: float = Field(default=50.0, gt=0, le=5_000)
    max_results: int = Field(default=100, ge=1, le=1000)

    @field_validator("coordinates")
    @classmethod
    def _check_vertices(cls, v: List[List[float]]) -> List[List[float]]:
        for pair in v:
            if len(pair) < 2:
                raise ValueError("each vertex needs [longitude, latitude]")
            lon, lat = pair[0], pair[1]
            if not (-180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0):
                raise ValueError(f"vertex {pair} is outside valid lon/lat ranges")
        return v


class ClusterRequest(EventSelection):
    """Request body for POST /api/v1/clusters/calculate."""
    max_distance_km: float = Field(
        default=settings.CLUSTER_MAX_DISTANCE_KM, gt=0, le=2_000,
    )
    min_events: int = Field(default=settings.CLUSTER_MIN_EVENTS, ge=1, le=1000)
    time_window_hours: float = Field(
        default=settings.CLUSTER_TIME_WINDOW_HOURS, gt=0, le=24 * 90,
    )
    include_events: bool = Field(
        default=False,
        description="Embed member events in each cluster",
    )


class LocateClusterRequest(ClusterRequest):
    """
    Request body for POST /api/v1/clusters/locate.

    Give either the representative event id, or an id from the older
    ``overview_cluster_<representative>_<count>`` scheme.
    """
    representative_id: Optional[str] = None
    cluster_id: Optional[str] = None
    include_events: bool = True

    @model_validator(mode="after")
    def _one_identifier(self) -> "LocateClusterRequest":
        if not self.representative_id and not self.cluster_id:
            raise ValueError("representative_id or cluster_id is required")
        return self


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class EventOut(BaseModel):
    id: str
    time: Optional[int] = None
    magnitude: Optional[float] = None
    place: Optional[str] = None
    alert_level: Optional[str] = None
    tsunami: bool = False
    depth_km: Optional[float] = None
    longitude: Optional[float] = None
    latitude: Optional[float] = None
    url: Optional[str] = None


class NearbyEventOut(EventOut):
    distance_km: float
    distance_display: str
    intensity: Optional[str] = Field(
        default=None, description="Rough epicentral Mercalli intensity",
    )


class NearbyEventsResponse(BaseModel):
    horizon: Horizon
    window: Optional[str]
    total_checked: int
    results_count: int
    events: List[NearbyEventOut]


class ClusterOut(BaseModel):
    representative_id: str
    overview_id: str
    stable_key: str
    slug: str
    title: str
    description: str
    location: str
    count: int
    max_magnitude: Optional[float]
    min_magnitude: Optional[float]
    mean_magnitude: Optional[float]
    start_time: int
    end_time: int
    duration_hours: float
    depth_range: str
    centroid_lat: Optional[float]
    centroid_lon: Optional[float]
    significance: float
    member_ids: List[str]
    events: Optional[List[EventOut]] = None


class ClusterListResponse(BaseModel):
    cache_hit: bool
    signature: str
    event_count: int
    cluster_count: int
    clusters: List[ClusterOut]
