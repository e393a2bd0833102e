"""
FastAPI cluster endpoints.

Endpoints:
    POST /api/v1/clusters/calculate — Spatio-temporal clusters (X-Cache-Hit header)
    POST /api/v1/clusters/locate    — One cluster by representative or overview id
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response

from backend.app.api.schemas import ClusterListResponse, ClusterRequest, LocateClusterRequest
from backend.app.api.v1.seismic import resolve_events
from backend.app.core.errors import NotFoundError
from backend.app.seismic.clustering import locate_cluster_by_representative, parse_overview_cluster_id
from backend.app.seismic.service import SeismicMonitorService, get_monitor_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/clusters", tags=["clusters"])

CACHE_HIT_HEADER = "X-Cache-Hit"


@router.post(
    "/calculate",
    response_model=ClusterListResponse,
    summary="Group events into spatio-temporal clusters",
)
async def calculate_clusters(
    body: ClusterRequest,
    response: Response,
    service: SeismicMonitorService = Depends(get_monitor_service),
):
    events = await resolve_events(service, body)
    result = await service.clusters(
        events, body.max_distance_km, body.min_events, body.time_window_hours,
    )
    response.headers[CACHE_HIT_HEADER] = "true" if result.cache_hit else "false"

    return ClusterListResponse(
        cache_hit=result.cache_hit,
        signature=result.signature,
        event_count=len(events),
        cluster_count=len(result.clusters),
        clusters=[c.to_dict(include_events=body.include_events) for c in result.clusters],
    )


@router.post("/locate", summary="Re-resolve a cluster against current data")
async def locate_cluster(
    body: LocateClusterRequest,
    response: Response,
    service: SeismicMonitorService = Depends(get_monitor_service),
):
    """
    Recompute clusters from current data and return the one whose
    representative matches. An overview id carries the representative id
    and the member count it had when it was issued; the count may have
    changed since and is reported back as ``previous_count``.
    """
    representative_id = body.representative_id
    previous_count = None
    if representative_id is None:
        parsed = parse_overview_cluster_id(body.cluster_id)
        if parsed is None:
            raise NotFoundError("Cluster", cluster_id=body.cluster_id)
        representative_id, previous_count = parsed

    events = await resolve_events(service, body)
    result = await service.clusters(
        events, body.max_distance_km, body.min_events, body.time_window_hours,
    )
    response.headers[CACHE_HIT_HEADER] = "true" if result.cache_hit else "false"

    cluster = locate_cluster_by_representative(result.clusters, representative_id)
    if cluster is None:
        raise NotFoundError("Cluster", representative_id=representative_id)

    if previous_count is not None and previous_count != cluster.count:
        logger.info(
            "Cluster %s changed size: %d → %d",
            representative_id, previous_count, cluster.count,
        )
    return {
        "cluster": cluster.to_dict(include_events=body.include_events),
        "previous_count": previous_count,
        "cache_hit": result.cache_hit,
    }
