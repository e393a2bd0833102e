"""
Server-side cache of computed clusters.

Entries hold only ids (``[{representative_id, member_ids}]``) under the
request's ``cluster_signature``; a hit is re-hydrated against the caller's
own events. Anything that prevents a faithful rebuild (Redis down,
malformed payload, an id the caller no longer has) is reported as a miss
so the caller computes locally instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from backend.app.core import cache
from backend.app.core.config import settings
from backend.app.seismic.clustering import (
    Cluster,
    cluster_signature,
    compute_clusters,
    strength_key,
)
from backend.app.seismic.models import Event

logger = logging.getLogger(__name__)


@dataclass
class ClusterCacheLookup:
    hit: bool
    clusters: List[Cluster] = field(default_factory=list)


@dataclass
class ClusterResult:
    clusters: List[Cluster]
    cache_hit: bool
    signature: str


def _serialise(clusters: Sequence[Cluster]) -> List[Dict[str, Any]]:
    return [
        {"representative_id": c.representative_id, "member_ids": c.member_ids}
        for c in clusters
    ]


def _rehydrate(payload: Any, events: Sequence[Event]) -> Optional[List[Cluster]]:
    if not isinstance(payload, list):
        return None

    by_id: Dict[str, Event] = {}
    for event in events:
        by_id.setdefault(event.id, event)

    clusters: List[Cluster] = []
    for entry in payload:
        if not isinstance(entry, dict):
            return None
        member_ids = entry.get("member_ids")
        if not isinstance(member_ids, list) or not member_ids:
            return None
        try:
            members = [by_id[mid] for mid in member_ids]
        except (KeyError, TypeError):
            return None
        cluster = Cluster(events=tuple(sorted(members, key=strength_key)))
        if cluster.representative_id != entry.get("representative_id"):
            return None
        clusters.append(cluster)
    return clusters


class ClusterCache:
    """Redis-backed store for cluster id lists keyed by request signature."""

    def __init__(self, ttl: Optional[int] = None):
        self.ttl = ttl or settings.CLUSTER_CACHE_TTL

    async def lookup(self, signature: str, events: Sequence[Event]) -> ClusterCacheLookup:
        payload = await cache.cache_get(signature)
        if payload is None:
            return ClusterCacheLookup(hit=False)

        clusters = _rehydrate(payload, events)
        if clusters is None:
            logger.warning("Discarding unusable cluster cache entry %s", signature)
            return ClusterCacheLookup(hit=False)
        return ClusterCacheLookup(hit=True, clusters=clusters)

    async def store(self, signature: str, clusters: Sequence[Cluster]) -> bool:
        return await cache.cache_set(signature, _serialise(clusters), ttl=self.ttl)


async def compute_clusters_cached(
    events: Sequence[Event],
    max_distance_km: float,
    min_events: int,
    time_window_hours: float,
    cluster_cache: Optional[ClusterCache] = None,
) -> ClusterResult:
    """
    ``compute_clusters`` behind the cache: check first, compute on a miss,
    then populate.
    """
    cluster_cache = cluster_cache or ClusterCache()
    signature = cluster_signature(events, max_distance_km, min_events, time_window_hours)

    lookup = await cluster_cache.lookup(signature, events)
    if lookup.hit:
        logger.debug("Cluster cache hit %s", signature, extra={"cache_hit": True})
        return ClusterResult(clusters=lookup.clusters, cache_hit=True, signature=signature)

    clusters = compute_clusters(events, max_distance_km, min_events, time_window_hours)
    stored = await cluster_cache.store(signature, clusters)
    if not stored:
        logger.debug("Cluster result for %s not cached", signature)
    return ClusterResult(clusters=clusters, cache_hit=False, signature=signature)
