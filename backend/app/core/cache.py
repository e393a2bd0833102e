"""
Redis cache layer for computed cluster results.

Values are stored as JSON strings under namespaced keys built by
``make_cache_key``. Redis is an optimisation only: every helper reports a
miss (``None`` / ``False``) when the server is down or answers with
something unreadable, and the caller recomputes.

Usage:
    from backend.app.core import cache

    key = cache.make_cache_key("clusters", {"max_distance_km": 100})
    if await cache.cache_get(key) is None:
        await cache.cache_set(key, payload, ttl=3600)
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from backend.app.core.config import settings

logger = logging.getLogger(__name__)

_client: Optional[aioredis.Redis] = None


def _redis() -> aioredis.Redis:
    """Shared client; the connection pool connects on first command."""
    global _client
    if _client is None:
        _client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=2,
        )
        logger.debug("Redis client created for %s", settings.REDIS_URL.split("@")[-1])
    return _client


def make_cache_key(prefix: str, parts: Any) -> str:
    """
    ``<prefix>:<16 hex>`` digest of a JSON-serialisable description.
    Key order inside ``parts`` does not matter.
    """
    raw = json.dumps(parts, sort_keys=True, default=str)
    return f"{prefix}:{hashlib.md5(raw.encode()).hexdigest()[:16]}"


async def cache_get(key: str) -> Optional[Any]:
    """Decoded value under ``key``; None on a miss or any failure."""
    try:
        raw = await _redis().get(key)
    except (RedisError, OSError) as e:
        logger.warning("Cache read failed for %s: %s", key, e)
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Cache entry %s is not valid JSON; ignoring", key)
        return None


async def cache_set(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    """Store ``value`` as JSON with a TTL in seconds. False if not stored."""
    try:
        await _redis().set(key, json.dumps(value, default=str), ex=ttl or settings.REDIS_CACHE_TTL)
    except (RedisError, OSError) as e:
        logger.warning("Cache write failed for %s: %s", key, e)
        return False
    return True


async def ping_redis() -> bool:
    try:
        return bool(await _redis().ping())
    except (RedisError, OSError) as e:
        logger.info("Redis PING failed: %s", e)
        return False


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("Redis connection closed")
