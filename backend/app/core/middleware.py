"""
Request middleware — correlation ids, timing and one access-log line per
request.

Adds ``X-Request-ID`` and ``X-Process-Time`` to every response. The access
line carries the horizon named in the path and, for cluster routes, the
cache outcome reported through ``X-Cache-Hit``.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import bind_request_context, reset_request_context

logger = logging.getLogger(__name__)

_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")
_HORIZON_PREFIX = "/api/v1/seismic/horizons/"


def _horizon_from_path(path: str) -> Optional[str]:
    if path.startswith(_HORIZON_PREFIX):
        return path[len(_HORIZON_PREFIX):].split("/", 1)[0] or None
    return None


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        path = request.url.path
        client_ip = request.client.host if request.client else "unknown"

        token = bind_request_context(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            endpoint=path,
            horizon=_horizon_from_path(path),
        )
        start = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception:
                logger.error(
                    "%s %s → unhandled error after %.1fms",
                    request.method, path, (time.perf_counter() - start) * 1000,
                    extra={"status_code": 500, "endpoint": path},
                )
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

            if not path.startswith(_QUIET_PREFIXES):
                extra = {"duration_ms": duration_ms, "status_code": response.status_code, "endpoint": path}
                cache_flag = response.headers.get("X-Cache-Hit")
                if cache_flag is not None:
                    extra["cache_hit"] = cache_flag == "true"
                logger.log(
                    logging.WARNING if response.status_code >= 400 else logging.INFO,
                    "%s %s → %d (%.1fms)%s",
                    request.method, path, response.status_code, duration_ms,
                    " [cache hit]" if extra.get("cache_hit") else "",
                    extra=extra,
                )
            return response
        finally:
            reset_request_context(token)
