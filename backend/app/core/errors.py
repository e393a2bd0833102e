"""
Error handling — seismic API exceptions and their HTTP mapping.

Each exception class carries its own HTTP status and machine-readable
code; ``register_error_handlers`` turns any of them into

    {"error": {"code", "message", "status", "details", "path", "method"}}

(``path`` / ``method`` only outside production).

    SeismicAPIError            500 INTERNAL_ERROR
    ├── NotFoundError          404 NOT_FOUND          unknown window / cluster
    ├── ValidationError        422 VALIDATION_ERROR   malformed caller features
    ├── ExternalServiceError   502 EXTERNAL_SERVICE_ERROR  both feed sources failed
    └── DataUnavailableError   503 DATA_UNAVAILABLE   nothing loaded yet

Usage:
    from backend.app.core.errors import NotFoundError

    raise NotFoundError("Cluster", representative_id="us7000abcd")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exceptions
# ═══════════════════════════════════════════════════════════════════════════

class SeismicAPIError(Exception):
    """Base class; subclasses override ``status_code`` and ``error_code``."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"
    headers: Optional[Dict[str, str]] = None

    def __init__(self, message: str = "An unexpected error occurred", **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}


class NotFoundError(SeismicAPIError):
    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(f"{resource} not found", resource=resource, **identifiers)


class ValidationError(SeismicAPIError):
    """Caller-supplied data failed a check pydantic cannot express."""

    status_code = 422
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        super().__init__(message, field=field, **details)


class ExternalServiceError(SeismicAPIError):
    """
    An upstream dependency gave no usable answer. For the feeds the
    message is the fetcher's combined primary/secondary explanation.
    """

    status_code = 502
    error_code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            f"External service '{service}' failed: {message}",
            service=service, **details,
        )


class DataUnavailableError(SeismicAPIError):
    """No horizon has loaded yet; clients should retry after a refresh."""

    status_code = 503
    error_code = "DATA_UNAVAILABLE"

    def __init__(self, horizon: str, last_error: Optional[str] = None):
        super().__init__(
            f"No data available yet for horizon '{horizon}'",
            horizon=horizon, last_error=last_error,
        )
        self.headers = {"Retry-After": str(settings.REFRESH_INTERVAL_SECONDS)}


# ═══════════════════════════════════════════════════════════════════════════
# Response body
# ═══════════════════════════════════════════════════════════════════════════

def error_body(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": error_code, "message": message, "status": status_code}
    if details:
        error["details"] = details
    if request is not None and not settings.is_production:
        error["path"] = request.url.path
        error["method"] = request.method
    return {"error": error}


# ═══════════════════════════════════════════════════════════════════════════
# Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Attach the seismic, ValueError and catch-all handlers to ``app``."""

    @app.exception_handler(SeismicAPIError)
    async def handle_seismic_error(request: Request, exc: SeismicAPIError):
        level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(
            level, "%s %s → %s: %s",
            request.method, request.url.path, exc.error_code, exc.message,
            extra={"status_code": exc.status_code, "endpoint": request.url.path},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.status_code, exc.error_code, exc.message, exc.details, request),
            headers=exc.headers,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        # Parameter checks inside the clustering and geometry code
        logger.warning("Rejected parameters on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=422,
            content=error_body(422, "VALIDATION_ERROR", str(exc), request=request),
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical("Unhandled exception on %s", request.url.path, exc_info=exc)
        details = None
        if settings.DEBUG:
            details = {"traceback": traceback.format_exception(type(exc), exc, exc.__traceback__)}
        return JSONResponse(
            status_code=500,
            content=error_body(
                500, "INTERNAL_ERROR",
                str(exc) if settings.DEBUG else "Internal server error",
                details, request,
            ),
        )
