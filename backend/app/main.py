"""
Seismic Activity Monitor — FastAPI entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Set ENABLE_SCHEDULED_REFRESH=true to keep every horizon refreshed in the
background; otherwise horizons load on first request or via
POST /api/v1/seismic/refresh.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.app.api.v1.clusters import router as cluster_router
from backend.app.api.v1.seismic import router as seismic_router
from backend.app.core.cache import close_redis
from backend.app.core.config import settings
from backend.app.core.errors import register_error_handlers
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.core.logging_config import get_logger, setup_logging
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.seismic.refresh_jobs import ScheduledRefreshRunner
from backend.app.seismic.service import get_monitor_service

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = get_monitor_service()
    runner = ScheduledRefreshRunner(service) if settings.ENABLE_SCHEDULED_REFRESH else None
    logger.info(
        "%s v%s starting [%s], scheduled refresh %s",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        f"every {settings.REFRESH_INTERVAL_SECONDS}s" if runner else "off",
    )
    if runner:
        await runner.start()
    try:
        yield
    finally:
        if runner:
            await runner.stop()
        await service.close()
        await close_redis()
        logger.info("%s stopped", settings.APP_NAME)


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Earthquake feed aggregation: day/week/month snapshots from a "
        "structured store with fallback to the raw GeoJSON feed, rolling "
        "windows, daily counts, samples and histograms, alert and tsunami "
        "signals, major-event tracking, regional queries and cached "
        "spatio-temporal clustering."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.CORS_ALLOW_ALL else settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Cache-Hit", "X-Request-ID", "X-Process-Time"],
)
# Added last, so it wraps CORS and stamps preflight responses too
app.add_middleware(RequestLoggingMiddleware)

register_error_handlers(app)

app.include_router(seismic_router)
app.include_router(cluster_router)


@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "feed-fallback-fetch",
            "multi-horizon-aggregation",
            "major-event-tracking",
            "spatio-temporal-clustering",
            "regional-context",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Full component report; always 200."""
    report = await run_health_check(get_monitor_service().store)
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness():
    """503 until at least one horizon has data."""
    report = await run_health_check(get_monitor_service().store)
    if report.status is HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
