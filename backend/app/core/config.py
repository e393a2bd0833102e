"""
Service configuration.

Every tunable of the feed pipeline lives here: where the two feed sources
are, how long to wait for them, the magnitude thresholds, the sizes of the
derived views, clustering defaults and the refresh cadence.

Values come from environment variables, then ``.env``, then the defaults
below.

Usage:
    from backend.app.core.config import settings
    print(settings.PRIMARY_STORE_URL)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Seismic Activity Monitor"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # ── CORS ──
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]
    CORS_ALLOW_ALL: bool = True

    # ── Redis (cluster result cache) ──
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_TTL: int = 300
    CLUSTER_CACHE_TTL: int = 3600

    # ── Feed sources ──
    PRIMARY_STORE_URL: str = "http://localhost:8787/api/get-earthquakes"
    PRIMARY_SOURCE_MARKER: str = "D1"  # required X-Data-Source value
    RAW_FEED_BASE_URL: str = "https://earthquake.usgs.gov/earthquakes/feed/v1.0/summary"
    FETCH_TIMEOUT_SECONDS: float = 15.0

    # ── Magnitude thresholds ──
    MAJOR_EVENT_THRESHOLD: float = 4.5
    FEELABLE_THRESHOLD: float = 2.5

    # ── Derived view sizes ──
    MAP_DISPLAY_LIMIT: int = 900
    SAMPLE_SIZE_WEEK: int = 300
    SAMPLE_SIZE_14_DAYS: int = 500
    SAMPLE_SIZE_30_DAYS: int = 700

    # ── Clustering defaults ──
    CLUSTER_MAX_DISTANCE_KM: float = 100.0
    CLUSTER_MIN_EVENTS: int = 3
    CLUSTER_TIME_WINDOW_HOURS: float = 48.0

    # ── Scheduled refresh ──
    ENABLE_SCHEDULED_REFRESH: bool = False
    REFRESH_INTERVAL_SECONDS: int = 300

    @field_validator(
        "FETCH_TIMEOUT_SECONDS",
        "CLUSTER_MAX_DISTANCE_KM",
        "CLUSTER_TIME_WINDOW_HOURS",
        "REFRESH_INTERVAL_SECONDS",
    )
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator(
        "CLUSTER_MIN_EVENTS",
        "MAP_DISPLAY_LIMIT",
        "SAMPLE_SIZE_WEEK",
        "SAMPLE_SIZE_14_DAYS",
        "SAMPLE_SIZE_30_DAYS",
    )
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
