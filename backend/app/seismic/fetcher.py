"""
Two-tier feed fetch: structured primary store first, raw GeoJSON feed second.

Per horizon the fetch walks a fixed sequence and never raises:

    QueryPrimary → ValidatePrimary ──ok──────────────→ PRIMARY_OK
                        │ fail (reason kept)
                        ▼
                  QuerySecondary → ValidateSecondary ─ok→ SECONDARY_OK
                                        │ fail
                                        ▼
                                   BOTH_FAILED("Primary source failed: …;
                                                secondary source failed: …")

Primary is valid only with a 2xx status, ``X-Data-Source`` equal to the
configured marker, and a JSON array of well-formed features (an empty
array is a valid answer). Secondary is valid with a 2xx status and a
non-empty ``features`` array of well-formed features. Each source is
queried at most once per call; there are no retries.

Usage:
    fetcher = SourceFallbackFetcher()
    outcome = await fetcher.fetch(Horizon.SHORT)
    if outcome.ok:
        print(outcome.source, len(outcome.events))
    await fetcher.close()
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

import httpx

from backend.app.core.config import settings
from backend.app.seismic.models import Event, feature_shape_error, parse_feature, valid_number
from backend.app.seismic.reducer import Horizon

logger = logging.getLogger(__name__)

SOURCE_MARKER_HEADER = "X-Data-Source"


class FetchStatus(str, Enum):
    PRIMARY_OK   = "primary_ok"
    SECONDARY_OK = "secondary_ok"
    BOTH_FAILED  = "both_failed"


class DataSource(str, Enum):
    PRIMARY   = "primary"
    SECONDARY = "secondary"


@dataclass
class FetchOutcome:
    """Tagged result of one fallback pass."""
    horizon: Horizon
    status: FetchStatus
    events: List[Event] = field(default_factory=list)
    generated_at: Optional[int] = None
    primary_error: Optional[str] = None
    secondary_error: Optional[str] = None
    fetched_at: int = 0
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is not FetchStatus.BOTH_FAILED

    @property
    def source(self) -> Optional[DataSource]:
        if self.status is FetchStatus.PRIMARY_OK:
            return DataSource.PRIMARY
        if self.status is FetchStatus.SECONDARY_OK:
            return DataSource.SECONDARY
        return None

    @property
    def error_message(self) -> Optional[str]:
        """Both failure reasons, primary first; None unless both failed."""
        if self.status is not FetchStatus.BOTH_FAILED:
            return None
        return (
            f"Primary source failed: {self.primary_error}; "
            f"secondary source failed: {self.secondary_error}"
        )


class SourceValidationError(Exception):
    """A response arrived but cannot be used."""


def _parse_features(items: List[Any]) -> List[Event]:
    for index, item in enumerate(items):
        problem = feature_shape_error(item)
        if problem:
            raise SourceValidationError(f"malformed event at index {index}: {problem}")
    return [parse_feature(item) for item in items]


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise SourceValidationError(f"response body is not valid JSON ({e})") from e


def _check_status(response: httpx.Response) -> None:
    if not response.is_success:
        raise SourceValidationError(
            f"HTTP {response.status_code} {response.reason_phrase}".rstrip()
        )


class SourceFallbackFetcher:
    """
    Fetch a horizon's snapshot from the primary store, falling back to the
    raw feed.

    The HTTP client is created lazily and reused; pass ``client`` to share
    one (tests hand in a client on an ``httpx.MockTransport``).
    """

    def __init__(
        self,
        *,
        primary_url: Optional[str] = None,
        secondary_base_url: Optional[str] = None,
        source_marker: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.primary_url = primary_url or settings.PRIMARY_STORE_URL
        self.secondary_base_url = (secondary_base_url or settings.RAW_FEED_BASE_URL).rstrip("/")
        self.source_marker = source_marker or settings.PRIMARY_SOURCE_MARKER
        self.timeout = timeout or settings.FETCH_TIMEOUT_SECONDS
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    def secondary_url(self, horizon: Horizon) -> str:
        return f"{self.secondary_base_url}/all_{horizon.feed}.geojson"

    # ── Primary ──

    async def _query_primary(self, horizon: Horizon) -> List[Event]:
        client = await self._get_client()
        response = await client.get(
            self.primary_url,
            params={"timeWindow": horizon.feed},
            timeout=self.timeout,
        )
        _check_status(response)

        marker = response.headers.get(SOURCE_MARKER_HEADER)
        if marker != self.source_marker:
            raise SourceValidationError(
                f"unexpected {SOURCE_MARKER_HEADER} header "
                f"{marker!r} (expected {self.source_marker!r})"
            )

        body = _json_body(response)
        if not isinstance(body, list):
            raise SourceValidationError("payload is not an array of events")
        return _parse_features(body)

    # ── Secondary ──

    async def _query_secondary(self, horizon: Horizon) -> Tuple[List[Event], Optional[int]]:
        client = await self._get_client()
        response = await client.get(self.secondary_url(horizon), timeout=self.timeout)
        _check_status(response)

        body = _json_body(response)
        if not isinstance(body, dict):
            raise SourceValidationError("payload is not a GeoJSON object")
        features = body.get("features")
        if not isinstance(features, list):
            raise SourceValidationError("payload has no features array")
        if not features:
            raise SourceValidationError("features array is empty")

        events = _parse_features(features)
        metadata = body.get("metadata")
        generated = valid_number(metadata.get("generated")) if isinstance(metadata, dict) else None
        return events, int(generated) if generated is not None else None

    # ── Orchestration ──

    async def fetch(self, horizon: Horizon) -> FetchOutcome:
        """Run the fallback sequence once for ``horizon``."""
        started = time.perf_counter()
        outcome = FetchOutcome(
            horizon=horizon,
            status=FetchStatus.BOTH_FAILED,
            fetched_at=int(time.time() * 1000),
        )

        try:
            outcome.events = await self._query_primary(horizon)
            outcome.status = FetchStatus.PRIMARY_OK
        except (httpx.HTTPError, SourceValidationError) as e:
            outcome.primary_error = _reason(e)
            logger.info(
                "Primary source rejected for %s: %s", horizon.value, outcome.primary_error,
                extra={"horizon": horizon.value, "source": DataSource.PRIMARY.value},
            )

        if outcome.status is not FetchStatus.PRIMARY_OK:
            try:
                outcome.events, outcome.generated_at = await self._query_secondary(horizon)
                outcome.status = FetchStatus.SECONDARY_OK
            except (httpx.HTTPError, SourceValidationError) as e:
                outcome.secondary_error = _reason(e)

        outcome.duration_ms = (time.perf_counter() - started) * 1000
        if outcome.ok:
            logger.info(
                "Fetched %d events for %s from %s (%.0fms)",
                len(outcome.events), horizon.value, outcome.source.value, outcome.duration_ms,
                extra={
                    "horizon": horizon.value,
                    "source": outcome.source.value,
                    "event_count": len(outcome.events),
                    "duration_ms": outcome.duration_ms,
                },
            )
        else:
            logger.error(
                "All sources failed for %s: %s", horizon.value, outcome.error_message,
                extra={"horizon": horizon.value, "duration_ms": outcome.duration_ms},
            )
        return outcome


def _reason(error: Exception) -> str:
    if isinstance(error, httpx.TimeoutException):
        return f"request timed out ({type(error).__name__})"
    if isinstance(error, httpx.HTTPError):
        return f"transport error ({type(error).__name__}: {error})"
    return str(error)
