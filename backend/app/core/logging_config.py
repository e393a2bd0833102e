"""
Logging setup for the seismic service.

Production emits one JSON object per line; development emits a compact
coloured line. Both pick up:

    • the request context bound by ``RequestLoggingMiddleware``
      (request_id, client_ip, endpoint, method, horizon)
    • feed and clustering fields passed through ``extra=``
      (horizon, source, event_count, cluster_count, cache_hit, ...)

Usage:
    from backend.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Horizon reduced", extra={"horizon": "short", "event_count": 212})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.core.config import settings

_request_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    "request_context", default=None
)

# Attributes copied from ``extra=`` into structured output
LOG_FIELDS = (
    "horizon",
    "source",
    "event_count",
    "cluster_count",
    "cache_hit",
    "duration_ms",
    "status_code",
    "endpoint",
)


def bind_request_context(**fields: Any) -> Token:
    """Bind request-scoped fields; pass the token to ``reset_request_context``."""
    return _request_context.set(fields)


def reset_request_context(token: Token) -> None:
    _request_context.reset(token)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get() or {}


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {name: getattr(record, name) for name in LOG_FIELDS if hasattr(record, name)}


class JSONFormatter(logging.Formatter):
    """Machine-readable lines for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        ctx = get_request_context()
        if ctx:
            entry["request"] = ctx
        entry.update(_record_fields(record))
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL [req] <horizon> logger: message`` with ANSI colour."""

    LEVEL_COLOURS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelno, "")
        parts = [f"{colour}{self.formatTime(record, '%H:%M:%S')} {record.levelname:<8}{self.RESET}"]

        ctx = get_request_context()
        if ctx.get("request_id"):
            parts.append(f"[{ctx['request_id'][:8]}]")
        horizon = getattr(record, "horizon", None) or ctx.get("horizon")
        if horizon:
            parts.append(f"<{horizon}>")
        parts.append(f"{record.name}: {record.getMessage()}")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[1] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: Optional[str] = None) -> None:
    """Install a single stdout handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.is_production else PrettyFormatter())
    root.addHandler(handler)

    # httpx logs every feed request at INFO
    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
