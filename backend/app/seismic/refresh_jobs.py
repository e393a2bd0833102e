"""
Periodic feed refresh.

The fetcher never retries on its own; this runner re-invokes
``refresh_all`` every ``REFRESH_INTERVAL_SECONDS`` for as long as the
application is up.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from backend.app.core.config import settings
from backend.app.seismic.service import SeismicMonitorService

logger = logging.getLogger(__name__)


class ScheduledRefreshRunner:
    """
    Usage:
        runner = ScheduledRefreshRunner(service)
        await runner.start()
        ...
        await runner.stop()
    """

    def __init__(self, service: SeismicMonitorService, interval_seconds: Optional[float] = None):
        self.service = service
        self.interval_seconds = interval_seconds or settings.REFRESH_INTERVAL_SECONDS
        self.runs = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the refresh loop (first pass runs immediately)."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("Scheduled refresh started (every %ss)", self.interval_seconds)

    async def stop(self) -> None:
        """Cancel the loop; an in-flight refresh is abandoned, not merged."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Scheduled refresh stopped")

    async def _run(self) -> None:
        while self._running:
            try:
                await self.service.refresh_all()
                self.runs += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Scheduled refresh error: %s", e)
            await asyncio.sleep(self.interval_seconds)
