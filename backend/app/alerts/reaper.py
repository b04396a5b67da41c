"""
reaper.py — Background sweep that purges expired alerts.

Reads already hide expired alerts (``queries.unexpired``); the reaper only
reclaims their rows. A sweep racing with a write on the same alert is
fine either way: the write either lands before the delete or hits a
missing row and is reported as NotFound.

Usage:
    reaper = ExpiryReaper(async_session_factory, interval_seconds=60)
    await reaper.start()
    ...
    await reaper.stop()
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.alerts.store import purge_expired

logger = logging.getLogger(__name__)


class ExpiryReaper:
    """Runs ``purge_expired`` every ``interval_seconds`` on its own session."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval_seconds: float = 60.0,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._session_factory = session_factory
        self._interval = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.last_sweep_at: Optional[datetime] = None
        self.last_purged: int = 0
        self.total_purged: int = 0
        self.last_error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("Expiry reaper started (every %.0fs)", self._interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Expiry reaper stopped")

    async def sweep_once(self) -> int:
        """Purge once and return the number of alerts removed."""
        start = time.perf_counter()
        async with self._session_factory() as session:
            purged = await purge_expired(session)
        self.last_sweep_at = datetime.now(timezone.utc)
        self.last_purged = purged
        self.total_purged += purged
        self.last_error = None
        logger.debug(
            "Expiry sweep removed %d alerts", purged,
            extra={
                "purged_count": purged,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return purged

    async def _run(self) -> None:
        while self._running:
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.last_error = str(e)
                logger.exception("Expiry sweep failed: %s", e)
            await asyncio.sleep(self._interval)

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "interval_seconds": self._interval,
            "last_sweep_at": self.last_sweep_at.isoformat() if self.last_sweep_at else None,
            "last_purged": self.last_purged,
            "total_purged": self.total_purged,
            "last_error": self.last_error,
        }
