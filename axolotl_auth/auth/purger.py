"""Background cleanup of expired authorization requests and codes."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .stores import purge_expired

logger = logging.getLogger(__name__)


class ExpiredFlowPurger:
    """Periodically deletes flow records well past their expiry."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval_seconds: int,
        grace_seconds: int,
    ):
        """
        Initialize the purger.

        Args:
            session_factory: Async session factory for database operations
            interval_seconds: Delay between purge runs
            grace_seconds: How long past expiry a record is kept, so that a
                code exchange can still find the request it came from
        """
        self._session_factory = session_factory
        self._interval = interval_seconds
        self._grace = grace_seconds
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._running:
            logger.warning("ExpiredFlowPurger is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("ExpiredFlowPurger started")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("ExpiredFlowPurger stopped")

    async def run_once(self) -> int:
        """Purge once. Returns the number of records removed."""
        cutoff = datetime.now(UTC) - timedelta(seconds=self._grace)
        async with self._session_factory() as session:
            return await purge_expired(session, cutoff)

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error purging expired authorization records: %s", e)
            await asyncio.sleep(self._interval)
