"""
In-process expiration sweep loop for deployments without Celery beat.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .. import database
from ..config import get_settings
from ..services.expiration_service import ExpirationService, SweepResult

logger = logging.getLogger(__name__)


class ExpirationSweepWorker:
    """
    Runs the expiration sweep on a fixed interval until stopped.

    The stop token is an ``asyncio.Event``; ``stop()`` wakes the loop
    immediately instead of waiting out the interval. A failing tick is
    logged and the loop keeps going.
    """

    def __init__(
        self,
        interval_seconds: Optional[float] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    ):
        self.interval_seconds = interval_seconds or get_settings().waitlist_sweep_interval_seconds
        self._session_factory = session_factory
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop as a background task."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run())
        logger.info(f"Expiration sweep worker started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it to finish."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Expiration sweep worker stopped")

    async def run(self) -> None:
        """Sweep, then sleep until the next interval or a stop signal."""
        while not self._stop_event.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def tick(self) -> Optional[SweepResult]:
        """Run a single sweep pass, logging rather than raising on failure."""
        session_factory = self._session_factory or database.async_session_factory
        if session_factory is None:
            logger.warning("Database not initialized, skipping expiration sweep")
            return None

        try:
            async with session_factory() as session:
                return await ExpirationService(session).run_expiration_sweep()
        except Exception as e:
            logger.error(f"Expiration sweep tick failed: {e}", exc_info=True)
            return None
