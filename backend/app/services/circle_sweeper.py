"""Periodic expiry sweep for support circles."""
import asyncio
import logging
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings

logger = logging.getLogger(__name__)


class CircleExpirySweeper:
    """Closes circles whose time ran out, independently of request traffic.

    Usage:
        sweeper = CircleExpirySweeper(AsyncSessionLocal, circle_manager)
        sweeper.start()
        ...
        await sweeper.stop()

    Tests call run_once() directly with a manager built on a fake clock.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        manager,
        interval: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self._manager = manager
        self.interval = interval if interval is not None else settings.CIRCLE_SWEEP_INTERVAL_SECONDS
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """Sweep once. Returns the number of circles closed."""
        async with self._session_factory() as db:
            closed = await self._manager.close_expired_circles(db)
        if closed:
            logger.info(f"Expiry sweep closed {len(closed)} circle(s)")
        else:
            logger.debug("Expiry sweep: nothing to close")
        return len(closed)

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Keep sweeping on the next tick
                logger.error(f"Error in circle expiry sweep: {e}", exc_info=True)
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Circle expiry sweeper started (every {self.interval:.0f}s)")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Circle expiry sweeper stopped")
