
import asyncio
from typing import Optional

import structlog

from .store import DeviceStore

logger = structlog.get_logger()


class TickScheduler:
    """Drives ``store.tick()`` on a fixed period from a background task."""

    def __init__(self, store: DeviceStore, interval: float = 3.0) -> None:
        self.store = store
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.store.tick()
            except Exception as e:
                # one bad tick must not stop the simulation
                logger.error("Simulation tick failed", error=str(e))

    # start and stop are used for lifecycle management
    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        if self.running:
            return
        self._task = loop.create_task(self._run())
        logger.info("Tick scheduler started", interval=self.interval)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Tick scheduler stopped")
