import asyncio
from typing import Dict, Optional

import loguru._logger

from ..schemas.health import HealthSnapshot, SnapshotMode
from ..utils.log_common import build_logger
from .manager import HealthAggregator


class Poller:
    """
    Consumer-side helper that keeps snapshots warm on a timer.

    One loop per mode requests ``get_snapshot(mode)`` every interval; cached
    snapshots are reused inside their TTL, so overlapping timers and manual
    refreshes never multiply backend load.

    Usage:
        ```python
        poller = Poller(aggregator, quick_interval=30, full_interval=60)

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            poller.start()
            yield
            await poller.stop()
        ```
    """

    def __init__(
        self,
        aggregator: HealthAggregator,
        quick_interval: float = 30.0,
        full_interval: float = 60.0,
        logger: Optional[loguru._logger.Logger] = None,
    ):
        self.aggregator = aggregator
        self.intervals: Dict[SnapshotMode, float] = {
            SnapshotMode.QUICK: quick_interval,
            SnapshotMode.FULL: full_interval,
        }
        self.logger = logger or build_logger("poller")
        self._tasks: Dict[SnapshotMode, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks.values())

    def start(self) -> None:
        if self.running:
            self.logger.warning("Health poller already running.")
            return
        self.logger.info(
            "Starting health poller "
            f"(quick={self.intervals[SnapshotMode.QUICK]:g}s, full={self.intervals[SnapshotMode.FULL]:g}s)"
        )
        self._tasks = {
            mode: asyncio.create_task(self._loop(mode)) for mode in SnapshotMode
        }

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = {}

    async def refresh(self) -> HealthSnapshot:
        """Manual refresh: a forced full snapshot."""
        return await self.aggregator.get_snapshot(SnapshotMode.FULL, force=True)

    async def poll_once(self, mode: SnapshotMode) -> Optional[HealthSnapshot]:
        try:
            return await self.aggregator.get_snapshot(mode)
        except Exception as e:
            self.logger.exception(f"[{mode.value}] poll failed: {e}")
            return None

    async def _loop(self, mode: SnapshotMode) -> None:
        while True:
            await self.poll_once(mode)
            await asyncio.sleep(self.intervals[mode])
