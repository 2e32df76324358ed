# stats/collector.py
import asyncio
from typing import Optional, Set

from database import StoreUnavailable
from utils.blockchain import DaemonUnavailable
from utils.logging import logger

from .broadcast import BroadcastEngine
from .builder import SnapshotBuilder
from .snapshot_cache import SnapshotCache


class StatsCollector:
    """
    Runs the aggregation cycle every `interval` seconds.

    The next tick is armed only once the previous cycle's result has been
    handled; broadcasts run as background tasks so slow deliveries never delay it.
    """

    def __init__(self, builder: SnapshotBuilder, cache: SnapshotCache, engine: BroadcastEngine, interval: float):
        self.builder = builder
        self.cache = cache
        self.engine = engine
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self._broadcasts: Set[asyncio.Task] = set()

    async def collect_once(self) -> bool:
        """One aggregation cycle; False when it was aborted and the old snapshot stays"""
        try:
            snapshot, metrics = await self.builder.build_snapshot()
        except StoreUnavailable as e:
            logger.error(f"Error getting redis data: {e}")
            return False
        except DaemonUnavailable as e:
            logger.error(f"Error getting daemon data: {e}")
            return False
        except Exception as e:
            logger.error(f"Error collecting all stats: {str(e)}")
            logger.exception("Full exception details:")
            return False

        self.cache.replace(snapshot, metrics)
        current = self.cache.current()
        self._start_broadcast(current.snapshot, current.metrics)
        return True

    def _start_broadcast(self, snapshot, metrics) -> None:
        task = asyncio.create_task(self.engine.broadcast(snapshot, metrics))
        self._broadcasts.add(task)
        task.add_done_callback(self._broadcast_finished)

    def _broadcast_finished(self, task: asyncio.Task) -> None:
        self._broadcasts.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Broadcast failed: {error}")

    async def wait_for_broadcasts(self) -> None:
        if self._broadcasts:
            await asyncio.gather(*list(self._broadcasts), return_exceptions=True)

    async def run(self) -> None:
        logger.info(f"Stats collection started, every {self.interval}s")
        while True:
            await self.collect_once()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        tasks = list(self._broadcasts)
        if self._task:
            tasks.append(self._task)
            self._task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Stats collection stopped")
