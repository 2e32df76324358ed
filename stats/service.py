# stats/service.py
from typing import Any, Dict

from database import MetricsStore
from stats.keys import StoreKeys
from utils.blockchain import DaemonClient
from utils.charts import ChartsProvider, StoredChartsProvider

from .broadcast import BroadcastEngine
from .builder import SnapshotBuilder
from .collector import StatsCollector
from .registry import ConnectionRegistry
from .resolver import AddressStatsResolver
from .snapshot_cache import SnapshotCache


class PoolStatsService:
    """Owns the snapshot cache, both registries and the aggregation loop"""

    def __init__(self, store, daemon, charts: ChartsProvider, settings):
        self.settings = settings
        self.store = store
        self.daemon = daemon
        self.charts = charts
        self.cache = SnapshotCache()
        self.live_registry = ConnectionRegistry("live")
        self.address_registry = ConnectionRegistry("address")
        self.resolver = AddressStatsResolver(store, charts, settings.PAYMENTS_PAGE_SIZE)
        self.engine = BroadcastEngine(self.live_registry, self.address_registry, self.resolver)
        self.builder = SnapshotBuilder(store, daemon, charts, settings)
        self.collector = StatsCollector(self.builder, self.cache, self.engine, settings.UPDATE_INTERVAL)

    def start(self) -> None:
        self.collector.start()

    async def stop(self) -> None:
        await self.collector.stop()
        self.live_registry.clear()
        self.address_registry.clear()

    def health(self) -> Dict[str, Any]:
        age = self.cache.age()
        return {
            "snapshot_age": round(age, 1) if age is not None else None,
            "live_subscribers": len(self.live_registry),
            "address_subscribers": len(self.address_registry),
            "tracked_participants": len(self.cache.metrics),
        }


def create_service(redis, settings) -> PoolStatsService:
    """Wire the Redis-backed store, the daemon client and stored charts together"""
    store = MetricsStore(redis, StoreKeys(settings.COIN))
    daemon = DaemonClient(settings.get_daemon_url(), timeout=settings.DAEMON_TIMEOUT)
    charts = StoredChartsProvider(store, settings.POOL_CHARTS, settings.USER_CHARTS)
    return PoolStatsService(store, daemon, charts, settings)
