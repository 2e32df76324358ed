# stats/resolver.py
import asyncio
from typing import Any, Dict, Mapping, Optional

from utils.logging import logger

from .models import MinerMetric, WorkerStats

NOT_FOUND = {"error": "Not found"}

# Characters that would turn a key lookup into a pattern match
GLOB_CHARACTERS = set("*?[]")


def _metric(metrics: Mapping[str, MinerMetric], key: str) -> MinerMetric:
    return metrics.get(key) or MinerMetric()


def _int_field(values: Dict[str, str], name: str) -> int:
    try:
        return int(float(values.get(name) or 0))
    except (TypeError, ValueError):
        return 0


class AddressStatsResolver:
    """
    Builds the worker-detail view of one address:
    {stats, payments, charts, workers}.

    Used both by the worker-feed broadcast and by one-shot reads, so both
    always answer with the same document.
    """

    def __init__(self, store, charts, payments_limit: int):
        self.store = store
        self.charts = charts
        self.payments_limit = payments_limit

    async def resolve(self, address: str, metrics: Mapping[str, MinerMetric]) -> Optional[Dict[str, Any]]:
        """The composite payload, or None if the store knows nothing about `address`.

        Store and charts failures propagate to the caller.
        """
        if not address or GLOB_CHARACTERS & set(address):
            return None

        data = await self.store.fetch_address_data(address, self.payments_limit)
        if data is None:
            return None

        metric = _metric(metrics, address)
        stats: Dict[str, Any] = dict(data.stats)
        stats["hashrate"] = metric.hashrate
        stats["roundHashes"] = metric.roundHashes

        workers = [
            WorkerStats(name=key.worker_name, hashrate=_metric(metrics, key.format()).hashrate)
            for key in data.worker_keys
        ]

        details, charts = await asyncio.gather(
            self.store.fetch_worker_details(data.worker_keys),
            self.charts.get_user_charts_data(address, data.payments),
        )
        for worker, detail in zip(workers, details):
            worker.lastShare = _int_field(detail, "lastShare")
            worker.hashes = _int_field(detail, "hashes")

        return {
            "stats": stats,
            "payments": [payment.model_dump() for payment in data.payments],
            "charts": charts,
            "workers": [worker.model_dump() for worker in workers],
        }

    async def resolve_or_not_found(self, address: str, metrics: Mapping[str, MinerMetric]) -> Dict[str, Any]:
        """Same as resolve(), but every failure becomes the not-found payload"""
        try:
            payload = await self.resolve(address, metrics)
        except Exception as e:
            logger.error(f"Error resolving worker stats for {address}: {str(e)}")
            return dict(NOT_FOUND)
        if payload is None:
            return dict(NOT_FOUND)
        return payload
