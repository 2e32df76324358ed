# stats/broadcast.py
import asyncio
import json
import math
from typing import Any, Dict, List, Mapping

from utils.logging import logger

from .models import MinerMetric, NO_ADDRESS, Snapshot
from .registry import ConnectionRegistry, Subscription
from .resolver import AddressStatsResolver


def json_safe(value: Any) -> Any:
    """Replace inf and nan with None, the way browsers serialize them"""
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, dict):
        return {key: json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(item) for item in value]
    return value


def encode_payload(data: Any) -> str:
    """Compact JSON text; every response and broadcast payload goes through here"""
    return json.dumps(json_safe(data), separators=(",", ":"), allow_nan=False)


def pool_payload(snapshot_data: Dict[str, Any], metrics: Mapping[str, MinerMetric], address: str) -> Dict[str, Any]:
    """Snapshot plus the `miner` section for one address ({} for no or unknown address)"""
    data = dict(snapshot_data)
    metric = metrics.get(address) if address and address != NO_ADDRESS else None
    data["miner"] = metric.model_dump() if metric else {}
    return data


def deliver_all(payload: str, subscriptions: List[Subscription]) -> int:
    """Hand the same payload to every subscription; returns how many were still open"""
    delivered = 0
    for subscription in subscriptions:
        if subscription.deliver(payload):
            delivered += 1
    return delivered


class BroadcastEngine:
    """Fans each new snapshot out to the pool live feed and the worker feeds"""

    def __init__(
        self,
        live_registry: ConnectionRegistry,
        address_registry: ConnectionRegistry,
        resolver: AddressStatsResolver,
    ):
        self.live_registry = live_registry
        self.address_registry = address_registry
        self.resolver = resolver
        self._live_lock = asyncio.Lock()
        self._address_lock = asyncio.Lock()

    async def broadcast(self, snapshot: Snapshot, metrics: Mapping[str, MinerMetric]) -> None:
        logger.info(
            f"Broadcasting to {len(self.live_registry)} visitors "
            f"and {len(self.address_registry)} address lookups"
        )
        await asyncio.gather(
            self.broadcast_live_stats(snapshot, metrics),
            self.broadcast_worker_stats(metrics),
        )

    async def broadcast_live_stats(self, snapshot: Snapshot, metrics: Mapping[str, MinerMetric]) -> int:
        if self._live_lock.locked():
            logger.warning("Previous live stats broadcast still running, skipping this cycle")
            return 0
        async with self._live_lock:
            groups = self.live_registry.group_by_address()
            if not groups:
                return 0
            snapshot_data = snapshot.model_dump(mode="json")
            delivered = 0
            for address, subscriptions in groups.items():
                payload = encode_payload(pool_payload(snapshot_data, metrics, address))
                delivered += deliver_all(payload, subscriptions)
            return delivered

    async def broadcast_worker_stats(self, metrics: Mapping[str, MinerMetric]) -> int:
        if self._address_lock.locked():
            logger.warning("Previous worker stats broadcast still running, skipping this cycle")
            return 0
        async with self._address_lock:
            groups = self.address_registry.group_by_address()
            if not groups:
                return 0
            results = await asyncio.gather(*(
                self._send_worker_stats(address, subscriptions, metrics)
                for address, subscriptions in groups.items()
            ))
            return sum(results)

    async def _send_worker_stats(self, address: str, subscriptions: List[Subscription], metrics: Mapping[str, MinerMetric]) -> int:
        # Subscribers that left while other addresses were resolving are skipped
        payload = await self.resolver.resolve_or_not_found(address, metrics)
        return deliver_all(encode_payload(payload), subscriptions)
