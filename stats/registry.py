# stats/registry.py
import asyncio
import itertools
from typing import Dict, List, Optional, Tuple

from utils.logging import logger


class SinkClosed(Exception):
    """Delivery to a subscriber whose connection is already gone"""


class FutureSink:
    """Output channel of one long-poll request: a future the request handler waits on"""

    def __init__(self):
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def closed(self) -> bool:
        return self._future.done()

    def deliver(self, payload: str) -> None:
        if self._future.done():
            raise SinkClosed()
        self._future.set_result(payload)

    def close(self) -> None:
        if not self._future.done():
            self._future.cancel()

    async def wait(self, timeout: Optional[float] = None) -> Tuple[bool, Optional[str]]:
        """(finished, payload); payload is None when the sink was closed without delivery"""
        done, _ = await asyncio.wait({self._future}, timeout=timeout)
        if not done:
            return False, None
        if self._future.cancelled():
            return True, None
        return True, self._future.result()


class Subscription:
    """
    Lifecycle handle of one registered connection.

    close() is the only teardown path; delivery, peer disconnect and registry
    eviction all end up there, and only the first call has any effect.
    """

    def __init__(self, registry: "ConnectionRegistry", address: str, subscriber_id: int, sink: FutureSink):
        self.registry = registry
        self.address = address
        self.subscriber_id = subscriber_id
        self.sink = sink
        self._closed = False

    @property
    def key(self) -> Tuple[str, int]:
        return self.address, self.subscriber_id

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, payload: str) -> bool:
        """Send the payload and tear the subscription down; False if the peer was already gone"""
        try:
            self.sink.deliver(payload)
            return True
        except SinkClosed:
            logger.debug(f"Dropped payload for closed {self.registry.name} subscriber {self.key}")
            return False
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.sink.close()
        self.registry.unregister(self.address, self.subscriber_id)

    async def wait(self, timeout: Optional[float] = None) -> Tuple[bool, Optional[str]]:
        return await self.sink.wait(timeout)


class ConnectionRegistry:
    """Open broadcast subscriptions keyed by (address, subscriberId)"""

    def __init__(self, name: str):
        self.name = name
        self._entries: Dict[Tuple[str, int], Subscription] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Tuple[str, int]) -> bool:
        return key in self._entries

    def register(self, address: str, sink: FutureSink) -> Subscription:
        subscription = Subscription(self, address, next(self._ids), sink)
        self._entries[subscription.key] = subscription
        return subscription

    def subscribe(self, address: str) -> Subscription:
        """Register a fresh future-backed sink; must be called from the event loop"""
        return self.register(address, FutureSink())

    def unregister(self, address: str, subscriber_id: int) -> bool:
        """Remove one entry; calling it again, or for an unknown entry, is a no-op"""
        return self._entries.pop((address, subscriber_id), None) is not None

    def group_by_address(self) -> Dict[str, List[Subscription]]:
        """Copy of the current entries grouped by address, taken once per broadcast"""
        groups: Dict[str, List[Subscription]] = {}
        for (address, _), subscription in list(self._entries.items()):
            groups.setdefault(address, []).append(subscription)
        return groups

    def clear(self) -> int:
        """Close every subscription, e.g. at shutdown"""
        subscriptions = list(self._entries.values())
        for subscription in subscriptions:
            subscription.close()
        return len(subscriptions)
