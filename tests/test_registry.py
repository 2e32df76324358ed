# tests/test_registry.py
import pytest

from stats.registry import ConnectionRegistry, FutureSink, SinkClosed
from stats.snapshot_cache import SnapshotCache
from stats.builder import SnapshotBuilder
from stats.models import MinerMetric

from conftest import NETWORK, NOW, FakeClock, make_pool_data


@pytest.mark.asyncio
async def test_register_assigns_distinct_ids():
    registry = ConnectionRegistry("live")
    first = registry.subscribe("addrA")
    second = registry.subscribe("addrA")
    assert first.subscriber_id != second.subscriber_id
    assert len(registry) == 2
    assert first.key in registry
    assert set(registry.group_by_address()) == {"addrA"}
    assert len(registry.group_by_address()["addrA"]) == 2


@pytest.mark.asyncio
async def test_unregister_is_idempotent():
    registry = ConnectionRegistry("live")
    subscription = registry.subscribe("addrA")
    assert registry.unregister("addrA", subscription.subscriber_id) is True
    assert registry.unregister("addrA", subscription.subscriber_id) is False
    assert registry.unregister("nobody", 999) is False
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_deliver_closes_subscription():
    registry = ConnectionRegistry("live")
    subscription = registry.subscribe("addrA")
    assert subscription.deliver('{"ok":1}') is True
    assert subscription.closed
    assert subscription.key not in registry
    assert await subscription.wait(timeout=0) == (True, '{"ok":1}')


@pytest.mark.asyncio
async def test_deliver_to_closed_sink_is_dropped():
    registry = ConnectionRegistry("live")
    subscription = registry.subscribe("addrA")
    subscription.sink.close()
    assert subscription.deliver("{}") is False
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_close_twice_has_no_effect():
    registry = ConnectionRegistry("address")
    subscription = registry.subscribe("addrA")
    other = registry.subscribe("addrA")
    subscription.close()
    subscription.close()
    assert len(registry) == 1
    assert other.key in registry
    assert await subscription.wait(timeout=0) == (True, None)


@pytest.mark.asyncio
async def test_sink_rejects_second_delivery():
    sink = FutureSink()
    sink.deliver("one")
    assert sink.closed
    with pytest.raises(SinkClosed):
        sink.deliver("two")


@pytest.mark.asyncio
async def test_wait_times_out_while_open():
    registry = ConnectionRegistry("live")
    subscription = registry.subscribe("addrA")
    assert await subscription.wait(timeout=0.01) == (False, None)
    assert not subscription.closed


@pytest.mark.asyncio
async def test_group_by_address_is_a_copy():
    registry = ConnectionRegistry("live")
    registry.subscribe("addrA")
    registry.subscribe("addrB")
    groups = registry.group_by_address()
    for subscriptions in groups.values():
        for subscription in subscriptions:
            subscription.close()
    assert len(registry) == 0
    assert set(groups) == {"addrA", "addrB"}


@pytest.mark.asyncio
async def test_clear_closes_everything():
    registry = ConnectionRegistry("live")
    subscriptions = [registry.subscribe("addrA"), registry.subscribe("addrB")]
    assert registry.clear() == 2
    assert len(registry) == 0
    assert all(subscription.closed for subscription in subscriptions)


def test_cache_starts_empty():
    cache = SnapshotCache(clock=FakeClock())
    assert cache.snapshot is None
    assert cache.metrics == {}
    assert cache.age() is None
    assert cache.miner_metric("addrA") is None


def test_cache_replace_swaps_snapshot_and_metrics_together(store, daemon, charts, settings):
    clock = FakeClock()
    cache = SnapshotCache(clock=clock)
    builder = SnapshotBuilder(store, daemon, charts, settings)
    snapshot, _ = builder.compute(make_pool_data(), NETWORK, {}, NOW)
    metrics = {"addrA": MinerMetric(hashrate=5, roundHashes=1)}

    cache.replace(snapshot, metrics)
    metrics["addrB"] = MinerMetric()
    current = cache.current()

    assert current.snapshot is snapshot
    assert set(current.metrics) == {"addrA"}
    assert cache.miner_metric("addrA").hashrate == 5
    assert cache.miner_metric(None) is None
    with pytest.raises(TypeError):
        current.metrics["addrC"] = MinerMetric()

    clock.now += 12
    assert cache.age() == 12
