# tests/test_routes.py
import asyncio
import json

import httpx
import pytest
from fastapi_cache import FastAPICache
from fastapi_cache.backends.inmemory import InMemoryBackend

import config
from api import create_application
from routes.pool.utils import format_top_miners, wait_for_payload
from stats.models import BlockRow, MinerMetric, NO_ADDRESS, PaymentRow
from stats.resolver import NOT_FOUND
from stats.service import PoolStatsService
from utils.cache import CustomCoder

from conftest import NOW, FakeRequest, make_pool_data, sample


@pytest.fixture
def service(store, daemon, charts, settings):
    store.pool_data = make_pool_data(samples=[sample(120, "addrA"), sample(60, "addrA+rig1")])
    return PoolStatsService(store, daemon, charts, settings)


@pytest.fixture
def app(service):
    application = create_application(use_lifespan=False)
    application.state.stats_service = service
    return application


def client_for(app) -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://testserver")


async def collect(service):
    assert await service.collector.collect_once()
    await service.collector.wait_for_broadcasts()


async def wait_for_subscribers(registry, count: int = 1):
    for _ in range(200):
        if len(registry) >= count:
            return
        await asyncio.sleep(0.005)
    raise AssertionError(f"{registry.name} registry never reached {count} subscribers")


@pytest.mark.asyncio
async def test_stats_unavailable_before_first_cycle(app):
    async with client_for(app) as client:
        response = await client.get("/stats")
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_stats_with_miner_section(app, service):
    await collect(service)
    async with client_for(app) as client:
        response = await client.get("/stats", params={"address": "addrA"})
        anonymous = await client.get("/stats")
    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-cache"
    data = response.json()
    assert data["pool"]["hashrate"] == 2
    assert data["pool"]["miners"] == 1
    assert data["pool"]["workers"] == 1
    assert data["miner"]["hashrate"] == 2
    assert [port["port"] for port in data["config"]["ports"]] == [3333]
    assert anonymous.json()["miner"] == {}


@pytest.mark.asyncio
async def test_live_stats_long_poll(app, service):
    async with client_for(app) as client:
        request = asyncio.create_task(client.get("/live_stats", params={"address": "addrA"}))
        await wait_for_subscribers(service.live_registry)
        await collect(service)
        response = await request

    assert response.status_code == 200
    assert response.json()["miner"]["hashrate"] == 2
    assert len(service.live_registry) == 0


@pytest.mark.asyncio
async def test_stats_address_one_shot(app, service, store):
    store.add_address("addrA", workers=["rig1"])
    await collect(service)
    async with client_for(app) as client:
        response = await client.get("/stats_address", params={"address": "addrA"})
        missing = await client.get("/stats_address", params={"address": "nobody"})
        pattern = await client.get("/stats_address", params={"address": "addr*"})
        empty = await client.get("/stats_address")

    data = response.json()
    assert data["stats"]["hashrate"] == 2
    assert data["workers"][0]["name"] == "rig1"
    assert data["workers"][0]["hashrate"] == 1
    assert missing.json() == NOT_FOUND
    assert pattern.json() == NOT_FOUND
    assert empty.json() == NOT_FOUND


@pytest.mark.asyncio
async def test_stats_address_long_poll(app, service, store):
    store.add_address("addrA")
    async with client_for(app) as client:
        unknown = await client.get("/stats_address", params={"address": "nobody", "longpoll": "true"})
        request = asyncio.create_task(
            client.get("/stats_address", params={"address": "addrA", "longpoll": "true"})
        )
        await wait_for_subscribers(service.address_registry)
        await collect(service)
        response = await request

    assert unknown.json() == NOT_FOUND
    assert len(service.address_registry) == 0
    assert response.json()["stats"]["hashrate"] == 2


@pytest.mark.asyncio
async def test_get_payments_and_blocks(app, store):
    store.payments = [
        PaymentRow(timestamp=NOW - 100, hash="old", amount=1),
        PaymentRow(timestamp=NOW - 10, hash="new", amount=2),
    ]
    store.blocks = [
        BlockRow(height=10, hash="b10", timestamp=NOW, difficulty=5, shares=4, orphaned=False, reward=1),
        BlockRow(height=20, hash="b20", timestamp=NOW, difficulty=5, shares=4, orphaned=False, reward=1),
    ]
    async with client_for(app) as client:
        payments = await client.get("/get_payments", params={"time": NOW - 50})
        blocks = await client.get("/get_blocks")
        older_blocks = await client.get("/get_blocks", params={"height": 20})

    assert [row["hash"] for row in payments.json()] == ["old"]
    assert [row["height"] for row in blocks.json()] == [20, 10]
    assert [row["height"] for row in older_blocks.json()] == [10]


@pytest.mark.asyncio
async def test_listing_store_failure(app, store):
    store.fail = True
    async with client_for(app) as client:
        response = await client.get("/get_payments")
    assert response.json() == {"error": "Query failed"}


@pytest.mark.asyncio
async def test_top_miners(app, service, store):
    FastAPICache.init(InMemoryBackend(), prefix="test-cache", coder=CustomCoder)
    store.activity = [
        ("ABCDEFGHIJKLMNOPQRSTUVWXYZ", "1700000000", "5000"),
        ("zyxwvutsrqponmlkjihgfedcba", None, None),
    ]
    service.cache.replace(
        (await service.builder.build_snapshot())[0],
        {"zyxwvutsrqponmlkjihgfedcba": MinerMetric(hashrate=9)},
    )
    async with client_for(app) as client:
        response = await client.get("/get_top10miners")

    miners = response.json()
    assert miners[0] == {"miner": "zyxwvut****gfedcba", "hashrate": 9, "lastShare": None, "hashes": None}
    assert miners[1]["miner"] == "ABCDEFG****TUVWXYZ"
    assert miners[1]["hashes"] == 5000


@pytest.mark.asyncio
async def test_miners_hashrate_requires_api_key(app, service, monkeypatch):
    await collect(service)
    monkeypatch.setattr(config.settings, "API_KEY", "secret")
    async with client_for(app) as client:
        missing = await client.get("/miners_hashrate")
        wrong = await client.get("/miners_hashrate", headers={"X-API-Key": "nope"})
        allowed = await client.get("/miners_hashrate", headers={"X-API-Key": "secret"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert allowed.json() == {"minersHashrate": {"addrA": 2}}


@pytest.mark.asyncio
async def test_health_endpoint(app, service):
    await collect(service)
    async with client_for(app) as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_wait_for_payload_disconnect_unregisters(service):
    subscription = service.live_registry.subscribe(NO_ADDRESS)
    payload = await wait_for_payload(FakeRequest(disconnect_after=2), subscription, 0.01)
    assert payload is None
    assert subscription.closed
    assert len(service.live_registry) == 0


@pytest.mark.asyncio
async def test_wait_for_payload_cancelled_request_unregisters(service):
    subscription = service.live_registry.subscribe(NO_ADDRESS)
    task = asyncio.create_task(wait_for_payload(FakeRequest(), subscription, 0.01))
    await asyncio.sleep(0.02)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(service.live_registry) == 0


def test_format_top_miners_limits_and_sorts():
    rows = [(f"address{i:020d}", str(i), str(i * 10)) for i in range(15)]
    metrics = {address: MinerMetric(hashrate=int(last)) for address, last, _ in rows}
    miners = format_top_miners(rows, metrics)
    assert len(miners) == 10
    assert miners[0]["hashrate"] == 14
    assert miners[-1]["hashrate"] == 5


@pytest.mark.asyncio
async def test_stats_stays_strict_json_after_a_long_round(app, service, store, settings):
    settings.SLUSH_MINING_ENABLED = True
    store.pool_data = make_pool_data(
        stats={"lastBlockFound": str((NOW - 300 * 705) * 1000)},
        round_shares={"addrA": 50000},
    )
    await collect(service)
    async with client_for(app) as client:
        response = await client.get("/stats", params={"address": "addrA"})

    def reject(token):
        raise ValueError(f"not valid JSON: {token}")

    data = json.loads(response.text, parse_constant=reject)
    assert data["pool"]["roundHashes"] is None
    assert data["miner"]["roundHashes"] is None
