# tests/conftest.py
import asyncio
from typing import Dict, List, Optional

import pytest

from config import Settings
from database import StoreUnavailable
from stats.keys import StoreKeys
from stats.models import AddressData, BlockRow, HashrateSample, NetworkInfo, ParticipantKey, PaymentRow, PoolData
from utils.blockchain import DaemonUnavailable
from utils.charts import ChartsProvider, payments_chart

NOW = 1_700_000_000


def make_pool_data(**overrides) -> PoolData:
    values = dict(
        samples=[],
        stats={},
        candidates=[],
        matured=[],
        round_shares={},
        matured_count=0,
        payments=[],
        total_payments=0,
        total_miners_paid=0,
    )
    values.update(overrides)
    return PoolData(**values)


def sample(difficulty: int, miner_key: str) -> HashrateSample:
    return HashrateSample(difficulty=difficulty, minerKey=miner_key, timestamp=NOW * 1000)


def block(height: int, difficulty: int, shares: int, reward: Optional[int] = None) -> BlockRow:
    return BlockRow(
        height=height,
        hash=f"hash{height}",
        timestamp=NOW - height,
        difficulty=difficulty,
        shares=shares,
        orphaned=False if reward is not None else None,
        reward=reward,
    )


NETWORK = NetworkInfo(difficulty=5000, height=1234, timestamp=NOW - 30, reward=900, hash="headhash")


class FakeMetricsStore:
    """In-memory stand-in for MetricsStore with switchable failures"""

    def __init__(self, pool_data: Optional[PoolData] = None):
        self.keys = StoreKeys("test")
        self.pool_data = pool_data or make_pool_data()
        self.addresses: Dict[str, AddressData] = {}
        self.worker_details: Dict[str, Dict[str, str]] = {}
        self.payments: List[PaymentRow] = []
        self.blocks: List[BlockRow] = []
        self.activity = []
        self.fail = False
        self.failing_addresses = set()
        self.address_lookups: List[str] = []
        self.pool_reads = 0

    def _check(self, operation: str):
        if self.fail:
            raise StoreUnavailable(operation, 1.0, ConnectionError("redis is down"))

    def add_address(self, address: str, workers=(), payments=(), stats=None):
        self.addresses[address] = AddressData(
            address=address,
            stats=stats or {"balance": "10", "paid": "20"},
            payments=list(payments),
            worker_keys=[ParticipantKey(address, name) for name in workers],
        )

    async def fetch_pool_data(self, now, window, blocks_limit, payments_limit) -> PoolData:
        self.pool_reads += 1
        self._check("pool data")
        return self.pool_data

    async def fetch_address_data(self, address, payments_limit) -> Optional[AddressData]:
        self.address_lookups.append(address)
        self._check(f"address data for {address}")
        if address in self.failing_addresses:
            raise StoreUnavailable(f"address data for {address}", 1.0, ConnectionError("timeout"))
        return self.addresses.get(address)

    async def fetch_worker_details(self, workers):
        self._check("worker details")
        return [self.worker_details.get(worker.format(), {}) for worker in workers]

    async def address_exists(self, address) -> bool:
        self._check(f"exists {address}")
        return address in self.addresses

    async def fetch_payments(self, address, before, limit):
        self._check("payments listing")
        rows = [p for p in self.payments if before is None or p.timestamp < before]
        return sorted(rows, key=lambda p: p.timestamp, reverse=True)[:limit]

    async def fetch_blocks(self, before_height, limit):
        self._check("blocks listing")
        rows = [b for b in self.blocks if before_height is None or b.height < before_height]
        return sorted(rows, key=lambda b: b.height, reverse=True)[:limit]

    async def fetch_miner_activity(self):
        self._check("miner activity")
        return list(self.activity)

    async def get_json_text(self, key):
        self._check(f"get {key}")
        return None


class FakeDaemon:
    def __init__(self, network: NetworkInfo = NETWORK):
        self.network = network
        self.fail = False

    async def get_latest_block_header(self) -> NetworkInfo:
        if self.fail:
            raise DaemonUnavailable("getlastblockheader", 5.0, "connection refused")
        return self.network


class FakeCharts(ChartsProvider):
    def __init__(self):
        self.pool_charts = {"hashrate": [[NOW, 100]]}

    async def get_pool_charts_data(self):
        return dict(self.pool_charts)

    async def get_user_charts_data(self, address, payments):
        return {"hashrate": [], "payments": payments_chart(payments)}


class FakeRequest:
    """Just enough of a Starlette request for the long-poll helper"""

    def __init__(self, disconnect_after: Optional[int] = None):
        self.disconnect_after = disconnect_after
        self.checks = 0

    async def is_disconnected(self) -> bool:
        self.checks += 1
        return self.disconnect_after is not None and self.checks >= self.disconnect_after


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def settings():
    return Settings(
        HASHRATE_WINDOW=60,
        UPDATE_INTERVAL=5,
        BLOCKS_PAGE_SIZE=30,
        PAYMENTS_PAGE_SIZE=30,
        LONGPOLL_DISCONNECT_POLL=0.01,
        SLUSH_MINING_ENABLED=False,
        SLUSH_MINING_WEIGHT=300,
        POOL_PORTS=[
            {"port": 3333, "difficulty": 1000, "desc": "Low end"},
            {"port": 5555, "difficulty": 50000, "desc": "Hidden", "hidden": True},
        ],
        API_KEY="",
    )


@pytest.fixture
def store():
    return FakeMetricsStore()


@pytest.fixture
def daemon():
    return FakeDaemon()


@pytest.fixture
def charts():
    return FakeCharts()


async def settle(times: int = 5):
    """Let pending callbacks and tasks run"""
    for _ in range(times):
        await asyncio.sleep(0)
