# database.py
from redis import asyncio as aioredis
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError
import asyncio
from contextlib import asynccontextmanager
from typing import Optional, Dict, Any, List, Tuple
from config import settings
from utils.logging import logger
import time
import backoff

from stats.keys import StoreKeys, parse_block, parse_payment, parse_round_shares, parse_rows, parse_samples
from stats.models import AddressData, ParticipantKey, PaymentRow, BlockRow, PoolData


class StoreUnavailable(Exception):
    """A store read failed; the caller keeps serving whatever it had before"""

    def __init__(self, operation: str, elapsed_ms: float, error: Exception):
        self.operation = operation
        self.elapsed_ms = elapsed_ms
        super().__init__(f"Store read '{operation}' failed after {elapsed_ms:.0f} ms: {error}")


class RedisPool:
    _instance: Optional[aioredis.Redis] = None
    _lock = asyncio.Lock()
    _connected_at: Optional[float] = None

    @classmethod
    async def get_client(cls) -> aioredis.Redis:
        if not cls._instance:
            async with cls._lock:
                if not cls._instance:
                    cls._instance = await cls._create_client()
        return cls._instance

    @classmethod
    @backoff.on_exception(
        backoff.expo,
        (RedisConnectionError, RedisTimeoutError),
        max_tries=3,
        max_time=30
    )
    async def _create_client(cls) -> aioredis.Redis:
        """Connect to the pool's Redis and make sure it answers"""
        client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf8",
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_keepalive=True,
            health_check_interval=30,
        )
        try:
            await client.ping()
        except Exception:
            await client.aclose()
            raise
        cls._connected_at = time.time()
        logger.info(f"Connected to Redis for coin {settings.COIN}")
        return client

    @classmethod
    def current(cls) -> aioredis.Redis:
        if cls._instance is None:
            raise RuntimeError("Redis client is not initialized")
        return cls._instance

    @classmethod
    async def close(cls):
        if cls._instance:
            await cls._instance.aclose()
            cls._instance = None
            cls._connected_at = None
            logger.info("Redis connection pool closed")

    @classmethod
    def get_pool_stats(cls) -> Dict[str, Any]:
        if not cls._instance:
            return {"status": "not_initialized"}
        pool = cls._instance.connection_pool
        return {
            "status": "connected",
            "connected_for": round(time.time() - cls._connected_at) if cls._connected_at else None,
            "max_connections": pool.max_connections,
            "in_use_connections": len(getattr(pool, "_in_use_connections", ())),
        }


class MetricsStore:
    """Read side of the pool's Redis data, with every row parsed at the boundary"""

    def __init__(self, redis: aioredis.Redis, keys: StoreKeys):
        self.redis = redis
        self.keys = keys

    @asynccontextmanager
    async def _read(self, operation: str):
        start_time = time.monotonic()
        try:
            yield
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            elapsed_ms = (time.monotonic() - start_time) * 1000
            raise StoreUnavailable(operation, elapsed_ms, e) from e

    async def fetch_pool_data(self, now: int, window: int, blocks_limit: int, payments_limit: int) -> PoolData:
        """Trim the hashrate window and read everything an aggregation cycle needs in one MULTI"""
        keys = self.keys
        window_start = now - window
        async with self._read("pool data"):
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(keys.hashrate, "-inf", f"({window_start}")
                pipe.zrange(keys.hashrate, 0, -1)
                pipe.hgetall(keys.stats)
                pipe.zrange(keys.candidate_blocks, 0, -1, withscores=True)
                pipe.zrevrange(keys.matured_blocks, 0, blocks_limit - 1, withscores=True)
                pipe.hgetall(keys.round_shares)
                pipe.zcard(keys.matured_blocks)
                pipe.zrevrange(keys.all_payments, 0, payments_limit - 1, withscores=True)
                pipe.zcard(keys.all_payments)
                pipe.keys(keys.payments_pattern)
                replies = await pipe.execute()

        (_, samples, stats, candidates, matured, round_shares,
         matured_count, payments, total_payments, payment_keys) = replies

        paid_addresses = [key for key in payment_keys or [] if key != keys.all_payments]
        return PoolData(
            samples=parse_samples(samples or []),
            stats=dict(stats or {}),
            candidates=parse_rows(candidates or [], parse_block),
            matured=parse_rows(matured or [], parse_block),
            round_shares=parse_round_shares(round_shares or {}),
            matured_count=int(matured_count or 0),
            payments=parse_rows(payments or [], parse_payment),
            total_payments=int(total_payments or 0),
            total_miners_paid=len(paid_addresses),
        )

    async def fetch_address_data(self, address: str, payments_limit: int) -> Optional[AddressData]:
        """Workers hash, recent payments and worker keys for one address; None when unknown"""
        keys = self.keys
        async with self._read(f"address data for {address}"):
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.hgetall(keys.workers(address))
                pipe.zrevrange(keys.payments(address), 0, payments_limit - 1, withscores=True)
                pipe.keys(keys.unique_workers_pattern(address))
                stats, payments, worker_keys = await pipe.execute()

        if not stats:
            return None

        participants: List[ParticipantKey] = []
        for key in sorted(worker_keys or []):
            try:
                participant = keys.participant_from_unique_worker_key(key)
            except ValueError:
                logger.debug(f"Skipping unexpected worker key {key}")
                continue
            if participant.is_worker and participant.address == address:
                participants.append(participant)

        return AddressData(
            address=address,
            stats=dict(stats),
            payments=parse_rows(payments or [], parse_payment),
            worker_keys=participants,
        )

    async def fetch_worker_details(self, workers: List[ParticipantKey]) -> List[Dict[str, str]]:
        """Per-worker detail hashes, in the same order as `workers`"""
        if not workers:
            return []
        async with self._read(f"worker details for {workers[0].address}"):
            async with self.redis.pipeline(transaction=True) as pipe:
                for worker in workers:
                    pipe.hgetall(self.keys.unique_worker(worker))
                replies = await pipe.execute()
        return [dict(reply or {}) for reply in replies]

    async def address_exists(self, address: str) -> bool:
        async with self._read(f"exists {address}"):
            return bool(await self.redis.exists(self.keys.workers(address)))

    async def fetch_payments(self, address: Optional[str], before: Optional[int], limit: int) -> List[PaymentRow]:
        """Payments strictly older than `before`, newest first"""
        upper = f"({before}" if before is not None else "+inf"
        async with self._read("payments listing"):
            rows = await self.redis.zrevrangebyscore(
                self.keys.payments(address), upper, "-inf", start=0, num=limit, withscores=True
            )
        return parse_rows(rows, parse_payment)

    async def fetch_blocks(self, before_height: Optional[int], limit: int) -> List[BlockRow]:
        """Matured blocks strictly below `before_height`, highest first"""
        upper = f"({before_height}" if before_height is not None else "+inf"
        async with self._read("blocks listing"):
            rows = await self.redis.zrevrangebyscore(
                self.keys.matured_blocks, upper, "-inf", start=0, num=limit, withscores=True
            )
        return parse_rows(rows, parse_block)

    async def fetch_miner_activity(self) -> List[Tuple[str, Optional[str], Optional[str]]]:
        """(address, lastShare, hashes) for every known miner"""
        async with self._read("miner activity"):
            worker_keys = await self.redis.keys(self.keys.workers_pattern)
            if not worker_keys:
                return []
            async with self.redis.pipeline(transaction=False) as pipe:
                for key in worker_keys:
                    pipe.hmget(key, "lastShare", "hashes")
                replies = await pipe.execute()
        return [
            (self.keys.address_from_workers_key(key), reply[0], reply[1])
            for key, reply in zip(worker_keys, replies)
        ]

    async def get_json_text(self, key: str) -> Optional[str]:
        async with self._read(f"get {key}"):
            return await self.redis.get(key)
