# stats/builder.py
import asyncio
import time
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from utils.calculate import (
    calculate_efficiency, calculate_hashrate, calculate_round_hashes, sum_round_hashes
)
from utils.logging import logger

from .models import (
    BlockRow, HashrateSample, MinerMetric, NetworkInfo, ParticipantKey, PoolData, PoolSummary, Snapshot
)


class HashrateTotals:
    """Per-participant rates plus the pool-wide counts folded from one sample window"""

    def __init__(self, rates: Dict[str, int], miners: int, workers: int, hashrate: int):
        self.rates = rates
        self.miners = miners
        self.workers = workers
        self.hashrate = hashrate


def fold_hashrates(samples: List[HashrateSample], window: int) -> HashrateTotals:
    volumes: Dict[str, int] = defaultdict(int)
    for sample in samples:
        volumes[sample.minerKey] += sample.difficulty

    miners = 0
    workers = 0
    miner_volume = 0
    rates: Dict[str, int] = {}
    for key, volume in volumes.items():
        if ParticipantKey.parse(key).is_worker:
            workers += 1
        else:
            miners += 1
            # Worker samples duplicate their address's samples
            miner_volume += volume
        rates[key] = calculate_hashrate(volume, window)

    return HashrateTotals(rates, miners, workers, calculate_hashrate(miner_volume, window))


def summarize_blocks(blocks: List[BlockRow], total_blocks: int) -> Tuple[int, int, float]:
    """(totalDiff, totalShares, efficiency) over the blocks that already carry a reward"""
    total_diff = 0
    total_shares = 0
    share_ratio_total = 0.0
    for block in blocks:
        if not block.unlocked or block.difficulty <= 0:
            continue
        total_diff += block.difficulty
        total_shares += block.shares
        share_ratio_total += block.shares / block.difficulty
    return total_diff, total_shares, calculate_efficiency(share_ratio_total, total_blocks)


def last_block_found_seconds(value: Optional[int]) -> Optional[int]:
    """The pool stores lastBlockFound in milliseconds"""
    if value is None:
        return None
    return value // 1000


class SnapshotBuilder:
    """Turns one batch of store rows plus the daemon's chain head into a Snapshot"""

    def __init__(self, store, daemon, charts, settings, clock=time.time):
        self.store = store
        self.daemon = daemon
        self.charts = charts
        self.settings = settings
        self.clock = clock

    async def _timed(self, name: str, coro, timings: Dict[str, float]):
        start_time = time.monotonic()
        try:
            return await coro
        finally:
            timings[name] = (time.monotonic() - start_time) * 1000

    async def build_snapshot(self) -> Tuple[Snapshot, Dict[str, MinerMetric]]:
        """
        Read the store, the daemon and pool charts concurrently and derive a snapshot.

        Raises StoreUnavailable or DaemonUnavailable (or whatever the charts
        provider raises); nothing is returned for a partially failed cycle.
        """
        settings = self.settings
        now = int(self.clock())
        timings: Dict[str, float] = {}

        pool_data, network, charts = await asyncio.gather(
            self._timed(
                "redis",
                self.store.fetch_pool_data(
                    now, settings.HASHRATE_WINDOW, settings.BLOCKS_PAGE_SIZE, settings.PAYMENTS_PAGE_SIZE
                ),
                timings,
            ),
            self._timed("daemon", self.daemon.get_latest_block_header(), timings),
            self._timed("charts", self.charts.get_pool_charts_data(), timings),
        )

        logger.info(
            f"Stat collection finished: {timings.get('redis', 0):.0f} ms redis, "
            f"{timings.get('daemon', 0):.0f} ms daemon, {timings.get('charts', 0):.0f} ms charts"
        )
        return self.compute(pool_data, network, charts, now)

    def compute(self, pool_data: PoolData, network: NetworkInfo, charts: dict, now: int) -> Tuple[Snapshot, Dict[str, MinerMetric]]:
        settings = self.settings

        total_blocks = pool_data.matured_count + len(pool_data.candidates)
        blocks = pool_data.candidates + pool_data.matured
        total_diff, total_shares, efficiency = summarize_blocks(blocks, total_blocks)

        totals = fold_hashrates(pool_data.samples, settings.HASHRATE_WINDOW)

        last_block_found = _int_or_none(pool_data.stats.get(settings.LAST_BLOCK_FOUND_FIELD))
        decay_basis = last_block_found_seconds(last_block_found)

        round_hashes: Dict[str, float] = {}
        for miner, share_count in pool_data.round_shares.items():
            round_hashes[miner] = calculate_round_hashes(
                share_count,
                decay_basis,
                now,
                settings.SLUSH_MINING_WEIGHT,
                settings.SLUSH_MINING_ENABLED,
            )

        metrics: Dict[str, MinerMetric] = {}
        for key in set(totals.rates) | set(round_hashes):
            metrics[key] = MinerMetric(
                hashrate=totals.rates.get(key, 0),
                roundHashes=round_hashes.get(key, 0),
            )

        summary = PoolSummary(
            stats=pool_data.stats,
            blocks=blocks,
            totalBlocks=total_blocks,
            totalDiff=total_diff,
            totalShares=total_shares,
            efficiency=efficiency,
            payments=pool_data.payments,
            totalPayments=pool_data.total_payments,
            totalMinersPaid=pool_data.total_miners_paid,
            miners=totals.miners,
            workers=totals.workers,
            hashrate=totals.hashrate,
            roundHashes=sum_round_hashes(round_hashes.values()),
            lastBlockFound=last_block_found,
        )
        snapshot = Snapshot(
            pool=summary,
            network=network,
            config=settings.config_echo(),
            charts=charts or {},
            created=float(now),
        )
        return snapshot, metrics


def _int_or_none(value) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None
