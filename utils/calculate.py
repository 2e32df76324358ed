# utils/calculate.py
import math
from typing import Iterable, Optional

# Efficiency reported when no unlocked block can be measured
DEFAULT_EFFICIENCY = 100.0


def round_half_up(value: float) -> int:
    """Round like the pool's JavaScript code does (halves go up, also for negatives)"""
    return int(math.floor(value + 0.5))


def calculate_hashrate(volume: float, window: int) -> int:
    """Convert a summed share difficulty over `window` seconds into hashes per second"""
    if window <= 0:
        raise ValueError(f"Hashrate window must be positive, got {window}")
    return round_half_up(volume / window)


def calculate_efficiency(share_ratio_total: float, total_blocks: int) -> float:
    """
    Pool luck over unlocked blocks, as a percentage with two decimals.

    `share_ratio_total` is the sum of shares/difficulty over every block that
    carries a reward. A pool needing exactly the block difficulty in shares
    scores 100.
    """
    if total_blocks <= 0 or share_ratio_total <= 0:
        return DEFAULT_EFFICIENCY
    return round_half_up(10000 / (share_ratio_total / total_blocks)) / 100


def calculate_round_hashes(
    share_count: float,
    last_block_found: Optional[int],
    now: int,
    weight: int,
    decay_enabled: bool,
) -> float:
    """
    Round-relative credit for `share_count` shares.

    With time-decay the credit is share_count / e^((last_block_found - now) / weight),
    all timestamps in seconds. Without a known last block the factor is 1.
    A round old enough to overflow a float yields inf.
    """
    if not decay_enabled:
        return share_count
    if weight <= 0:
        raise ValueError(f"Decay weight must be positive, got {weight}")
    if last_block_found is None:
        return share_count
    try:
        return share_count * math.exp((now - last_block_found) / weight)
    except OverflowError:
        return math.inf if share_count else 0.0


def sum_round_hashes(values: Iterable[float]) -> float:
    try:
        return math.fsum(values)
    except OverflowError:
        return math.inf
