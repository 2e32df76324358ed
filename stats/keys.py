# stats/keys.py
"""
Redis key layout shared with the pool server, and the parse functions that
turn its colon-delimited sorted-set members into structured rows.

Member formats written by the pool:

    hashrate           difficulty:minerKey:timestampMs           score = unix seconds
    blocks:candidates  hash:timestamp:difficulty:shares          score = height
    blocks:matured     hash:timestamp:difficulty:shares:orphaned:reward
    payments:*         hash:amount:fee:mixin[:recipients]        score = unix seconds
"""
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from utils.logging import logger

from .models import BlockRow, HashrateSample, ParticipantKey, PaymentRow, WORKER_SEPARATOR


class StoreKeys:
    """Key names, namespaced by coin"""

    def __init__(self, coin: str):
        self.coin = coin

    @property
    def hashrate(self) -> str:
        return f"{self.coin}:hashrate"

    @property
    def stats(self) -> str:
        return f"{self.coin}:stats"

    @property
    def candidate_blocks(self) -> str:
        return f"{self.coin}:blocks:candidates"

    @property
    def matured_blocks(self) -> str:
        return f"{self.coin}:blocks:matured"

    @property
    def round_shares(self) -> str:
        return f"{self.coin}:shares:roundCurrent"

    @property
    def all_payments(self) -> str:
        return f"{self.coin}:payments:all"

    @property
    def payments_pattern(self) -> str:
        return f"{self.coin}:payments:*"

    @property
    def workers_pattern(self) -> str:
        return f"{self.coin}:workers:*"

    def payments(self, address: Optional[str] = None) -> str:
        if not address:
            return self.all_payments
        return f"{self.coin}:payments:{address}"

    def workers(self, address: str) -> str:
        return f"{self.coin}:workers:{address}"

    def unique_worker(self, key: ParticipantKey) -> str:
        return f"{self.coin}:unique_workers:{key.format()}"

    def unique_workers_pattern(self, address: str) -> str:
        return f"{self.coin}:unique_workers:{address}{WORKER_SEPARATOR}*"

    def chart(self, name: str, address: Optional[str] = None) -> str:
        if address:
            return f"{self.coin}:charts:{name}:{address}"
        return f"{self.coin}:charts:{name}"

    def address_from_workers_key(self, key: str) -> str:
        return key[len(self.workers("")):]

    def participant_from_unique_worker_key(self, key: str) -> ParticipantKey:
        prefix = f"{self.coin}:unique_workers:"
        if not key.startswith(prefix):
            raise ValueError(f"Not a unique worker key: {key!r}")
        return ParticipantKey.parse(key[len(prefix):])


def _text(value) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


def parse_hashrate_sample(member: str) -> HashrateSample:
    parts = _text(member).split(":")
    if len(parts) < 2 or not parts[1]:
        raise ValueError(f"Malformed hashrate sample: {member!r}")
    ParticipantKey.parse(parts[1])
    return HashrateSample(
        difficulty=int(parts[0]),
        minerKey=parts[1],
        timestamp=int(parts[2]) if len(parts) > 2 and parts[2] else 0,
    )


def parse_block(member: str, score: float) -> BlockRow:
    parts = _text(member).split(":")
    if len(parts) < 4:
        raise ValueError(f"Malformed block row: {member!r}")
    # Matured rows carry the orphaned flag and the unlocked reward
    orphaned = parts[4] == "1" if len(parts) > 4 and parts[4] else None
    reward = int(parts[5]) if len(parts) > 5 and parts[5] else None
    return BlockRow(
        height=int(score),
        hash=parts[0],
        timestamp=int(parts[1]),
        difficulty=int(parts[2]),
        shares=int(parts[3]),
        orphaned=orphaned,
        reward=reward,
    )


def parse_payment(member: str, score: float) -> PaymentRow:
    parts = _text(member).split(":")
    if len(parts) < 2:
        raise ValueError(f"Malformed payment row: {member!r}")
    return PaymentRow(
        timestamp=int(score),
        hash=parts[0],
        amount=int(parts[1]),
        fee=int(parts[2]) if len(parts) > 2 and parts[2] else 0,
        mixin=int(parts[3]) if len(parts) > 3 and parts[3] else 0,
        recipients=int(parts[4]) if len(parts) > 4 and parts[4] else None,
    )


def parse_rows(rows: Iterable[Tuple[str, float]], parser) -> List:
    """Parse (member, score) pairs; members that do not parse are skipped"""
    parsed = []
    for member, score in rows:
        try:
            parsed.append(parser(member, score))
        except ValueError as e:
            logger.debug(f"Skipping store row: {e}")
    return parsed


def parse_samples(members: Sequence[str]) -> List[HashrateSample]:
    samples = []
    for member in members:
        try:
            samples.append(parse_hashrate_sample(member))
        except ValueError as e:
            logger.debug(f"Skipping hashrate sample: {e}")
    return samples


def mask_address(address: str) -> str:
    """Shorten an address for public listings: first 7 + **** + last 7"""
    return f"{address[:7]}****{address[-7:]}"


def parse_round_shares(values: Dict[str, str]) -> Dict[str, int]:
    """Current-round share counts keyed by participant; unusable entries are skipped"""
    shares = {}
    for miner, count in values.items():
        try:
            ParticipantKey.parse(miner)
            shares[miner] = int(float(count))
        except (TypeError, ValueError) as e:
            logger.debug(f"Skipping round share entry {miner!r}: {e}")
    return shares
