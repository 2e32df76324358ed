# stats/models.py
from dataclasses import dataclass, field
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any

# Separator between an address and its worker name in participant keys
WORKER_SEPARATOR = "+"

# Address used by live subscribers that did not ask for a specific miner
NO_ADDRESS = "undefined"


@dataclass(frozen=True)
class ParticipantKey:
    """An address, optionally narrowed to one worker: `address[+workerName]`"""
    address: str
    worker_name: Optional[str] = None

    @classmethod
    def parse(cls, raw: str) -> "ParticipantKey":
        address, separator, worker_name = raw.partition(WORKER_SEPARATOR)
        if not address:
            raise ValueError(f"Participant key without an address: {raw!r}")
        return cls(address=address, worker_name=worker_name if separator and worker_name else None)

    def format(self) -> str:
        if self.worker_name:
            return f"{self.address}{WORKER_SEPARATOR}{self.worker_name}"
        return self.address

    @property
    def is_worker(self) -> bool:
        return self.worker_name is not None

    def __str__(self) -> str:
        return self.format()


class HashrateSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    difficulty: int
    minerKey: str
    timestamp: int = 0


class BlockRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    height: int
    hash: str
    timestamp: int
    difficulty: int
    shares: int
    orphaned: Optional[bool] = None
    reward: Optional[int] = None

    @property
    def unlocked(self) -> bool:
        return self.reward is not None


class PaymentRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: int
    hash: str
    amount: int
    fee: int = 0
    mixin: int = 0
    recipients: Optional[int] = None


class MinerMetric(BaseModel):
    model_config = ConfigDict(frozen=True)

    hashrate: int = 0
    roundHashes: float = 0


class NetworkInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    difficulty: int
    height: int
    timestamp: int
    reward: int
    hash: str


class PoolSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    stats: Dict[str, str] = Field(default_factory=dict)
    blocks: List[BlockRow] = Field(default_factory=list)
    totalBlocks: int = 0
    totalDiff: int = 0
    totalShares: int = 0
    efficiency: float = 100.0
    payments: List[PaymentRow] = Field(default_factory=list)
    totalPayments: int = 0
    totalMinersPaid: int = 0
    miners: int = 0
    workers: int = 0
    hashrate: int = 0
    roundHashes: float = 0
    lastBlockFound: Optional[int] = None


class Snapshot(BaseModel):
    """One consistent view of the pool, replaced wholesale every aggregation cycle"""
    model_config = ConfigDict(frozen=True)

    pool: PoolSummary
    network: NetworkInfo
    config: Dict[str, Any] = Field(default_factory=dict)
    charts: Dict[str, Any] = Field(default_factory=dict)
    created: float = 0


class WorkerStats(BaseModel):
    name: str
    hashrate: int = 0
    lastShare: int = 0
    hashes: int = 0


class TopMiner(BaseModel):
    miner: str
    hashrate: int
    lastShare: Optional[int] = None
    hashes: Optional[int] = None


@dataclass
class PoolData:
    """Everything one aggregation cycle reads from the store in a single batch"""
    samples: List[HashrateSample]
    stats: Dict[str, str]
    candidates: List[BlockRow]
    matured: List[BlockRow]
    round_shares: Dict[str, int]
    matured_count: int
    payments: List[PaymentRow]
    total_payments: int
    total_miners_paid: int


@dataclass
class AddressData:
    """Store rows behind one address's worker-detail view"""
    address: str
    stats: Dict[str, str]
    payments: List[PaymentRow]
    worker_keys: List[ParticipantKey] = field(default_factory=list)
