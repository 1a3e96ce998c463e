# dexarb/models.py
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import time


class PositionState(Enum):
    """
    Lifecycle states of a spider position.
    UNRECONCILED marks a position whose close swap failed and is no longer live.
    """
    OPEN = "OPEN"
    MONITORING = "MONITORING"
    CLOSED = "CLOSED"
    UNRECONCILED = "UNRECONCILED"


class CloseReason(Enum):
    PROFIT_TARGET = "profit target hit"
    STOP_LOSS = "stop loss hit"
    MAX_HOLD = "maximum hold time reached"


class Regime(Enum):
    """
    Coarse market-regime labels understood by the guidance filter.
    """
    ARBITRAGE = "arbitrage"
    TREND = "trend"
    TRIANGULAR = "triangular"
    AVOID = "avoid"
    HOLD = "hold"

    @classmethod
    def parse(cls, label: Optional[str]) -> Optional["Regime"]:
        """Maps a raw advisor label (or one of its aliases) to a Regime, or None."""
        if not label:
            return None
        key = label.strip().lower()
        aliases = {
            "arbitrage-favorable": cls.ARBITRAGE,
            "trend-favorable": cls.TREND,
            "fibonacci": cls.TREND,
            "triangular-favorable": cls.TRIANGULAR,
        }
        if key in aliases:
            return aliases[key]
        for regime in cls:
            if regime.value == key:
                return regime
        return None


@dataclass(slots=True)
class Quote:
    """A normalized gateway quote for one direction and fee tier."""
    token_in: str
    token_out: str
    amount_in: float
    out_amount: float
    fee_tier: int
    from_cache: bool = False


@dataclass(slots=True)
class SwapRequest:
    token_in: str
    token_out: str
    amount_in: float
    min_amount_out: float
    fee_tier: int
    recipient: str
    slippage_bps: int


@dataclass(slots=True)
class SwapResult:
    success: bool
    transaction_id: Optional[str] = None
    actual_amount_out: Optional[float] = None
    error: Optional[str] = None


@dataclass(slots=True)
class RiskDecision:
    allowed: bool
    adjusted_amount: Optional[float] = None
    reason: Optional[str] = None


@dataclass(slots=True)
class PoolOpportunity:
    """
    Candidate single-pool trade produced by one scan cycle.
    risk_adjusted_score is the only ranking key and is re-scored by the guidance filter.
    """
    token_a: str
    token_b: str
    fee_tier: int
    imbalance_bps: float
    expected_profit: float
    liquidity_depth: float
    discovered_at: float
    risk_adjusted_score: float

    @property
    def pair(self) -> str:
        return f"{self.token_a}/{self.token_b}"


@dataclass(slots=True)
class Position:
    """
    An open spider position. invested is in token_in units, received in token_out units.
    """
    pool_key: str
    token_in: str
    token_out: str
    invested: float
    received: float
    entry_price: float
    opened_at: float
    target_profit_bps: float
    stop_loss: float
    stop_loss_bps: float
    fee_tier: int
    state: PositionState = PositionState.OPEN
    close_attempts: int = 0
    close_reason: Optional[CloseReason] = None

    @property
    def age(self) -> float:
        """Seconds since the position was opened."""
        return time.time() - self.opened_at


@dataclass(slots=True)
class ClosedPosition:
    position: Position
    reason: CloseReason
    profit: float
    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(slots=True)
class PathHop:
    token_in: str
    token_out: str
    amount_in: float
    fee_tier: int
    quoted_out: float


@dataclass(slots=True)
class ArbitragePath:
    """
    A multi-hop cycle. tokens[0] == tokens[-1] and len(hops) == len(tokens) - 1
    once analysis has finished.
    """
    tokens: List[str]
    hops: List[PathHop]
    expected_profit: float
    total_fees: float
    trade_size: float
    confidence: float

    @property
    def profit_bps(self) -> float:
        if self.trade_size <= 0:
            return 0.0
        return (self.expected_profit / self.trade_size) * 10000

    @property
    def label(self) -> str:
        return "→".join(self.tokens)


@dataclass(slots=True)
class PathExecution:
    path: ArbitragePath
    executed: bool
    profit: float
    volume: float
    transaction_ids: List[str] = field(default_factory=list)


@dataclass(slots=True)
class CrossVenueOpportunity:
    token: str
    local_price: float
    external_price: float
    profit_bps: float
    direction: str
    exchange: str
    estimated_profit: float


@dataclass(slots=True)
class TradeResult:
    """
    Outcome of one strategy cycle handed back to the scheduler.
    """
    success: bool
    profit: float
    volume: float
    strategy: str
    descriptor: str
    timestamp: float = field(default_factory=time.time)
    error: Optional[str] = None
