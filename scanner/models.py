"""
Data models for the arbitrage engine. Pure data, no behavior beyond
convenience properties and JSON conversion.
"""

from __future__ import annotations

import dataclasses
import time
from datetime import date, datetime
from enum import Enum
from dataclasses import dataclass, field


class Platform(Enum):
    POLYMARKET = "polymarket"
    KALSHI = "kalshi"
    MANIFOLD = "manifold"
    LIMITLESS = "limitless"
    METACULUS = "metaculus"


class Category(Enum):
    POLITICS = "politics"
    ECONOMICS = "economics"
    CRYPTO = "crypto"
    SPORTS = "sports"
    TECH = "tech"
    ENTERTAINMENT = "entertainment"
    SCIENCE = "science"
    OTHER = "other"


class OutcomeType(Enum):
    BINARY = "binary"
    MULTI = "multi"
    SCALAR = "scalar"


class DateKind(Enum):
    DEADLINE = "deadline"
    EVENT = "event"
    RANGE = "range"


class StrategyType(Enum):
    CROSS_PLATFORM_SPREAD = "CROSS_PLATFORM_SPREAD"
    # Extension points, not produced by the current hedge math
    SYNTHETIC_CONVERSION = "SYNTHETIC_CONVERSION"
    IMPLIED_ODDS_MISMATCH = "IMPLIED_ODDS_MISMATCH"


class OutcomeSide(Enum):
    YES = "YES"
    NO = "NO"


class Side(Enum):
    BUY = "BUY"
    SELL = "SELL"


class Severity(Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class ConfidenceGrade(Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"

    @property
    def rank(self) -> int:
        """0 for A (best) through 4 for F."""
        return _GRADE_ORDER.index(self)

    def at_least(self, other: ConfidenceGrade) -> bool:
        return self.rank <= other.rank


_GRADE_ORDER = (ConfidenceGrade.A, ConfidenceGrade.B, ConfidenceGrade.C, ConfidenceGrade.D, ConfidenceGrade.F)


class OpportunityStatus(Enum):
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(frozen=True)
class PriceLevel:
    price: float
    size: float


@dataclass(frozen=True)
class OrderBook:
    """YES-token book for one market. Bids descending, asks ascending."""
    token_id: str
    bids: tuple[PriceLevel, ...]
    asks: tuple[PriceLevel, ...]

    @property
    def best_bid(self) -> PriceLevel | None:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> PriceLevel | None:
        return self.asks[0] if self.asks else None

    @property
    def spread(self) -> float | None:
        if self.best_bid and self.best_ask:
            return self.best_ask.price - self.best_bid.price
        return None

    @property
    def midpoint(self) -> float | None:
        if self.best_bid and self.best_ask:
            return (self.best_ask.price + self.best_bid.price) / 2.0
        return None


@dataclass(frozen=True)
class Market:
    platform: str
    market_id: str
    title: str
    yes_price: float
    volume: float = 0.0
    liquidity: float = 0.0  # 0 = unknown, estimated from volume
    url: str = ""
    end_date: str = ""  # ISO 8601 (empty = unknown)
    book: OrderBook | None = None

    @property
    def effective_liquidity(self) -> float:
        return self.liquidity or self.volume * 0.1


# -- Metadata ---------------------------------------------------------------


@dataclass(frozen=True)
class ExtractedDate:
    raw: str
    normalized: date | None
    kind: DateKind


@dataclass(frozen=True)
class ExtractedAmount:
    raw: str
    value: float
    unit: str


@dataclass(frozen=True)
class ExtractedEntities:
    people: tuple[str, ...] = ()
    organizations: tuple[str, ...] = ()
    locations: tuple[str, ...] = ()
    dates: tuple[ExtractedDate, ...] = ()
    amounts: tuple[ExtractedAmount, ...] = ()
    events: tuple[str, ...] = ()

    def token_set(self) -> frozenset[str]:
        """Combined entity set used for overlap scoring. Amounts compare by value."""
        tokens: set[str] = set()
        tokens.update(f"person:{p.lower()}" for p in self.people)
        tokens.update(f"org:{o.lower()}" for o in self.organizations)
        tokens.update(f"loc:{loc.lower()}" for loc in self.locations)
        tokens.update(f"event:{e.lower()}" for e in self.events)
        tokens.update(f"amount:{a.value:g}" for a in self.amounts)
        return frozenset(tokens)


@dataclass(frozen=True)
class MarketMetadata:
    platform: str
    market_id: str
    title: str
    event_date: date | None
    resolution_date: date | None
    resolution_source: str | None
    outcome_type: OutcomeType
    outcomes: tuple[str, ...]
    category: Category
    subcategory: str | None
    entities: ExtractedEntities


@dataclass(frozen=True)
class EquivalenceValidations:
    same_core_event: bool = False
    same_timeframe: bool = False
    same_outcome_structure: bool = False
    no_resolution_conflict: bool = False
    entities_match: bool = False

    def failed(self) -> list[str]:
        return [f.name for f in dataclasses.fields(self) if not getattr(self, f.name)]


@dataclass(frozen=True)
class EquivalenceScore:
    overall_score: float
    title_similarity: float
    entity_overlap: float
    date_alignment: float
    category_match: float
    outcome_alignment: float
    validations: EquivalenceValidations
    warnings: tuple[str, ...] = ()
    disqualifiers: tuple[str, ...] = ()


@dataclass(frozen=True)
class OutcomeMapping:
    """Outcome index mapping between platforms (0 = YES, 1 = NO)."""
    a_to_b: tuple[int, int] = (0, 1)
    b_to_a: tuple[int, int] = (0, 1)
    is_inverted: bool = False


@dataclass(frozen=True)
class ValidatedMarketPair:
    market_a: Market
    market_b: Market
    metadata_a: MarketMetadata
    metadata_b: MarketMetadata
    equivalence: EquivalenceScore
    outcome_mapping: OutcomeMapping


# -- Pricing + costs --------------------------------------------------------


@dataclass(frozen=True)
class OrderBookDepth:
    volume_at_1pct: float
    volume_at_2pct: float
    volume_at_5pct: float
    price_impact_100: float
    price_impact_1000: float
    price_impact_10000: float


@dataclass(frozen=True)
class ExecutablePrice:
    mid: float
    bid: float
    ask: float
    spread: float
    bid_size: float
    ask_size: float
    depth: OrderBookDepth
    timestamp: float = field(default_factory=time.time)
    is_stale: bool = False


@dataclass(frozen=True)
class VolumeDiscount:
    min_volume: float
    fee_rate: float


@dataclass(frozen=True)
class FeeStructure:
    trading_fee: float = 0.0
    withdrawal_fee: float = 0.0
    settlement_fee: float = 0.0
    volume_discounts: tuple[VolumeDiscount, ...] = ()


@dataclass(frozen=True)
class ArbitrageLeg:
    platform: str
    market: Market
    side: OutcomeSide
    action: Side
    target_price: float
    executable_price: ExecutablePrice
    fees: FeeStructure
    estimated_slippage: float


@dataclass(frozen=True)
class ArbitrageStrategy:
    type: StrategyType
    description: str
    legs: tuple[ArbitrageLeg, ArbitrageLeg]
    guaranteed_return: float


@dataclass(frozen=True)
class CostBreakdown:
    trading_fees: float
    slippage: float
    spread_cost: float
    settlement_fees: float
    total_cost: float
    cost_as_pct_of_capital: float


# -- Risk, execution, confidence --------------------------------------------


@dataclass(frozen=True)
class RiskFlag:
    severity: Severity
    code: str
    message: str


@dataclass(frozen=True)
class ExecutionRisk:
    score: int
    liquidity_risk: int
    slippage_risk: int
    timing_risk: int
    max_executable_size: float
    expected_slippage: float
    execution_window_ms: int


@dataclass(frozen=True)
class MarketRisk:
    score: int
    resolution_risk: int
    correlation_risk: int
    price_volatility: int
    resolution_days: float


@dataclass(frozen=True)
class OperationalRisk:
    score: int
    reliability_a: int
    reliability_b: int
    settlement_risk: float
    regulatory_risk: int


@dataclass(frozen=True)
class RiskAssessment:
    overall_risk_score: int
    execution: ExecutionRisk
    market: MarketRisk
    operational: OperationalRisk
    flags: tuple[RiskFlag, ...]
    is_safe: bool
    safety_reason: str


@dataclass(frozen=True)
class ExecutionPlan:
    leg_order: tuple[int, int]
    estimated_execution_time_ms: int
    max_acceptable_delay_ms: int
    recommended_size: float
    max_size: float
    min_size: float
    max_price_deviation: float
    fallback_strategy: str
    abort_conditions: tuple[str, ...]


@dataclass(frozen=True)
class ArbitrageConfidence:
    score: int
    match_confidence: float
    price_confidence: int
    execution_confidence: float
    profit_confidence: int
    grade: ConfidenceGrade
    recommendation: str


@dataclass(frozen=True)
class ValidatedArbitrageOpportunity:
    id: str
    pair: ValidatedMarketPair
    strategy: ArbitrageStrategy
    net_profit_pct: float
    gross_profit_pct: float
    total_costs: CostBreakdown
    risk: RiskAssessment
    execution: ExecutionPlan
    confidence: ArbitrageConfidence
    timestamp: float = field(default_factory=time.time)


# -- Scan output --------------------------------------------------------------


@dataclass
class ScanResult:
    success: bool = False
    timestamp: float = field(default_factory=time.time)
    duration: float = 0.0  # seconds
    markets_scanned: dict[str, int] = field(default_factory=dict)
    total_markets: int = 0
    pairs_evaluated: int = 0
    pairs_validated: int = 0
    avg_equivalence_score: float = 0.0
    opportunities: list[ValidatedArbitrageOpportunity] = field(default_factory=list)
    filtered_count: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return to_jsonable(self)


def to_jsonable(obj):
    """Recursively convert dataclasses, enums and dates into JSON-native values."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in obj]
    return obj
