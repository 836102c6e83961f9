"""
Arbitrage calculator. Given a validated pair and live prices, computes the
hedge, its costs, risk, an execution plan, and a letter confidence grade.

Hedge math (binary markets, prices in [0, 1]):
  cost1 = yesA + (1 - yesB)   buy YES on A + NO on B
  cost2 = yesB + (1 - yesA)   buy YES on B + NO on A
Exactly one leg pays $1 whatever the outcome, so gross profit is
1 - min(cost1, cost2). No opportunity unless some cost < 1.

All percentages are per $1 of guaranteed payout (one hedge set), the unit
gross profit is naturally expressed in. net = gross - sum(costs per set).
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from config import Config
from scanner.depth import estimate_slippage, executable_price
from scanner.errors import CalculationError
from scanner.fees import fee_model_for
from scanner.models import (
    ArbitrageConfidence,
    ArbitrageLeg,
    ArbitrageStrategy,
    ConfidenceGrade,
    CostBreakdown,
    ExecutablePrice,
    ExecutionPlan,
    ExecutionRisk,
    Market,
    MarketRisk,
    OperationalRisk,
    OutcomeSide,
    Platform,
    RiskAssessment,
    RiskFlag,
    Severity,
    Side,
    StrategyType,
    ValidatedArbitrageOpportunity,
    ValidatedMarketPair,
)

logger = logging.getLogger(__name__)

# Risk blend
W_EXECUTION_RISK = 0.5
W_MARKET_RISK = 0.3
W_OPERATIONAL_RISK = 0.2

# Confidence blend
W_MATCH_CONF = 0.35
W_PRICE_CONF = 0.25
W_EXECUTION_CONF = 0.25
W_PROFIT_CONF = 0.15

# Grade cutpoints, best first
GRADE_CUTPOINTS: tuple[tuple[int, ConfidenceGrade], ...] = (
    (90, ConfidenceGrade.A),
    (75, ConfidenceGrade.B),
    (60, ConfidenceGrade.C),
    (40, ConfidenceGrade.D),
)

RECOMMENDATIONS = {
    ConfidenceGrade.A: "High confidence opportunity. Safe to execute with recommended size.",
    ConfidenceGrade.B: "Good opportunity. Proceed with caution, use smaller position size.",
    ConfidenceGrade.C: "Moderate opportunity. Manual review recommended before execution.",
    ConfidenceGrade.D: "Low confidence. Not recommended without additional verification.",
    ConfidenceGrade.F: "Do not execute. Insufficient confidence in opportunity validity.",
}

# Track record of each venue (0-100). Regulated venues score highest.
PLATFORM_RELIABILITY: dict[str, int] = {
    Platform.POLYMARKET.value: 90,
    Platform.KALSHI.value: 95,
    Platform.MANIFOLD.value: 70,
    Platform.LIMITLESS.value: 60,
    Platform.METACULUS.value: 80,
}
DEFAULT_RELIABILITY = 50
REGULATORY_RISK = 20
PRICE_VOLATILITY_RISK = 30
UNKNOWN_RESOLUTION_DAYS = 365.0
LONG_RESOLUTION_DAYS = 180.0
MATCH_UNCERTAINTY_BELOW = 0.9
MAX_WARNING_FLAGS = 2
# Smallest position worth opening, in profit dollars
MIN_PROFIT_USD = 1.0


@dataclass(frozen=True)
class HedgeQuote:
    """Result of the two-way hedge comparison for one pair of aligned YES prices."""
    has_arbitrage: bool
    yes_on_a: bool  # True: buy YES on A + NO on B; False: YES on B + NO on A
    cost: float
    gross_profit_pct: float
    net_profit_pct: float


def compute_hedge(yes_a: float, yes_b: float, fee_adjustment: float = 0.0) -> HedgeQuote:
    """
    Compare both hedges and keep the cheaper one.

    yes_b must already be aligned to A's YES outcome. fee_adjustment is a flat
    per-set deduction (the monitor uses 0.02 as a fee allowance).
    """
    cost1 = yes_a + (1.0 - yes_b)
    cost2 = yes_b + (1.0 - yes_a)
    yes_on_a = cost1 <= cost2
    cost = cost1 if yes_on_a else cost2
    gross = 1.0 - cost
    net = gross - fee_adjustment
    return HedgeQuote(
        has_arbitrage=cost < 1.0 and net > 0.0,
        yes_on_a=yes_on_a,
        cost=cost,
        gross_profit_pct=gross,
        net_profit_pct=net,
    )


def grade_for_score(score: float) -> ConfidenceGrade:
    for cutpoint, grade in GRADE_CUTPOINTS:
        if score >= cutpoint:
            return grade
    return ConfidenceGrade.F


def market_key(market: Market) -> str:
    return f"{market.platform}:{market.market_id}"


@dataclass(frozen=True)
class _Leg:
    market: Market
    price: ExecutablePrice
    side: OutcomeSide
    target_price: float


def _build_legs(pair: ValidatedMarketPair, price_a: ExecutablePrice, price_b: ExecutablePrice, quote: HedgeQuote, yes_a: float, yes_b: float) -> tuple[_Leg, _Leg]:
    inverted = pair.outcome_mapping.is_inverted
    if quote.yes_on_a:
        leg_a = _Leg(pair.market_a, price_a, OutcomeSide.YES, yes_a)
        # "NO" relative to A's outcome; on an inverted listing that is B's YES
        side_b = OutcomeSide.YES if inverted else OutcomeSide.NO
        leg_b = _Leg(pair.market_b, price_b, side_b, 1.0 - yes_b)
    else:
        leg_a = _Leg(pair.market_a, price_a, OutcomeSide.NO, 1.0 - yes_a)
        side_b = OutcomeSide.NO if inverted else OutcomeSide.YES
        leg_b = _Leg(pair.market_b, price_b, side_b, yes_b)
    return leg_a, leg_b


def _resolution_days(pair: ValidatedMarketPair, now: float) -> float:
    days: list[float] = []
    for market in (pair.market_a, pair.market_b):
        if not market.end_date:
            continue
        try:
            raw = market.end_date.replace("Z", "+00:00")
            if "T" not in raw:
                raw += "T23:59:59+00:00"
            end = datetime.fromisoformat(raw)
        except ValueError:
            continue
        if end.tzinfo is None:
            end = end.replace(tzinfo=timezone.utc)
        days.append(max(0.0, (end.timestamp() - now) / 86_400))
    return min(days) if days else UNKNOWN_RESOLUTION_DAYS


def _assess_execution(pair: ValidatedMarketPair, legs: tuple[_Leg, _Leg], slippages: tuple[float, float], config: Config) -> ExecutionRisk:
    min_liquidity = min(pair.market_a.effective_liquidity, pair.market_b.effective_liquidity)
    if min_liquidity < config.min_liquidity_usd:
        liquidity_risk = 80
    elif min_liquidity < config.min_liquidity_usd * 5:
        liquidity_risk = 50
    else:
        liquidity_risk = 20

    expected_slippage = slippages[0] + slippages[1]
    if expected_slippage > 0.05:
        slippage_risk = 80
    elif expected_slippage > 0.02:
        slippage_risk = 50
    else:
        slippage_risk = 20

    # Thin volume means prices move while the second leg is still working
    min_volume = min(pair.market_a.volume or 0.0, pair.market_b.volume or 0.0)
    if min_volume < config.min_volume_usd:
        timing_risk = 70
    elif min_volume < config.min_volume_usd * 10:
        timing_risk = 40
    else:
        timing_risk = 20

    if min_volume < 5_000:
        window_ms = 60_000
    elif min_volume < 50_000:
        window_ms = 30_000
    else:
        window_ms = 10_000

    return ExecutionRisk(
        score=round((liquidity_risk + slippage_risk + timing_risk) / 3),
        liquidity_risk=liquidity_risk,
        slippage_risk=slippage_risk,
        timing_risk=timing_risk,
        max_executable_size=min(legs[0].price.depth.volume_at_2pct, legs[1].price.depth.volume_at_2pct),
        expected_slippage=expected_slippage,
        execution_window_ms=window_ms,
    )


def _assess_market(pair: ValidatedMarketPair, now: float) -> MarketRisk:
    validations = pair.equivalence.validations
    if not validations.no_resolution_conflict:
        resolution_risk = 70
    elif not validations.same_timeframe:
        resolution_risk = 50
    else:
        resolution_risk = 20

    overlap = pair.equivalence.entity_overlap
    if overlap > 0.7:
        correlation_risk = 20
    elif overlap > 0.5:
        correlation_risk = 40
    else:
        correlation_risk = 60

    return MarketRisk(
        score=round((resolution_risk + correlation_risk + PRICE_VOLATILITY_RISK) / 3),
        resolution_risk=resolution_risk,
        correlation_risk=correlation_risk,
        price_volatility=PRICE_VOLATILITY_RISK,
        resolution_days=_resolution_days(pair, now),
    )


def _assess_operational(pair: ValidatedMarketPair) -> OperationalRisk:
    reliability_a = PLATFORM_RELIABILITY.get(pair.market_a.platform.lower(), DEFAULT_RELIABILITY)
    reliability_b = PLATFORM_RELIABILITY.get(pair.market_b.platform.lower(), DEFAULT_RELIABILITY)
    settlement_risk = 100 - (reliability_a + reliability_b) / 2
    return OperationalRisk(
        score=round((settlement_risk + REGULATORY_RISK) / 2),
        reliability_a=reliability_a,
        reliability_b=reliability_b,
        settlement_risk=settlement_risk,
        regulatory_risk=REGULATORY_RISK,
    )


def assess_risk(
    pair: ValidatedMarketPair,
    legs: tuple[_Leg, _Leg],
    slippages: tuple[float, float],
    net_profit_pct: float,
    config: Config,
    now: float,
) -> RiskAssessment:
    execution = _assess_execution(pair, legs, slippages, config)
    market = _assess_market(pair, now)
    operational = _assess_operational(pair)
    overall = round(
        W_EXECUTION_RISK * execution.score
        + W_MARKET_RISK * market.score
        + W_OPERATIONAL_RISK * operational.score
    )

    flags: list[RiskFlag] = []
    if execution.liquidity_risk > 60:
        flags.append(RiskFlag(Severity.WARNING, "LOW_LIQUIDITY", "Low liquidity may cause high slippage"))
    if market.resolution_risk > 50:
        flags.append(RiskFlag(Severity.WARNING, "RESOLUTION_RISK", "Markets may resolve differently due to differing criteria"))
    if pair.equivalence.overall_score < MATCH_UNCERTAINTY_BELOW:
        flags.append(RiskFlag(
            Severity.WARNING,
            "MATCH_UNCERTAINTY",
            f"Market equivalence {pair.equivalence.overall_score * 100:.0f}% - verify manually",
        ))
    if market.resolution_days > LONG_RESOLUTION_DAYS:
        flags.append(RiskFlag(
            Severity.INFO,
            "LONG_RESOLUTION",
            f"Capital locked for ~{market.resolution_days:.0f} days until resolution",
        ))
    if net_profit_pct < config.min_net_profit_pct * 2:
        flags.append(RiskFlag(Severity.INFO, "THIN_MARGIN", "Profit margin is thin - small price movements could eliminate profit"))

    critical = sum(1 for f in flags if f.severity == Severity.CRITICAL)
    warnings = sum(1 for f in flags if f.severity == Severity.WARNING)
    is_safe = (
        critical == 0
        and warnings <= MAX_WARNING_FLAGS
        and overall <= config.max_risk_score
        and execution.score <= config.max_execution_risk
    )

    if critical > 0:
        reason = "Critical risk flags present"
    elif warnings > MAX_WARNING_FLAGS:
        reason = f"{warnings} warning flags present"
    elif overall > config.max_risk_score:
        reason = f"Risk score {overall} exceeds threshold {config.max_risk_score:g}"
    elif execution.score > config.max_execution_risk:
        reason = f"Execution risk {execution.score} exceeds threshold {config.max_execution_risk:g}"
    else:
        reason = "All risk checks passed"

    return RiskAssessment(
        overall_risk_score=overall,
        execution=execution,
        market=market,
        operational=operational,
        flags=tuple(flags),
        is_safe=is_safe,
        safety_reason=reason,
    )


def plan_execution(pair: ValidatedMarketPair, risk: RiskAssessment, net_profit_pct: float, config: Config) -> ExecutionPlan:
    liquidity_a = pair.market_a.effective_liquidity
    liquidity_b = pair.market_b.effective_liquidity
    # Hard side first: the thinner book is the one likely to move or fail
    leg_order = (0, 1) if liquidity_a < liquidity_b else (1, 0)

    max_executable = risk.execution.max_executable_size
    available_liquidity = min(liquidity_a, liquidity_b)
    max_size = min(max_executable, config.max_position_usd)
    recommended = min(
        config.default_position_usd,
        config.max_position_pct * available_liquidity,
        max_executable,
        config.max_position_usd,
    )
    min_size = min(recommended, MIN_PROFIT_USD / net_profit_pct) if net_profit_pct > 0 else recommended

    return ExecutionPlan(
        leg_order=leg_order,
        estimated_execution_time_ms=risk.execution.execution_window_ms,
        max_acceptable_delay_ms=config.max_execution_time_ms,
        recommended_size=recommended,
        max_size=max_size,
        min_size=min_size,
        max_price_deviation=config.max_price_deviation,
        fallback_strategy="Cancel second leg if first leg executes at worse price",
        abort_conditions=(
            f"Price moves more than {config.max_price_deviation * 100:.0f}% during execution",
            "Insufficient liquidity at execution time",
            "Platform API unavailable",
        ),
    )


def score_confidence(
    pair: ValidatedMarketPair,
    prices: tuple[ExecutablePrice, ExecutablePrice],
    risk: RiskAssessment,
    net_profit_pct: float,
    config: Config,
) -> ArbitrageConfidence:
    match_conf = pair.equivalence.overall_score * 100

    avg_spread = (prices[0].spread + prices[1].spread) / 2
    if avg_spread < 0.02:
        price_conf = 90
    elif avg_spread < 0.05:
        price_conf = 70
    else:
        price_conf = 50

    execution_conf = max(0.0, 100.0 - risk.execution.score)

    min_net = config.min_net_profit_pct
    if net_profit_pct > min_net * 3:
        profit_conf = 90
    elif net_profit_pct > min_net * 2:
        profit_conf = 70
    elif net_profit_pct > min_net:
        profit_conf = 50
    else:
        profit_conf = 30

    score = round(
        W_MATCH_CONF * match_conf
        + W_PRICE_CONF * price_conf
        + W_EXECUTION_CONF * execution_conf
        + W_PROFIT_CONF * profit_conf
    )
    grade = grade_for_score(score)
    return ArbitrageConfidence(
        score=score,
        match_confidence=match_conf,
        price_confidence=price_conf,
        execution_confidence=execution_conf,
        profit_confidence=profit_conf,
        grade=grade,
        recommendation=RECOMMENDATIONS[grade],
    )


def analyze(
    pair: ValidatedMarketPair,
    live_prices: dict[str, ExecutablePrice] | None,
    config: Config,
    now: float | None = None,
) -> ValidatedArbitrageOpportunity | None:
    """
    Analyze one validated pair. Returns None when no hedge clears the
    profit thresholds. Raises CalculationError on missing/invalid price data.

    live_prices maps "platform:market_id" to a fresh ExecutablePrice and
    overrides whatever the Market record carries.
    """
    now = time.time() if now is None else now
    live_prices = live_prices or {}
    price_a = live_prices.get(market_key(pair.market_a)) or executable_price(pair.market_a)
    price_b = live_prices.get(market_key(pair.market_b)) or executable_price(pair.market_b)

    yes_a = price_a.ask
    # Inverted listing: A's YES is B's NO, bought at 1 - B's YES bid
    yes_b = 1.0 - price_b.bid if pair.outcome_mapping.is_inverted else price_b.ask
    for value, label in ((yes_a, "A"), (yes_b, "B")):
        if not 0.0 <= value <= 1.0:
            raise CalculationError(f"Aligned YES price for leg {label} out of range: {value}")

    quote = compute_hedge(yes_a, yes_b)
    if not quote.has_arbitrage:
        return None

    legs = _build_legs(pair, price_a, price_b, quote, yes_a, yes_b)
    fee_a = fee_model_for(legs[0].market.platform)
    fee_b = fee_model_for(legs[1].market.platform)

    # position_usd counts $1-payout hedge sets
    position = config.default_position_usd
    slippages = (
        estimate_slippage(legs[0].market, legs[0].price, legs[0].side, position * legs[0].target_price),
        estimate_slippage(legs[1].market, legs[1].price, legs[1].side, position * legs[1].target_price),
    )

    fees_per_set = (
        legs[0].target_price * fee_a.trading_fee_rate(config.trader_volume_usd)
        + legs[1].target_price * fee_b.trading_fee_rate(config.trader_volume_usd)
    )
    slippage_per_set = slippages[0] + slippages[1]
    spread_per_set = price_a.spread / 2 + price_b.spread / 2
    settlement_per_set = fee_a.settlement_fee_rate() + fee_b.settlement_fee_rate()
    cost_per_set = fees_per_set + slippage_per_set + spread_per_set + settlement_per_set

    costs = CostBreakdown(
        trading_fees=fees_per_set * position,
        slippage=slippage_per_set * position,
        spread_cost=spread_per_set * position,
        settlement_fees=settlement_per_set * position,
        total_cost=cost_per_set * position,
        cost_as_pct_of_capital=cost_per_set,
    )

    gross = quote.gross_profit_pct
    net = gross - cost_per_set
    if net < config.min_net_profit_pct or gross < config.min_gross_profit_pct:
        logger.debug(
            "No opportunity %s / %s: gross %.4f, costs %.4f, net %.4f",
            market_key(pair.market_a), market_key(pair.market_b), gross, cost_per_set, net,
        )
        return None

    risk = assess_risk(pair, legs, slippages, net, config, now)
    execution = plan_execution(pair, risk, net, config)
    confidence = score_confidence(pair, (price_a, price_b), risk, net, config)

    yes_leg, no_leg = (legs[0], legs[1]) if legs[0].side == OutcomeSide.YES else (legs[1], legs[0])
    strategy = ArbitrageStrategy(
        type=StrategyType.CROSS_PLATFORM_SPREAD,
        description=f"Buy YES @ {yes_leg.market.platform} + NO @ {no_leg.market.platform}",
        legs=(
            ArbitrageLeg(
                platform=legs[0].market.platform,
                market=legs[0].market,
                side=legs[0].side,
                action=Side.BUY,
                target_price=legs[0].target_price,
                executable_price=legs[0].price,
                fees=fee_a.structure,
                estimated_slippage=slippages[0],
            ),
            ArbitrageLeg(
                platform=legs[1].market.platform,
                market=legs[1].market,
                side=legs[1].side,
                action=Side.BUY,
                target_price=legs[1].target_price,
                executable_price=legs[1].price,
                fees=fee_b.structure,
                estimated_slippage=slippages[1],
            ),
        ),
        guaranteed_return=1.0 / (quote.cost + cost_per_set),
    )

    logger.info(
        "CROSS-PLATFORM ARB: %s | gross=%.2f%% net=%.2f%% grade=%s risk=%d",
        strategy.description, gross * 100, net * 100, confidence.grade.value, risk.overall_risk_score,
    )

    return ValidatedArbitrageOpportunity(
        id=f"arb-{int(now * 1000)}-{uuid.uuid4().hex[:6]}",
        pair=pair,
        strategy=strategy,
        net_profit_pct=net,
        gross_profit_pct=gross,
        total_costs=costs,
        risk=risk,
        execution=execution,
        confidence=confidence,
        timestamp=now,
    )


def find_opportunities(
    pairs: list[ValidatedMarketPair],
    config: Config,
    live_prices: dict[str, ExecutablePrice] | None = None,
    errors: list[str] | None = None,
) -> list[ValidatedArbitrageOpportunity]:
    """
    Analyze every pair, skipping (and logging) pairs with unusable price
    data. Messages for skipped pairs are appended to `errors` when given.
    Sorted by net profit, highest first.
    """
    opportunities: list[ValidatedArbitrageOpportunity] = []
    for pair in pairs:
        try:
            opp = analyze(pair, live_prices, config)
        except CalculationError as e:
            logger.warning(
                "Skipping %s / %s: %s", market_key(pair.market_a), market_key(pair.market_b), e,
            )
            if errors is not None:
                errors.append(f"Calculation skipped for {market_key(pair.market_a)}: {e}")
            continue
        if opp is not None:
            opportunities.append(opp)
    opportunities.sort(key=lambda o: o.net_profit_pct, reverse=True)
    return opportunities
