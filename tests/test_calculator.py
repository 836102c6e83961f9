"""
Unit tests for scanner/calculator.py -- hedge math, costs, risk, sizing and grading.
"""

import math

import pytest

from config import Config
from scanner.calculator import (
    analyze,
    compute_hedge,
    find_opportunities,
    grade_for_score,
    market_key,
)
from scanner.depth import estimated_depth
from scanner.equivalence import determine_outcome_mapping, score_equivalence
from scanner.errors import CalculationError
from scanner.metadata import extract_metadata
from scanner.models import (
    ConfidenceGrade,
    ExecutablePrice,
    Market,
    OutcomeMapping,
    OutcomeSide,
    Severity,
    StrategyType,
    ValidatedMarketPair,
)

CFG = Config(_env_file=None)
BTC = "Will Bitcoin reach $100k by end of 2025?"
NOW = 1_750_000_000.0


def _make_market(platform, yes_price, market_id=None, title=BTC, volume=50_000, liquidity=20_000, end_date=""):
    return Market(
        platform=platform,
        market_id=market_id or f"{platform}-1",
        title=title,
        yes_price=yes_price,
        volume=volume,
        liquidity=liquidity,
        end_date=end_date,
    )


def _make_pair(market_a, market_b, mapping=None):
    meta_a = extract_metadata(market_a)
    meta_b = extract_metadata(market_b)
    return ValidatedMarketPair(
        market_a=market_a,
        market_b=market_b,
        metadata_a=meta_a,
        metadata_b=meta_b,
        equivalence=score_equivalence(meta_a, meta_b, CFG),
        outcome_mapping=mapping or determine_outcome_mapping(meta_a, meta_b),
    )


def _btc_pair(yes_a=0.40, yes_b=0.50, **kwargs):
    return _make_pair(_make_market("polymarket", yes_a, **kwargs), _make_market("kalshi", yes_b, **kwargs))


class TestComputeHedge:
    def test_cheaper_hedge_kept(self):
        quote = compute_hedge(0.40, 0.50, fee_adjustment=0.02)
        assert quote.has_arbitrage
        assert quote.yes_on_a
        assert quote.cost == pytest.approx(0.90)
        assert quote.gross_profit_pct == pytest.approx(0.10)
        assert quote.net_profit_pct == pytest.approx(0.08)

    def test_other_direction(self):
        quote = compute_hedge(0.60, 0.45)
        assert not quote.yes_on_a
        assert quote.cost == pytest.approx(0.85)

    def test_equal_prices_no_arbitrage(self):
        quote = compute_hedge(0.50, 0.50)
        assert not quote.has_arbitrage
        assert quote.gross_profit_pct == pytest.approx(0.0)

    def test_fee_allowance_can_erase_edge(self):
        quote = compute_hedge(0.50, 0.51, fee_adjustment=0.02)
        assert quote.cost < 1.0
        assert not quote.has_arbitrage


class TestGrades:
    @pytest.mark.parametrize("score,grade", [
        (100, ConfidenceGrade.A),
        (90, ConfidenceGrade.A),
        (89, ConfidenceGrade.B),
        (75, ConfidenceGrade.B),
        (74, ConfidenceGrade.C),
        (60, ConfidenceGrade.C),
        (59, ConfidenceGrade.D),
        (40, ConfidenceGrade.D),
        (39, ConfidenceGrade.F),
        (0, ConfidenceGrade.F),
    ])
    def test_cutpoints(self, score, grade):
        assert grade_for_score(score) == grade

    def test_at_least(self):
        assert ConfidenceGrade.A.at_least(ConfidenceGrade.C)
        assert ConfidenceGrade.C.at_least(ConfidenceGrade.C)
        assert not ConfidenceGrade.D.at_least(ConfidenceGrade.C)


class TestAnalyze:
    def test_btc_opportunity(self):
        """Poly 0.40 vs Kalshi 0.50, no books: the 10c edge survives costs."""
        opp = analyze(_btc_pair(), None, CFG, now=NOW)
        assert opp is not None
        assert opp.gross_profit_pct == pytest.approx(0.10)
        # kalshi fee 0.01 * 0.49 + slippage 2 * 0.005 + spread 2 * 0.01
        assert opp.total_costs.cost_as_pct_of_capital == pytest.approx(0.0349)
        assert opp.net_profit_pct == pytest.approx(0.0651)
        assert opp.total_costs.trading_fees == pytest.approx(0.49)
        assert opp.total_costs.total_cost == pytest.approx(3.49)
        assert opp.id.startswith(f"arb-{int(NOW * 1000)}-")

    def test_strategy_legs(self):
        opp = analyze(_btc_pair(), None, CFG, now=NOW)
        strategy = opp.strategy
        assert strategy.type == StrategyType.CROSS_PLATFORM_SPREAD
        assert strategy.description == "Buy YES @ polymarket + NO @ kalshi"
        leg_a, leg_b = strategy.legs
        assert (leg_a.platform, leg_a.side) == ("polymarket", OutcomeSide.YES)
        assert (leg_b.platform, leg_b.side) == ("kalshi", OutcomeSide.NO)
        assert leg_a.target_price == pytest.approx(0.41)
        assert leg_b.target_price == pytest.approx(0.49)
        assert strategy.guaranteed_return == pytest.approx(1 / 0.9349)

    def test_risk(self):
        risk = analyze(_btc_pair(), None, CFG, now=NOW).risk
        assert risk.execution.score == 20
        assert risk.execution.execution_window_ms == 10_000
        assert risk.market.score == 23
        assert risk.market.resolution_days == 365.0
        assert risk.operational.score == 14
        assert risk.overall_risk_score == 20
        assert [f.code for f in risk.flags] == ["LONG_RESOLUTION"]
        assert risk.flags[0].severity == Severity.INFO
        assert risk.is_safe
        assert risk.safety_reason == "All risk checks passed"

    def test_near_resolution_has_no_long_flag(self):
        opp = analyze(_btc_pair(end_date="2025-07-01"), None, CFG, now=NOW)
        assert opp.risk.market.resolution_days < 180
        assert "LONG_RESOLUTION" not in [f.code for f in opp.risk.flags]

    def test_execution_plan(self):
        plan = analyze(_btc_pair(), None, CFG, now=NOW).execution
        assert plan.recommended_size == pytest.approx(100.0)
        assert plan.max_size == pytest.approx(1_000.0)
        assert plan.min_size == pytest.approx(1 / 0.0651)
        assert plan.min_size <= plan.recommended_size <= plan.max_size
        assert plan.leg_order == (1, 0)
        assert plan.estimated_execution_time_ms == 10_000
        assert plan.max_acceptable_delay_ms == CFG.max_execution_time_ms

    def test_thinner_leg_first(self):
        pair = _make_pair(
            _make_market("polymarket", 0.40, liquidity=5_000),
            _make_market("kalshi", 0.50, liquidity=20_000),
        )
        assert analyze(pair, None, CFG, now=NOW).execution.leg_order == (0, 1)

    def test_confidence(self):
        conf = analyze(_btc_pair(), None, CFG, now=NOW).confidence
        assert conf.match_confidence == pytest.approx(100.0)
        assert conf.price_confidence == 70
        assert conf.execution_confidence == 80
        assert conf.profit_confidence == 90
        assert conf.score == 86
        assert conf.grade == ConfidenceGrade.B
        assert conf.recommendation.startswith("Good opportunity")

    def test_below_threshold_returns_none(self):
        # 2c gross edge cannot cover ~3.5c of costs
        assert analyze(_btc_pair(0.50, 0.52), None, CFG, now=NOW) is None

    def test_no_hedge_returns_none(self):
        assert analyze(_btc_pair(0.50, 0.50), None, CFG, now=NOW) is None

    def test_inverted_listing(self):
        """B lists the complement: A's YES is bought as B's NO at 1 - B bid."""
        pair = _make_pair(
            _make_market("polymarket", 0.40),
            _make_market("kalshi", 0.70),
            mapping=OutcomeMapping(a_to_b=(1, 0), b_to_a=(1, 0), is_inverted=True),
        )
        opp = analyze(pair, None, CFG, now=NOW)
        assert opp is not None
        # aligned yes_b = 1 - 0.69 = 0.31; hedge = NO on A (0.59) + B's NO (0.31)
        assert opp.gross_profit_pct == pytest.approx(0.10)
        leg_a, leg_b = opp.strategy.legs
        assert leg_a.side == OutcomeSide.NO
        assert leg_b.side == OutcomeSide.NO
        assert leg_b.target_price == pytest.approx(0.31)

    def test_live_prices_override_market_record(self):
        pair = _btc_pair()
        kalshi = pair.market_b
        fresh = ExecutablePrice(
            mid=0.40, bid=0.39, ask=0.41, spread=0.02, bid_size=1_000, ask_size=1_000,
            depth=estimated_depth(kalshi),
        )
        assert analyze(pair, {market_key(kalshi): fresh}, CFG, now=NOW) is None

    def test_invalid_price_raises(self):
        with pytest.raises(CalculationError):
            analyze(_btc_pair(yes_b=math.nan), None, CFG, now=NOW)


class TestFindOpportunities:
    def test_skips_bad_pairs_and_sorts(self):
        good_small = _make_pair(
            _make_market("polymarket", 0.40, "p-small"), _make_market("kalshi", 0.50, "k-small"),
        )
        good_big = _make_pair(
            _make_market("polymarket", 0.30, "p-big"), _make_market("kalshi", 0.50, "k-big"),
        )
        bad = _make_pair(
            _make_market("polymarket", math.nan, "p-bad"), _make_market("kalshi", 0.50, "k-bad"),
        )
        errors = []
        opps = find_opportunities([good_small, bad, good_big], CFG, errors=errors)
        assert [o.pair.market_a.market_id for o in opps] == ["p-big", "p-small"]
        assert len(errors) == 1
        assert "polymarket:p-bad" in errors[0]

    def test_empty(self):
        assert find_opportunities([], CFG) == []
