"""
Tests for monitor/tracker.py -- opportunity lifecycle, history ring, alert
gating and per-pair failure isolation. Ticks are driven directly with a
fake provider and clock.
"""

from __future__ import annotations

import asyncio
import dataclasses
from pathlib import Path

import pytest

from config import Config
from monitor.dedup import AlertDeduplicator
from monitor.registry import MarketRef, RegistryEntry, make_pair_id
from monitor.tracker import (
    DEDUP_CHECKPOINT,
    DEFAULT_PRICE_HISTORY,
    MonitorState,
    PricePoint,
    TrackedOpportunity,
    describe_hedge,
    find_market,
)
from scanner.calculator import compute_hedge
from scanner.models import Market, OpportunityStatus
from state.checkpoint import CheckpointManager

CFG = Config(_env_file=None, scan_platforms=["polymarket", "kalshi"])
BTC = "Will Bitcoin reach $100k by end of 2025?"


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeProvider:
    """One BTC market per platform; prices mutable between ticks."""

    def __init__(self, yes_a: float = 0.40, yes_b: float = 0.50):
        self.markets = {
            "polymarket": [Market("polymarket", "p1", BTC, yes_a, volume=50_000)],
            "kalshi": [Market("kalshi", "k1", BTC, yes_b, volume=50_000)],
        }
        self.failing: set[str] = set()

    def set_prices(self, yes_a: float, yes_b: float) -> None:
        for platform, price in (("polymarket", yes_a), ("kalshi", yes_b)):
            self.markets[platform] = [dataclasses.replace(self.markets[platform][0], yes_price=price)]

    async def search_markets(self, query, platforms):
        if platforms[0] in self.failing:
            raise RuntimeError(f"{platforms[0]} down")
        return self.markets.get(platforms[0], [])


class RecordingSink:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def __call__(self, opp):
        if self.fail:
            raise RuntimeError("sink offline")
        self.sent.append((opp.id, opp.current_profit))


def _entry(is_inverted: bool = False) -> RegistryEntry:
    return RegistryEntry(
        market_a=MarketRef("polymarket", "p1", BTC),
        market_b=MarketRef("kalshi", "k1", BTC),
        equivalence_score=0.9,
        last_updated=0.0,
        pair_id=make_pair_id("polymarket", BTC, "kalshi", BTC),
        is_inverted=is_inverted,
    )


def _monitor(provider=None, sink=None, clock=None, config=CFG, **kwargs):
    clock = clock or FakeClock()
    return MonitorState(provider or FakeProvider(), config, alert_sink=sink, clock=clock, **kwargs)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_opportunity_opens(self):
        monitor = _monitor()
        active = await monitor.run_once()
        assert len(active) == 1
        opp = active[0]
        assert opp.status == OpportunityStatus.ACTIVE
        # 1 - (0.40 + 0.50) minus the 2% allowance
        assert opp.current_profit == pytest.approx(0.08)
        assert opp.peak_profit == pytest.approx(0.08)
        assert opp.first_seen == opp.last_seen == 1_000.0
        assert opp.strategy == "Buy YES @ polymarket (40.0%) + NO @ kalshi (50.0%)"
        assert len(opp.price_history) == 1
        assert monitor.opportunities_found == 1
        assert len(monitor.registry) == 1

    @pytest.mark.asyncio
    async def test_update_keeps_peak(self):
        provider = FakeProvider(0.30, 0.50)
        clock = FakeClock()
        monitor = _monitor(provider, clock=clock)
        await monitor.run_once()
        provider.set_prices(0.40, 0.50)
        clock.now += 30
        [opp] = await monitor.run_once()
        assert opp.current_profit == pytest.approx(0.08)
        assert opp.peak_profit == pytest.approx(0.18)
        assert opp.peak_profit >= opp.current_profit
        assert opp.last_seen == 1_030.0
        assert opp.first_seen == 1_000.0
        assert len(opp.price_history) == 2
        assert monitor.opportunities_found == 1

    @pytest.mark.asyncio
    async def test_close_moves_to_history(self):
        provider = FakeProvider()
        monitor = _monitor(provider)
        await monitor.run_once()
        provider.set_prices(0.50, 0.49)
        assert await monitor.run_once() == []
        [closed] = monitor.history()
        assert closed.status == OpportunityStatus.CLOSED
        assert monitor.active_opportunities() == []

    @pytest.mark.asyncio
    async def test_below_threshold_never_opens(self):
        monitor = _monitor(FakeProvider(0.48, 0.51))
        assert await monitor.run_once() == []
        assert monitor.history() == []
        assert monitor.opportunities_found == 0

    @pytest.mark.asyncio
    async def test_reopen_starts_fresh_record(self):
        provider = FakeProvider()
        clock = FakeClock()
        monitor = _monitor(provider, clock=clock)
        await monitor.run_once()
        provider.set_prices(0.50, 0.50)
        clock.now += 30
        await monitor.run_once()
        provider.set_prices(0.40, 0.50)
        clock.now += 30
        [reopened] = await monitor.run_once()
        [closed] = monitor.history()
        assert reopened is not closed
        assert reopened.first_seen == 1_060.0
        assert reopened.status == OpportunityStatus.ACTIVE
        assert monitor.opportunities_found == 2

    @pytest.mark.asyncio
    async def test_history_bounded_newest_first(self):
        provider = FakeProvider()
        clock = FakeClock()
        monitor = _monitor(provider, clock=clock)
        for cycle in range(101):
            provider.set_prices(0.40, 0.50)
            clock.now = 1_000.0 + cycle * 10
            await monitor.run_once()
            provider.set_prices(0.50, 0.50)
            await monitor.run_once()
        history = monitor.history()
        assert len(history) == 100
        assert history[0].first_seen == 1_000.0 + 100 * 10
        # The first cycle's record was evicted
        assert history[-1].first_seen == 1_010.0

    @pytest.mark.asyncio
    async def test_inverted_pair_aligned(self):
        """B quotes the complement: B's 0.40 YES is A's 0.60 YES."""
        provider = FakeProvider(0.40, 0.50)
        monitor = _monitor(provider)
        await monitor.run_once()
        entry = monitor.registry.entries[0]
        monitor.registry._entries[entry.pair_id] = dataclasses.replace(entry, is_inverted=True)
        # Equal prices: no edge unaligned, 20c gross once aligned
        provider.set_prices(0.40, 0.40)
        [opp] = await monitor.run_once()
        assert opp.current_profit == pytest.approx(0.18)
        # A's NO is B's YES on an inverted listing
        assert opp.strategy == "Buy YES @ polymarket (40.0%) + YES @ kalshi (40.0%)"

    @pytest.mark.asyncio
    async def test_pair_dropped_from_registry_closes(self):
        provider = FakeProvider()
        clock = FakeClock()
        monitor = _monitor(provider, clock=clock)
        await monitor.run_once()
        assert len(monitor.active_opportunities()) == 1

        provider.markets = {"polymarket": [], "kalshi": []}
        clock.now += CFG.registry_refresh_sec
        assert await monitor.run_once() == []
        status = monitor.status()
        assert status.registry_size == 0
        assert status.active_opportunities == ()
        [closed] = monitor.history()
        assert closed.status == OpportunityStatus.CLOSED
        assert closed.last_seen == clock.now

    def test_price_history_bounded_by_default(self):
        entry = _entry()
        opp = TrackedOpportunity(id=entry.pair_id, pair=entry, first_seen=0.0, last_seen=0.0, peak_profit=0.1, current_profit=0.1)
        for i in range(DEFAULT_PRICE_HISTORY + 10):
            opp.price_history.append(PricePoint(float(i), 0.4, 0.5, 0.1))
        assert len(opp.price_history) == DEFAULT_PRICE_HISTORY
        assert opp.price_history[0].timestamp == 10.0


class TestAlerts:
    @pytest.mark.asyncio
    async def test_alert_sent_once(self):
        sink = RecordingSink()
        monitor = _monitor(sink=sink)
        await monitor.run_once()
        await monitor.run_once()
        assert len(sink.sent) == 1
        assert monitor.alerts_sent == 1
        assert monitor.active_opportunities()[0].alert_sent

    @pytest.mark.asyncio
    async def test_sink_failure_recorded_and_retried(self):
        sink = RecordingSink(fail=True)
        monitor = _monitor(sink=sink)
        [opp] = await monitor.run_once()
        assert not opp.alert_sent
        assert monitor.alerts_sent == 0
        assert any("Alert delivery failed" in e for e in monitor.status().errors)
        sink.fail = False
        await monitor.run_once()
        assert opp.alert_sent
        assert len(sink.sent) == 1

    @pytest.mark.asyncio
    async def test_reopen_within_cooldown_suppressed(self):
        provider = FakeProvider()
        sink = RecordingSink()
        clock = FakeClock()
        monitor = _monitor(provider, sink=sink, clock=clock)
        await monitor.run_once()
        provider.set_prices(0.50, 0.50)
        await monitor.run_once()
        provider.set_prices(0.40, 0.50)
        clock.now += 60
        [reopened] = await monitor.run_once()
        assert len(sink.sent) == 1
        assert not reopened.alert_sent

    @pytest.mark.asyncio
    async def test_reopen_with_profit_jump_realerts(self):
        provider = FakeProvider()
        sink = RecordingSink()
        clock = FakeClock()
        monitor = _monitor(provider, sink=sink, clock=clock)
        await monitor.run_once()
        provider.set_prices(0.50, 0.50)
        await monitor.run_once()
        # 8% -> 18%: beyond the 5pp re-alert delta
        provider.set_prices(0.30, 0.50)
        clock.now += 60
        await monitor.run_once()
        assert len(sink.sent) == 2
        assert sink.sent[1][1] == pytest.approx(0.18)

    @pytest.mark.asyncio
    async def test_no_sink_no_alerts(self):
        monitor = _monitor()
        await monitor.run_once()
        assert monitor.alerts_sent == 0


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_pair_failure_recorded(self):
        provider = FakeProvider()
        monitor = _monitor(provider)
        await monitor.run_once()
        provider.failing.add("kalshi")
        await monitor.run_once()
        status = monitor.status()
        assert status.scan_count == 2
        assert any("failed" in e and "kalshi down" in e for e in status.errors)
        # Unknown state leaves the record as it was
        assert len(status.active_opportunities) == 1

    @pytest.mark.asyncio
    async def test_registry_refresh_failure_isolated(self):
        provider = FakeProvider()
        provider.failing.update({"polymarket", "kalshi"})
        monitor = _monitor(provider)
        assert await monitor.run_once() == []
        assert monitor.scan_count == 1
        assert len(monitor.registry) == 0

    @pytest.mark.asyncio
    async def test_missing_market_skipped(self):
        provider = FakeProvider()
        monitor = _monitor(provider)
        await monitor.run_once()
        provider.markets["kalshi"] = []
        await monitor.run_once()
        assert len(monitor.active_opportunities()) == 1
        assert monitor.status().errors == ()


class TestStatus:
    @pytest.mark.asyncio
    async def test_status_snapshot(self):
        clock = FakeClock()
        monitor = _monitor(clock=clock)
        await monitor.run_once()
        status = monitor.status()
        assert not status.is_running
        assert status.scan_count == 1
        assert status.last_scan == 1_000.0
        assert status.opportunities_found == 1
        assert status.registry_size == 1
        assert len(status.active_opportunities) == 1

    @pytest.mark.asyncio
    async def test_start_stop(self):
        monitor = _monitor()
        monitor.start()
        assert monitor.is_running
        await asyncio.sleep(0.01)
        await monitor.stop()
        assert not monitor.is_running
        assert monitor.scan_count == 1


class TestCheckpoint:
    @pytest.mark.asyncio
    async def test_dedup_restored_across_restart(self, tmp_path: Path):
        db = tmp_path / "state.db"
        clock = FakeClock()
        first_sink = RecordingSink()
        checkpoint = CheckpointManager(db)
        await _monitor(sink=first_sink, clock=clock, checkpoint=checkpoint).run_once()
        checkpoint.close()
        assert len(first_sink.sent) == 1

        second_sink = RecordingSink()
        checkpoint = CheckpointManager(db)
        assert checkpoint.load(DEDUP_CHECKPOINT, AlertDeduplicator) is not None
        clock.now += 60
        await _monitor(sink=second_sink, clock=clock, checkpoint=checkpoint).run_once()
        checkpoint.close()
        assert second_sink.sent == []


class TestFindMarket:
    def _markets(self):
        return [
            Market("kalshi", "k1", "Fed rate cut in March 2025?", 0.5),
            Market("kalshi", "k2", BTC, 0.5),
        ]

    def test_by_id(self):
        assert find_market(self._markets(), MarketRef("kalshi", "k2", "anything")).market_id == "k2"

    def test_by_title_prefix(self):
        ref = MarketRef("kalshi", "gone", "Will Bitcoin reach $100k in some other wording")
        assert find_market(self._markets(), ref).market_id == "k2"

    def test_by_fuzzy_title(self):
        ref = MarketRef("kalshi", "gone", "By end of 2025 will Bitcoin reach $100k?")
        assert find_market(self._markets(), ref).market_id == "k2"

    def test_no_match(self):
        assert find_market(self._markets(), MarketRef("kalshi", "gone", "Lakers win the title")) is None


class TestDescribeHedge:
    def test_plain_pair(self):
        quote = compute_hedge(0.55, 0.40)
        assert not quote.yes_on_a
        assert describe_hedge(quote, _entry(), 0.55, 0.40) == "Buy YES @ kalshi (40.0%) + NO @ polymarket (45.0%)"

    def test_inverted_pair_names_sides_as_listed(self):
        # Aligned 0.40 on an inverted listing is B's NO
        quote = compute_hedge(0.55, 0.40)
        assert describe_hedge(quote, _entry(is_inverted=True), 0.55, 0.40) == "Buy NO @ kalshi (40.0%) + NO @ polymarket (45.0%)"
