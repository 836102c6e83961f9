"""
Continuous opportunity monitor.

MonitorState owns every piece of mutable monitoring state: the registry,
active opportunities keyed by pair_id, the closed-opportunity history ring
and the counters reported by status(). Provider, clock, alert sink and
deduplicator are injected so a tick can be driven directly in tests.

Lifecycle per registry pair on each tick:
  unseen -> active   profit clears min_net_profit_pct: record created
  active -> active   last_seen/current updated, peak = max(peak, current)
  active -> closed   profit falls below threshold, or the pair left the
                     registry on refresh: moved to history
A pair_id that reopens later starts a fresh record.

Profits are fractions (0.08 = 8%) computed by compute_hedge with the
configured flat fee allowance.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from rapidfuzz import fuzz, utils

from client.platform import MarketDataProvider
from config import Config
from monitor.dedup import AlertDeduplicator
from monitor.registry import MarketRef, MarketRegistry, RegistryEntry
from monitor.task import RepeatingTask
from scanner.calculator import HedgeQuote, compute_hedge
from scanner.models import Market, OpportunityStatus
from state.checkpoint import CheckpointManager

logger = logging.getLogger(__name__)

ALERT_SOURCE = "arbitrage"
DEDUP_CHECKPOINT = "alert_dedup"
# Fallback lookup when the market id isn't in the search results
SEARCH_TITLE_CHARS = 30
MATCH_TITLE_CHARS = 20
FUZZY_TITLE_CUTOFF = 90.0
DEFAULT_PRICE_HISTORY = 500


@dataclass(frozen=True)
class PricePoint:
    timestamp: float
    price_a: float
    price_b: float
    profit: float


@dataclass
class TrackedOpportunity:
    id: str
    pair: RegistryEntry
    first_seen: float
    last_seen: float
    peak_profit: float
    current_profit: float
    status: OpportunityStatus = OpportunityStatus.ACTIVE
    price_history: deque[PricePoint] = field(default_factory=lambda: deque(maxlen=DEFAULT_PRICE_HISTORY))
    alert_sent: bool = False
    strategy: str = ""


@dataclass(frozen=True)
class MonitorStatus:
    is_running: bool
    last_scan: float
    scan_count: int
    opportunities_found: int
    alerts_sent: int
    errors: tuple[str, ...]
    active_opportunities: tuple[TrackedOpportunity, ...]
    registry_size: int


AlertSink = Callable[[TrackedOpportunity], Awaitable[None]]


def find_market(markets: list[Market], ref: MarketRef) -> Market | None:
    """
    Locate ref in search results: exact id, then lowercase title prefix
    substring, then a close fuzzy title match.
    """
    for m in markets:
        if m.market_id == ref.market_id:
            return m
    prefix = ref.title[:MATCH_TITLE_CHARS].lower()
    for m in markets:
        if prefix and prefix in m.title.lower():
            return m
    best: Market | None = None
    best_score = FUZZY_TITLE_CUTOFF
    for m in markets:
        score = fuzz.token_set_ratio(ref.title, m.title, processor=utils.default_process)
        if score >= best_score:
            best, best_score = m, score
    return best


def describe_hedge(quote: HedgeQuote, entry: RegistryEntry, yes_a: float, yes_b: float) -> str:
    """yes_b is aligned to A's outcome; the B side is named as listed on B."""
    a, b = entry.market_a.platform, entry.market_b.platform
    if quote.yes_on_a:
        side_b = "YES" if entry.is_inverted else "NO"
        return f"Buy YES @ {a} ({yes_a * 100:.1f}%) + {side_b} @ {b} ({(1 - yes_b) * 100:.1f}%)"
    side_b = "NO" if entry.is_inverted else "YES"
    return f"Buy {side_b} @ {b} ({yes_b * 100:.1f}%) + NO @ {a} ({(1 - yes_a) * 100:.1f}%)"


class MonitorState:
    def __init__(
        self,
        provider: MarketDataProvider,
        config: Config,
        alert_sink: AlertSink | None = None,
        dedup: AlertDeduplicator | None = None,
        clock: Callable[[], float] = time.time,
        registry: MarketRegistry | None = None,
        checkpoint: CheckpointManager | None = None,
    ) -> None:
        self._provider = provider
        self._config = config
        self._alert_sink = alert_sink
        self._clock = clock
        self.dedup = dedup or AlertDeduplicator.from_config(config, clock=clock)
        self.registry = registry or MarketRegistry(config, clock=clock)

        self._checkpoint = checkpoint
        if checkpoint is not None:
            restored = checkpoint.load(DEDUP_CHECKPOINT, AlertDeduplicator)
            if restored is not None:
                self.dedup.restore_from(restored)
            checkpoint.register(DEDUP_CHECKPOINT, self.dedup)

        self._active: dict[str, TrackedOpportunity] = {}
        self._history: deque[TrackedOpportunity] = deque(maxlen=config.monitor_history_max)
        self._errors: deque[str] = deque(maxlen=config.monitor_max_errors)
        self._task: RepeatingTask | None = None

        self.last_scan = 0.0
        self.scan_count = 0
        self.opportunities_found = 0
        self.alerts_sent = 0

    # -- Queries -----------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._task is not None and self._task.is_running

    def active_opportunities(self) -> list[TrackedOpportunity]:
        return list(self._active.values())

    def history(self) -> list[TrackedOpportunity]:
        """Closed opportunities, newest first."""
        return list(self._history)

    def status(self) -> MonitorStatus:
        return MonitorStatus(
            is_running=self.is_running,
            last_scan=self.last_scan,
            scan_count=self.scan_count,
            opportunities_found=self.opportunities_found,
            alerts_sent=self.alerts_sent,
            errors=tuple(self._errors),
            active_opportunities=tuple(self._active.values()),
            registry_size=len(self.registry),
        )

    # -- Scheduling --------------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            return
        self._task = RepeatingTask(self._config.monitor_interval_sec, self.run_once, name="monitor")
        self._task.start()

    async def stop(self) -> None:
        if self._task is not None:
            await self._task.stop()

    @property
    def skipped_ticks(self) -> int:
        return self._task.skipped_ticks if self._task else 0

    # -- Tick --------------------------------------------------------------

    def _record_error(self, message: str) -> None:
        logger.warning(message)
        self._errors.append(message)

    async def _lookup(self, ref: MarketRef) -> Market | None:
        markets = await self._provider.search_markets(ref.title[:SEARCH_TITLE_CHARS], [ref.platform])
        return find_market(list(markets), ref)

    async def _fetch_pair(self, entry: RegistryEntry) -> tuple[Market, Market] | None:
        market_a, market_b = await asyncio.gather(self._lookup(entry.market_a), self._lookup(entry.market_b))
        if market_a is None or market_b is None:
            logger.debug("Pair %s: market not found in search results, skipping", entry.pair_id)
            return None
        return market_a, market_b

    async def run_once(self) -> list[TrackedOpportunity]:
        """
        One monitoring pass over the registry. Returns the opportunities
        active after the pass. Failures are isolated per pair.
        """
        started = self._clock()
        if self.registry.is_stale(started):
            try:
                await self.registry.refresh(self._provider, self._config.scan_platforms)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._record_error(f"Registry refresh failed: {e}")
            else:
                self._close_dropped_pairs()

        for entry in self.registry.entries:
            try:
                await self._check_pair(entry)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._record_error(f"Pair {entry.pair_id} failed: {e}")

        if self._checkpoint is not None:
            try:
                self._checkpoint.tick()
            except sqlite3.Error as e:
                self._record_error(f"Checkpoint save failed: {e}")

        self.last_scan = self._clock()
        self.scan_count += 1
        logger.info(
            "Monitor pass %d: %d pairs, %d active opportunities (%.2fs)",
            self.scan_count, len(self.registry), len(self._active), self.last_scan - started,
        )
        return list(self._active.values())

    async def _check_pair(self, entry: RegistryEntry) -> None:
        fetched = await self._fetch_pair(entry)
        if fetched is None:
            return
        market_a, market_b = fetched
        yes_a = market_a.yes_price
        # Align B to A's YES outcome
        yes_b = 1.0 - market_b.yes_price if entry.is_inverted else market_b.yes_price
        quote = compute_hedge(yes_a, yes_b, self._config.monitor_fee_adjustment)

        if quote.has_arbitrage and quote.net_profit_pct >= self._config.min_net_profit_pct:
            await self._observe(entry, quote, yes_a, yes_b)
        else:
            self._close(entry.pair_id)

    async def _observe(self, entry: RegistryEntry, quote: HedgeQuote, yes_a: float, yes_b: float) -> None:
        now = self._clock()
        profit = quote.net_profit_pct
        tracked = self._active.get(entry.pair_id)
        if tracked is None:
            tracked = TrackedOpportunity(
                id=entry.pair_id,
                pair=entry,
                first_seen=now,
                last_seen=now,
                peak_profit=profit,
                current_profit=profit,
                price_history=deque(maxlen=self._config.monitor_price_history_max),
            )
            self._active[entry.pair_id] = tracked
            self.opportunities_found += 1
            logger.info("NEW OPPORTUNITY: %.2f%% on %s", profit * 100, entry.market_a.title[:30])

        tracked.last_seen = now
        tracked.current_profit = profit
        tracked.peak_profit = max(tracked.peak_profit, profit)
        tracked.strategy = describe_hedge(quote, entry, yes_a, yes_b)
        tracked.price_history.append(PricePoint(now, yes_a, yes_b, profit))

        if not tracked.alert_sent:
            await self._alert(tracked)

    async def _alert(self, tracked: TrackedOpportunity) -> None:
        if self._alert_sink is None:
            return
        profit_pp = tracked.current_profit * 100
        if not self.dedup.should_send(ALERT_SOURCE, tracked.id, profit_pp):
            logger.debug("Alert for %s suppressed by dedup", tracked.id)
            return
        try:
            await self._alert_sink(tracked)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._record_error(f"Alert delivery failed for {tracked.id}: {e}")
            return
        self.dedup.record(ALERT_SOURCE, tracked.id, profit_pp)
        tracked.alert_sent = True
        self.alerts_sent += 1

    def _close_dropped_pairs(self) -> None:
        # A refresh replaces the entry set; pairs no longer listed can't be re-checked
        for pair_id in [p for p in self._active if self.registry.get(p) is None]:
            self._close(pair_id)

    def _close(self, pair_id: str) -> None:
        tracked = self._active.pop(pair_id, None)
        if tracked is None:
            return
        tracked.status = OpportunityStatus.CLOSED
        tracked.last_seen = self._clock()
        # Oldest record falls off the far end once the ring is full
        self._history.appendleft(tracked)
        logger.info(
            "Opportunity closed: %s (peak %.2f%%)", tracked.pair.market_a.title[:30], tracked.peak_profit * 100,
        )
