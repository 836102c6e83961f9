"""
Market registry: the set of cross-platform pairs the monitor polls.

Discovery runs with looser thresholds than live analysis (0.30 / 0.20 by
default) so borderline pairs are watched; every monitor tick recomputes
profit from fresh prices. A refresh replaces the whole entry set.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Callable

from client.platform import MarketDataProvider
from config import Config, registry_config
from scanner.equivalence import normalize_title
from scanner.matching import match_markets
from scanner.models import Market, ValidatedMarketPair

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketRef:
    platform: str
    market_id: str
    title: str

    @classmethod
    def of(cls, market: Market) -> MarketRef:
        return cls(market.platform, market.market_id, market.title)


@dataclass(frozen=True)
class RegistryEntry:
    market_a: MarketRef
    market_b: MarketRef
    equivalence_score: float
    last_updated: float
    pair_id: str
    # B's YES corresponds to A's NO
    is_inverted: bool = False


def make_pair_id(platform_a: str, title_a: str, platform_b: str, title_b: str) -> str:
    """
    Stable key for a cross-platform pair: sorted platform names plus the
    normalized title of the market on the first platform in that order.
    """
    (p1, t1), (p2, _) = sorted([(platform_a.lower(), title_a), (platform_b.lower(), title_b)])
    return f"{p1}-{p2}:{normalize_title(t1)}"


def entry_from_pair(pair: ValidatedMarketPair, now: float) -> RegistryEntry:
    return RegistryEntry(
        market_a=MarketRef.of(pair.market_a),
        market_b=MarketRef.of(pair.market_b),
        equivalence_score=pair.equivalence.overall_score,
        last_updated=now,
        pair_id=make_pair_id(
            pair.market_a.platform, pair.market_a.title,
            pair.market_b.platform, pair.market_b.title,
        ),
        is_inverted=pair.outcome_mapping.is_inverted,
    )


class MarketRegistry:
    """Matched pairs keyed by pair_id, rebuilt wholesale on refresh."""

    def __init__(self, config: Config, clock: Callable[[], float] = time.time) -> None:
        self._config = config
        self._match_config = registry_config(config)
        self._clock = clock
        self._entries: dict[str, RegistryEntry] = {}
        self.version = 0
        self.last_refresh = 0.0

    @property
    def entries(self) -> list[RegistryEntry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, pair_id: str) -> RegistryEntry | None:
        return self._entries.get(pair_id)

    def is_stale(self, now: float | None = None) -> bool:
        now = self._clock() if now is None else now
        return not self._entries or now - self.last_refresh >= self._config.registry_refresh_sec

    async def _fetch(self, provider: MarketDataProvider, platform: str) -> list[Market]:
        try:
            markets = await asyncio.wait_for(
                provider.search_markets("", [platform]),
                timeout=self._config.platform_timeout_sec,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Registry fetch failed for %s: %s", platform, e)
            return []
        return list(markets)[: self._config.registry_max_markets_per_platform]

    async def refresh(self, provider: MarketDataProvider, platforms: list[str] | None = None) -> int:
        """
        Re-fetch every platform, rematch every platform pair and replace the
        entry set. Returns the new entry count.
        """
        platforms = list(platforms or self._config.scan_platforms)
        fetched = await asyncio.gather(*(self._fetch(provider, p) for p in platforms))
        by_platform = dict(zip(platforms, fetched))

        now = self._clock()
        entries: dict[str, RegistryEntry] = {}
        for p_a, p_b in itertools.combinations(platforms, 2):
            for pair in match_markets(by_platform[p_a], by_platform[p_b], self._match_config):
                entry = entry_from_pair(pair, now)
                existing = entries.get(entry.pair_id)
                if existing is None or entry.equivalence_score > existing.equivalence_score:
                    entries[entry.pair_id] = entry

        self._entries = entries
        self.version += 1
        self.last_refresh = now
        logger.info(
            "Registry refreshed: %d pairs from %s (v%d)",
            len(entries), ", ".join(f"{p}={len(m)}" for p, m in by_platform.items()), self.version,
        )
        return len(entries)
