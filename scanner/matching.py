"""
Cross-platform market matching. Applies the equivalence scorer across the
cross product of two platforms' market lists and keeps only validated pairs.

Settlement mismatch is the #1 risk in cross-platform arb, so a pair survives
only when it clears both score thresholds AND carries no disqualifier.

Cost model: metadata extraction is O(n + m) per call (once per market),
scoring is O(n * m) with the cheap hard filters running first inside the
scorer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from config import Config
from scanner.equivalence import determine_outcome_mapping, score_equivalence
from scanner.errors import MatchingError
from scanner.metadata import extract_metadata
from scanner.models import EquivalenceScore, Market, MarketMetadata, ValidatedMarketPair

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchingStats:
    total: int = 0
    avg_equivalence: float = 0.0
    avg_title_similarity: float = 0.0
    avg_entity_overlap: float = 0.0
    inverted_count: int = 0


def _checked_metadata(market: Market) -> MarketMetadata:
    """Extract metadata, rejecting records too malformed to compare."""
    if not market.title or not market.title.strip():
        raise MatchingError(f"{market.platform}:{market.market_id} has no title")
    if not market.platform:
        raise MatchingError(f"market {market.market_id!r} has no platform")
    return extract_metadata(market)


def _extract_all(markets: list[Market]) -> list[tuple[Market, MarketMetadata]]:
    extracted: list[tuple[Market, MarketMetadata]] = []
    for market in markets:
        try:
            extracted.append((market, _checked_metadata(market)))
        except MatchingError as e:
            logger.warning("Skipping market: %s", e)
    return extracted


def _passes(eq: EquivalenceScore, config: Config) -> bool:
    return (
        not eq.disqualifiers
        and eq.overall_score >= config.min_equivalence_score
        and eq.title_similarity >= config.min_title_similarity
    )


def match_markets(
    markets_a: list[Market],
    markets_b: list[Market],
    config: Config,
) -> list[ValidatedMarketPair]:
    """
    Match two platforms' markets. Keeps the best-scoring partner for each
    market in markets_a. Returns pairs sorted by equivalence descending.
    """
    side_a = _extract_all(markets_a)
    side_b = _extract_all(markets_b)
    pairs: list[ValidatedMarketPair] = []

    for market_a, meta_a in side_a:
        best: tuple[Market, MarketMetadata, EquivalenceScore] | None = None

        for market_b, meta_b in side_b:
            if market_a.platform == market_b.platform:
                continue
            try:
                eq = score_equivalence(meta_a, meta_b, config)
            except MatchingError as e:
                logger.warning(
                    "Skipping pair %s:%s / %s:%s: %s",
                    market_a.platform, market_a.market_id,
                    market_b.platform, market_b.market_id, e,
                )
                continue

            if not _passes(eq, config):
                if eq.overall_score > 0.35:
                    logger.debug(
                        "Rejected %r vs %r (score %.2f, title %.2f): %s",
                        meta_a.title[:40], meta_b.title[:40],
                        eq.overall_score, eq.title_similarity,
                        "; ".join(eq.disqualifiers) or "below threshold",
                    )
                continue

            if best is None or eq.overall_score > best[2].overall_score:
                best = (market_b, meta_b, eq)

        if best is None:
            continue

        market_b, meta_b, eq = best
        mapping = determine_outcome_mapping(meta_a, meta_b)
        logger.info(
            "MATCH %s:%r <-> %s:%r (%.0f%%%s)",
            market_a.platform, market_a.title[:35],
            market_b.platform, market_b.title[:35],
            eq.overall_score * 100,
            ", inverted" if mapping.is_inverted else "",
        )
        pairs.append(ValidatedMarketPair(
            market_a=market_a,
            market_b=market_b,
            metadata_a=meta_a,
            metadata_b=meta_b,
            equivalence=eq,
            outcome_mapping=mapping,
        ))

    pairs.sort(key=lambda p: p.equivalence.overall_score, reverse=True)
    return pairs


def get_matching_stats(pairs: list[ValidatedMarketPair]) -> MatchingStats:
    """Aggregate stats over already-scored pairs. No rescoring."""
    if not pairs:
        return MatchingStats()
    n = len(pairs)
    return MatchingStats(
        total=n,
        avg_equivalence=sum(p.equivalence.overall_score for p in pairs) / n,
        avg_title_similarity=sum(p.equivalence.title_similarity for p in pairs) / n,
        avg_entity_overlap=sum(p.equivalence.entity_overlap for p in pairs) / n,
        inverted_count=sum(1 for p in pairs if p.outcome_mapping.is_inverted),
    )
