"""
On-demand scan: fetch markets from every platform concurrently, match them
across each platform pair, analyze validated pairs for arbitrage, filter by
confidence grade and return a ScanResult. Stateless across calls.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass

from client.platform import MarketDataProvider
from config import Config
from scanner.calculator import find_opportunities
from scanner.matching import match_markets
from scanner.models import ConfidenceGrade, Market, ScanResult, ValidatedArbitrageOpportunity, ValidatedMarketPair

logger = logging.getLogger(__name__)

# Advisory thresholds
LOW_MARKET_COUNT = 20
LOW_AVG_EQUIVALENCE = 0.7


@dataclass(frozen=True)
class ScanOptions:
    """Per-call overrides. None falls back to the Config value."""
    platforms: tuple[str, ...] | None = None
    query: str | None = None
    max_markets_per_platform: int | None = None
    max_opportunities: int | None = None
    min_confidence_grade: ConfidenceGrade | None = None


async def _fetch_platform(
    provider: MarketDataProvider,
    platform: str,
    query: str,
    limit: int,
    timeout: float,
) -> list[Market]:
    markets = await asyncio.wait_for(provider.search_markets(query, [platform]), timeout=timeout)
    return list(markets)[:limit]


async def scan_for_arbitrage(
    provider: MarketDataProvider,
    config: Config,
    options: ScanOptions | None = None,
) -> ScanResult:
    """
    Run one full scan. A failing or slow platform contributes zero markets,
    a warning and an error entry; the rest of the scan proceeds.
    """
    opts = options or ScanOptions()
    platforms = list(opts.platforms or config.scan_platforms)
    query = config.scan_query if opts.query is None else opts.query
    limit = opts.max_markets_per_platform or config.max_markets_per_platform
    max_opps = opts.max_opportunities or config.max_opportunities
    min_grade = opts.min_confidence_grade or ConfidenceGrade(config.min_confidence_grade)

    started = time.monotonic()
    result = ScanResult()

    fetched = await asyncio.gather(
        *(
            _fetch_platform(provider, p, query, limit, config.platform_timeout_sec)
            for p in platforms
        ),
        return_exceptions=True,
    )

    by_platform: dict[str, list[Market]] = {}
    for platform, outcome in zip(platforms, fetched):
        if isinstance(outcome, BaseException):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            reason = "timed out" if isinstance(outcome, asyncio.TimeoutError) else str(outcome) or type(outcome).__name__
            logger.warning("Fetch failed for %s: %s", platform, reason)
            result.errors.append(f"{platform}: {reason}")
            result.warnings.append(f"No markets from {platform} (fetch failed)")
            outcome = []
        by_platform[platform] = outcome
        result.markets_scanned[platform] = len(outcome)

    result.total_markets = sum(result.markets_scanned.values())

    validated: list[ValidatedMarketPair] = []
    for p_a, p_b in itertools.combinations(platforms, 2):
        markets_a, markets_b = by_platform[p_a], by_platform[p_b]
        if not markets_a or not markets_b:
            continue
        result.pairs_evaluated += len(markets_a) * len(markets_b)
        pairs = match_markets(markets_a, markets_b, config)
        logger.info("%s x %s: %d validated pairs", p_a, p_b, len(pairs))
        validated.extend(pairs)

    result.pairs_validated = len(validated)
    if validated:
        result.avg_equivalence_score = sum(p.equivalence.overall_score for p in validated) / len(validated)

    opportunities = find_opportunities(validated, config, errors=result.errors)
    eligible = [o for o in opportunities if o.confidence.grade.at_least(min_grade)]
    result.filtered_count = len(opportunities) - len(eligible)
    result.opportunities = eligible[:max_opps]

    if result.total_markets < LOW_MARKET_COUNT:
        result.warnings.append(f"Low market count ({result.total_markets}) - results may be incomplete")
    if not validated:
        result.warnings.append("No validated market pairs found across platforms")
    elif result.avg_equivalence_score < LOW_AVG_EQUIVALENCE:
        result.warnings.append(
            f"Low average equivalence ({result.avg_equivalence_score:.2f}) - verify matches manually"
        )

    result.duration = time.monotonic() - started
    result.success = True
    logger.info(
        "Scan complete: %d markets, %d/%d pairs validated, %d opportunities (%d filtered) in %.2fs",
        result.total_markets, result.pairs_validated, result.pairs_evaluated,
        len(result.opportunities), result.filtered_count, result.duration,
    )
    return result


def format_opportunity(opp: ValidatedArbitrageOpportunity, index: int | None = None) -> str:
    """Multi-line plain-text summary of one opportunity."""
    prefix = f"{index}. " if index is not None else ""
    lines = [
        f"{prefix}[{opp.confidence.grade.value}] {opp.strategy.description}",
        f"   Net profit: {opp.net_profit_pct * 100:.2f}% (gross {opp.gross_profit_pct * 100:.2f}%, "
        f"costs ${opp.total_costs.total_cost:.2f})",
        f"   Equivalence: {opp.pair.equivalence.overall_score * 100:.0f}% | "
        f"Risk: {opp.risk.overall_risk_score}/100 | Confidence: {opp.confidence.score}/100",
    ]
    for leg in opp.strategy.legs:
        lines.append(
            f"   - BUY {leg.side.value} on {leg.platform} @ ${leg.target_price:.3f}: {leg.market.title[:60]}"
        )
    lines.append(
        f"   Size: ${opp.execution.recommended_size:.0f} recommended "
        f"(${opp.execution.min_size:.0f}-${opp.execution.max_size:.0f})"
    )
    if opp.risk.flags:
        lines.append("   Flags: " + ", ".join(f.code for f in opp.risk.flags))
    lines.append(f"   {opp.confidence.recommendation}")
    return "\n".join(lines)


def format_scan_result(result: ScanResult) -> str:
    """Plain-text report of a scan."""
    platforms = ", ".join(f"{p}={n}" for p, n in result.markets_scanned.items())
    lines = [
        f"Scan {'OK' if result.success else 'FAILED'} in {result.duration:.2f}s",
        f"Markets: {result.total_markets} ({platforms})",
        f"Pairs: {result.pairs_validated} validated of {result.pairs_evaluated} evaluated "
        f"(avg equivalence {result.avg_equivalence_score * 100:.0f}%)",
        f"Opportunities: {len(result.opportunities)} ({result.filtered_count} below grade filter)",
    ]
    for i, opp in enumerate(result.opportunities, 1):
        lines.append("")
        lines.append(format_opportunity(opp, i))
    if result.warnings:
        lines.append("")
        lines.extend(f"WARNING: {w}" for w in result.warnings)
    if result.errors:
        lines.append("")
        lines.extend(f"ERROR: {e}" for e in result.errors)
    return "\n".join(lines)
