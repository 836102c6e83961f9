"""
Alert text and delivery fan-out. Formatting is pure; delivery goes through
an injected AlertTransport, one recipient at a time.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time

from client.platform import AlertTransport
from monitor.tracker import TrackedOpportunity

logger = logging.getLogger(__name__)

# Kalshi market tickers carry suffixes the series URL doesn't use:
# KXTRUMP-26FEB14 -> kxtrump, PRES-2028-29 -> pres-2028, FED-KW -> fed
_KALSHI_DATE_SUFFIX = re.compile(r"-\d{1,2}[A-Z]{3}\d{2}$", re.IGNORECASE)
_KALSHI_NUMERIC_SUFFIX = re.compile(r"-\d+$")
_KALSHI_SHORT_SUFFIX = re.compile(r"-[A-Z]{1,3}$", re.IGNORECASE)


def build_market_url(platform: str, market_id: str) -> str:
    """Public page for a market. Unknown platforms get '#'."""
    key = platform.lower()
    if key == "polymarket":
        return f"https://polymarket.com/event/{market_id}"
    if key == "kalshi":
        slug = _KALSHI_DATE_SUFFIX.sub("", market_id)
        slug = _KALSHI_NUMERIC_SUFFIX.sub("", slug)
        slug = _KALSHI_SHORT_SUFFIX.sub("", slug)
        return f"https://kalshi.com/markets/{slug.lower()}"
    if key == "manifold":
        return f"https://manifold.markets/{market_id}"
    return "#"


def format_opportunity_alert(opp: TrackedOpportunity, now: float | None = None) -> str:
    now = time.time() if now is None else now
    age = max(0, round(now - opp.first_seen))
    a, b = opp.pair.market_a, opp.pair.market_b
    return "\n".join([
        "ARBITRAGE ALERT",
        "",
        a.title[:50],
        "",
        f"PROFIT: {opp.current_profit * 100:.2f}%",
        f"Strategy: {opp.strategy}" if opp.strategy else "",
        "",
        f"Platform A: {a.platform} - {build_market_url(a.platform, a.market_id)}",
        f"Platform B: {b.platform} - {build_market_url(b.platform, b.market_id)}",
        "",
        f"Match confidence: {opp.pair.equivalence_score * 100:.0f}%",
        f"First seen: {age}s ago",
        f"Peak profit: {opp.peak_profit * 100:.2f}%",
    ])


async def broadcast_alert(transport: AlertTransport, channel_ids: list[str], message: str) -> dict[str, bool]:
    """
    Send message to every channel. A failing recipient is logged and marked
    False; the others still receive it.
    """
    results: dict[str, bool] = {}
    for channel_id in channel_ids:
        try:
            await transport.send(channel_id, message)
            results[channel_id] = True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Alert delivery to %s failed: %s", channel_id, e)
            results[channel_id] = False
    return results
