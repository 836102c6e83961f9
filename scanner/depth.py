"""
Order-book depth analysis and executable price estimation.

With a real book, VWAP sweeps give exact slippage at the intended size.
Without one (most search endpoints only return a last/mid price), prices
are estimated from yes_price with a typical 2% spread and depth is derived
from reported liquidity/volume.
"""

from __future__ import annotations

import logging
import time

from scanner.errors import CalculationError
from scanner.models import ExecutablePrice, Market, OrderBook, OrderBookDepth, OutcomeSide, Side
from scanner.validation import validate_price

logger = logging.getLogger(__name__)

# Assumed bid/ask spread when no book is available
ESTIMATED_SPREAD = 0.02
# Order sizes (USD) at which price impact is reported
IMPACT_SIZES_USD = (100.0, 1_000.0, 10_000.0)
# Floor on displayed size when estimating from volume
MIN_ESTIMATED_SIZE = 100.0


def effective_price(book: OrderBook, side: Side, size: float) -> float | None:
    """
    VWAP fill price for given size, walking the book from best level.
    Returns None if insufficient depth.
    """
    levels = book.asks if side == Side.BUY else book.bids
    if not levels or size <= 0:
        return None

    remaining = size
    total_cost = 0.0

    for level in levels:
        fill = min(remaining, level.size)
        total_cost += fill * level.price
        remaining -= fill
        if remaining <= 0:
            break

    if remaining > 0:
        return None  # insufficient depth

    return total_cost / size


def sweep_notional(book: OrderBook, side: Side, limit_price: float) -> float:
    """
    USD notional available up to a price ceiling (BUY) or floor (SELL).
    For BUY: asks with price <= limit. For SELL: bids with price >= limit.
    """
    levels = book.asks if side == Side.BUY else book.bids
    total = 0.0

    for level in levels:
        if side == Side.BUY and level.price > limit_price:
            break
        if side == Side.SELL and level.price < limit_price:
            break
        total += level.size * level.price

    return total


def book_depth(book: OrderBook) -> OrderBookDepth:
    """Depth metrics measured off the ask side of a real book."""
    best = book.best_ask
    if best is None:
        raise CalculationError(f"Empty ask side for {book.token_id}")

    def impact(order_usd: float) -> float:
        vwap = effective_price(book, Side.BUY, order_usd / best.price)
        if vwap is None:
            # Can't fill at all: worst case is paying up to $1
            return 1.0 - best.price
        return vwap - best.price

    return OrderBookDepth(
        volume_at_1pct=sweep_notional(book, Side.BUY, best.price * 1.01),
        volume_at_2pct=sweep_notional(book, Side.BUY, best.price * 1.02),
        volume_at_5pct=sweep_notional(book, Side.BUY, best.price * 1.05),
        price_impact_100=impact(IMPACT_SIZES_USD[0]),
        price_impact_1000=impact(IMPACT_SIZES_USD[1]),
        price_impact_10000=impact(IMPACT_SIZES_USD[2]),
    )


def estimated_depth(market: Market) -> OrderBookDepth:
    """Heuristic depth from reported liquidity (or 10% of volume when unknown)."""
    volume = market.volume or 0.0
    liquidity = market.effective_liquidity
    return OrderBookDepth(
        volume_at_1pct=min(liquidity * 0.1, 1_000.0),
        volume_at_2pct=min(liquidity * 0.2, 2_000.0),
        volume_at_5pct=min(liquidity * 0.4, 5_000.0),
        price_impact_100=0.005 if volume > 10_000 else 0.01,
        price_impact_1000=0.01 if volume > 50_000 else 0.02,
        price_impact_10000=0.02 if volume > 100_000 else 0.05,
    )


def _estimated_size(volume: float) -> float:
    # Roughly 5% of lifetime volume rests on the book at any time
    return max(MIN_ESTIMATED_SIZE, volume * 0.05)


def executable_price(market: Market) -> ExecutablePrice:
    """
    Executable YES prices for a market. Uses the order book when present,
    otherwise estimates around yes_price. Raises CalculationError when the
    market carries no usable price.
    """
    book = market.book
    if book is not None and book.best_bid and book.best_ask:
        bid = book.best_bid.price
        ask = book.best_ask.price
        return ExecutablePrice(
            mid=(bid + ask) / 2.0,
            bid=bid,
            ask=ask,
            spread=ask - bid,
            bid_size=sum(level.size for level in book.bids),
            ask_size=sum(level.size for level in book.asks),
            depth=book_depth(book),
            timestamp=time.time(),
        )

    try:
        mid = validate_price(float(market.yes_price), f"{market.platform}:{market.market_id} yes_price")
    except (TypeError, ValueError) as e:
        raise CalculationError(str(e)) from e

    half = ESTIMATED_SPREAD / 2.0
    size = _estimated_size(market.volume)
    return ExecutablePrice(
        mid=mid,
        bid=max(0.0, mid - half),
        ask=min(1.0, mid + half),
        spread=ESTIMATED_SPREAD,
        bid_size=size,
        ask_size=size,
        depth=estimated_depth(market),
        timestamp=time.time(),
    )


def _tiered_impact(depth: OrderBookDepth, order_usd: float) -> float:
    if order_usd <= IMPACT_SIZES_USD[0]:
        return depth.price_impact_100
    if order_usd <= IMPACT_SIZES_USD[1]:
        return depth.price_impact_1000
    if order_usd <= IMPACT_SIZES_USD[2]:
        return depth.price_impact_10000
    # Linear extrapolation beyond the largest tier
    return depth.price_impact_10000 * (order_usd / IMPACT_SIZES_USD[2])


def estimate_slippage(
    market: Market,
    price: ExecutablePrice,
    outcome: OutcomeSide,
    order_usd: float,
) -> float:
    """
    Price impact (in price units per contract) of buying `outcome` for
    order_usd.

    With a book, YES walks the asks and NO walks the bids (buying NO is
    selling YES). Without one, falls back to the impact tiers. Raises
    CalculationError when the book can't absorb the order.
    """
    book = market.book
    if book is None or not (book.best_bid and book.best_ask):
        return _tiered_impact(price.depth, order_usd)

    if outcome == OutcomeSide.YES:
        contracts = order_usd / max(price.ask, 0.01)
        vwap = effective_price(book, Side.BUY, contracts)
        if vwap is None:
            raise CalculationError(
                f"Insufficient ask depth on {market.platform}:{market.market_id} for ${order_usd:.0f}"
            )
        return max(0.0, vwap - price.ask)

    contracts = order_usd / max(1.0 - price.bid, 0.01)
    vwap = effective_price(book, Side.SELL, contracts)
    if vwap is None:
        raise CalculationError(
            f"Insufficient bid depth on {market.platform}:{market.market_id} for ${order_usd:.0f}"
        )
    return max(0.0, price.bid - vwap)
