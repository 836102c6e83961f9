"""
Per-platform fee schedules with volume-tiered discounts.

Fee types:
- Trading fee: rate on notional traded, optionally discounted by the trader's
  trailing volume (Kalshi: 1% -> 0.7% at $10k -> 0.5% at $100k)
- Settlement fee: rate on payout at resolution (zero on every listed platform)
- Withdrawal fee: informational only, never part of per-trade cost

Unknown platforms fall back to the Polymarket schedule (no fees), matching
how the platform tables are keyed elsewhere.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from scanner.models import FeeStructure, Platform, VolumeDiscount

logger = logging.getLogger(__name__)


PLATFORM_FEES: dict[str, FeeStructure] = {
    Platform.POLYMARKET.value: FeeStructure(),
    Platform.KALSHI.value: FeeStructure(
        trading_fee=0.01,
        volume_discounts=(
            VolumeDiscount(min_volume=10_000, fee_rate=0.007),
            VolumeDiscount(min_volume=100_000, fee_rate=0.005),
        ),
    ),
    # Play money
    Platform.MANIFOLD.value: FeeStructure(),
    Platform.LIMITLESS.value: FeeStructure(trading_fee=0.005),
    # Forecasting only, no trading
    Platform.METACULUS.value: FeeStructure(),
}


@dataclass(frozen=True)
class FeeSchedule:
    """PlatformFeeModel backed by a static FeeStructure."""

    name: str
    fees: FeeStructure

    @property
    def platform_name(self) -> str:
        return self.name

    @property
    def structure(self) -> FeeStructure:
        return self.fees

    def trading_fee_rate(self, trader_volume_usd: float = 0.0) -> float:
        """
        Base rate, replaced by the deepest volume tier the trader qualifies for.
        Tiers are matched on min_volume regardless of declaration order.
        """
        rate = self.fees.trading_fee
        best_tier = -1.0
        for tier in self.fees.volume_discounts:
            if trader_volume_usd >= tier.min_volume and tier.min_volume > best_tier:
                best_tier = tier.min_volume
                rate = tier.fee_rate
        return rate

    def settlement_fee_rate(self) -> float:
        return self.fees.settlement_fee


def fee_model_for(platform: str) -> FeeSchedule:
    """Fee schedule for a platform name. Unknown names get the zero-fee schedule."""
    key = platform.lower()
    fees = PLATFORM_FEES.get(key)
    if fees is None:
        logger.debug("No fee schedule for %s, assuming zero fees", platform)
        fees = PLATFORM_FEES[Platform.POLYMARKET.value]
    return FeeSchedule(name=key, fees=fees)
