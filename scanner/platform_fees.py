"""
Fee model seam. The calculator prices each hedge leg through this
interface, so adding a venue means adding a schedule, not touching the math.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from scanner.models import FeeStructure


@runtime_checkable
class PlatformFeeModel(Protocol):
    @property
    def platform_name(self) -> str:
        """Matches Market.platform."""
        ...

    @property
    def structure(self) -> FeeStructure:
        """Raw schedule, attached to each ArbitrageLeg for reporting."""
        ...

    def trading_fee_rate(self, trader_volume_usd: float = 0.0) -> float:
        """Fraction of notional charged per fill, after volume discounts."""
        ...

    def settlement_fee_rate(self) -> float:
        """Fraction of the $1 payout withheld at resolution."""
        ...
