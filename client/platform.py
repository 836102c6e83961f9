"""
Seams to the outside world. Market-data providers and alert transports are
supplied by the caller; anything satisfying these protocols plugs into the
scanner and monitor with zero changes to them.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from scanner.models import Market


@runtime_checkable
class MarketDataProvider(Protocol):
    """Source of Market snapshots across one or more platforms."""

    async def search_markets(self, query: str, platforms: list[str]) -> list[Market]:
        """
        Markets matching query (empty = top active markets) on the given
        platforms. Raises ProviderFetchError on transport or parse failure.
        """
        ...


@runtime_checkable
class AlertTransport(Protocol):
    """Delivery channel for formatted alert text (chat bot, webhook, etc.)."""

    async def send(self, channel_id: str, message: str) -> None:
        ...
