"""
Public market-data providers. Pure REST over httpx, no auth: Polymarket
Gamma, Kalshi public markets, Manifold search.

Each provider normalizes its payload into our Market model with YES prices
in dollars (0.0-1.0). Transport and payload-shape failures raise
ProviderFetchError; individual rows with unusable prices are skipped.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone

import httpx

from config import Config
from scanner.errors import ProviderFetchError
from scanner.models import Market, Platform
from scanner.validation import parse_price, parse_size

logger = logging.getLogger(__name__)


class _RestProvider(ABC):
    """Shared async GET + error translation for one platform."""

    platform_name = ""

    def __init__(self, host: str, timeout: float = 10.0, http: httpx.AsyncClient | None = None) -> None:
        self._host = host.rstrip("/")
        self._http = http or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http is None

    async def _get(self, path: str, params: dict | None = None) -> dict | list:
        url = f"{self._host}{path}"
        try:
            resp = await self._http.get(url, params=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            raise ProviderFetchError(self.platform_name, f"HTTP {e.response.status_code} from {path}") from e
        except httpx.HTTPError as e:
            raise ProviderFetchError(self.platform_name, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise ProviderFetchError(self.platform_name, f"invalid JSON from {path}") from e

    @abstractmethod
    async def fetch(self, query: str, limit: int) -> list[Market]:
        """Open binary markets matching query (top by volume when empty)."""

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()


class PolymarketProvider(_RestProvider):
    """Gamma API market search."""

    platform_name = Platform.POLYMARKET.value

    async def fetch(self, query: str, limit: int) -> list[Market]:
        params: dict = {"closed": "false", "limit": limit}
        if query:
            params["search"] = query
        else:
            params["order"] = "volume"
            params["ascending"] = "false"

        rows = await self._get("/markets", params)
        if not isinstance(rows, list):
            raise ProviderFetchError(self.platform_name, "expected a list of markets")

        markets = []
        for m in rows:
            market_id = str(m.get("id") or m.get("conditionId") or "")
            title = m.get("question") or ""
            if not market_id or not title:
                continue

            # outcomePrices may be a JSON string or a list
            prices = m.get("outcomePrices")
            if isinstance(prices, str):
                try:
                    prices = json.loads(prices)
                except (json.JSONDecodeError, TypeError):
                    prices = None
            raw_yes = prices[0] if prices else m.get("yes_price")
            try:
                yes_price = parse_price(raw_yes, f"polymarket:{market_id} yes_price")
                volume = parse_size(m.get("volumeNum", m.get("volume")), "volume")
                liquidity = parse_size(m.get("liquidityNum", m.get("liquidity")), "liquidity")
            except ValueError as e:
                logger.debug("Skipping polymarket row %s: %s", market_id, e)
                continue

            slug = m.get("slug") or market_id
            markets.append(Market(
                platform=self.platform_name,
                market_id=market_id,
                title=title,
                yes_price=yes_price,
                volume=volume,
                liquidity=liquidity,
                url=f"https://polymarket.com/event/{slug}",
                end_date=str(m.get("endDateIso") or m.get("endDate") or ""),
            ))
        return markets


class KalshiProvider(_RestProvider):
    """
    Kalshi public markets endpoint. Prices are in cents (1-99); the YES
    price is the bid/ask midpoint, falling back to the last trade.
    The endpoint has no text search, so query filters titles client-side.
    """

    platform_name = Platform.KALSHI.value

    async def fetch(self, query: str, limit: int) -> list[Market]:
        # Over-fetch when filtering locally
        page = limit if not query else max(limit * 4, 200)
        data = await self._get("/markets", {"status": "open", "limit": page})
        if not isinstance(data, dict) or not isinstance(data.get("markets"), list):
            raise ProviderFetchError(self.platform_name, "expected {'markets': [...]}")

        needle = query.lower()
        markets = []
        for m in data["markets"]:
            ticker = m.get("ticker") or ""
            title = m.get("title") or ""
            if not ticker or not title:
                continue
            if needle and needle not in title.lower() and needle not in (m.get("subtitle") or "").lower():
                continue

            bid = m.get("yes_bid") or 0
            ask = m.get("yes_ask") or 0
            cents = (bid + ask) / 2 if bid and ask else (m.get("last_price") or bid or ask)
            if not cents:
                continue
            try:
                yes_price = parse_price(cents / 100, f"kalshi:{ticker} yes_price")
                volume = parse_size(m.get("volume"), "volume")
                liquidity = parse_size(m.get("open_interest"), "open_interest")
            except (TypeError, ValueError) as e:
                logger.debug("Skipping kalshi row %s: %s", ticker, e)
                continue

            markets.append(Market(
                platform=self.platform_name,
                market_id=ticker,
                title=title,
                yes_price=yes_price,
                volume=volume,
                liquidity=liquidity,
                url=f"https://kalshi.com/markets/{ticker}",
                end_date=str(m.get("close_time") or m.get("expiration_time") or ""),
            ))
            if len(markets) >= limit:
                break
        return markets


class ManifoldProvider(_RestProvider):
    """Manifold search-markets (play money, binary contracts only)."""

    platform_name = Platform.MANIFOLD.value

    async def fetch(self, query: str, limit: int) -> list[Market]:
        params = {"term": query, "limit": limit, "sort": "score", "filter": "open"}
        rows = await self._get("/search-markets", params)
        if not isinstance(rows, list):
            raise ProviderFetchError(self.platform_name, "expected a list of markets")

        markets = []
        for m in rows:
            market_id = m.get("id") or ""
            title = m.get("question") or ""
            if not market_id or not title:
                continue
            if m.get("outcomeType", "BINARY") != "BINARY":
                continue
            try:
                yes_price = parse_price(m.get("probability"), f"manifold:{market_id} probability")
                volume = parse_size(m.get("volume"), "volume")
                liquidity = parse_size(m.get("totalLiquidity"), "totalLiquidity")
            except ValueError as e:
                logger.debug("Skipping manifold row %s: %s", market_id, e)
                continue

            close_ms = m.get("closeTime")
            end_date = ""
            if isinstance(close_ms, (int, float)):
                end_date = datetime.fromtimestamp(close_ms / 1000, tz=timezone.utc).isoformat()

            url = m.get("url") or f"https://manifold.markets/{m.get('creatorUsername', '')}/{m.get('slug', market_id)}"
            markets.append(Market(
                platform=self.platform_name,
                market_id=market_id,
                title=title,
                yes_price=yes_price,
                volume=volume,
                liquidity=liquidity,
                url=url,
                end_date=end_date,
            ))
        return markets


class MultiPlatformProvider:
    """
    MarketDataProvider that dispatches each requested platform to its own
    provider. Platforms are fetched sequentially; the scanner fans out one
    call per platform itself.
    """

    def __init__(self, providers: dict[str, _RestProvider], limit: int = 50) -> None:
        self._providers = providers
        self._limit = limit

    @classmethod
    def from_config(cls, config: Config, limit: int | None = None) -> MultiPlatformProvider:
        providers: dict[str, _RestProvider] = {
            Platform.POLYMARKET.value: PolymarketProvider(config.gamma_host, config.http_timeout_sec),
            Platform.KALSHI.value: KalshiProvider(config.kalshi_host, config.http_timeout_sec),
            Platform.MANIFOLD.value: ManifoldProvider(config.manifold_host, config.http_timeout_sec),
        }
        return cls(providers, limit or config.max_markets_per_platform)

    @property
    def platforms(self) -> list[str]:
        return list(self._providers)

    async def search_markets(self, query: str, platforms: list[str]) -> list[Market]:
        markets: list[Market] = []
        for platform in platforms:
            provider = self._providers.get(platform.lower())
            if provider is None:
                raise ProviderFetchError(platform, "no provider configured")
            fetched = await provider.fetch(query, self._limit)
            logger.debug("Fetched %d markets from %s (query=%r)", len(fetched), platform, query)
            markets.extend(fetched)
        return markets

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()
