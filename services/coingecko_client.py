# services/coingecko_client.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Iterable, List, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"
DEFAULT_EXCHANGE_RATE_URL = "https://api.exchangerate-api.com/v4/latest/USD"


class CoinGeckoError(Exception):
    """Any failed call to the market data source."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientNetworkError(CoinGeckoError):
    """Timeout, connection failure or 5xx. Worth retrying later."""


class RateLimitedError(TransientNetworkError):
    """HTTP 429."""


class MalformedResponseError(CoinGeckoError):
    """Body is not JSON or not the shape we expect."""


class CoinGeckoClient:
    """
    Async client for the CoinGecko v3 public API plus the USD exchange-rate feed.

    Design goals:
      - Every failure surfaces as a CoinGeckoError subclass, so callers only
        need one except clause to route into the stale-cache fallback
      - Optional shared httpx.AsyncClient (tests pass one with a MockTransport)
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        exchange_rate_url: str = DEFAULT_EXCHANGE_RATE_URL,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.exchange_rate_url = exchange_rate_url
        self._http_client = http_client

    @asynccontextmanager
    async def _client(self):
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as c:
            yield c

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key
        return headers

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        async with self._client() as c:
            try:
                r = await c.get(url, params=params, headers=self._headers())
            except httpx.TimeoutException as e:
                raise TransientNetworkError(f"Timed out calling {url}") from e
            except httpx.TransportError as e:
                raise TransientNetworkError(f"Connection failed for {url}: {e}") from e

        if r.status_code == 429:
            raise RateLimitedError("Rate limited by upstream", status_code=429)
        if r.status_code >= 500:
            raise TransientNetworkError(f"Upstream error {r.status_code}", status_code=r.status_code)
        if not r.is_success:
            raise CoinGeckoError(f"Request failed: {r.status_code}", status_code=r.status_code)

        try:
            return r.json()
        except ValueError as e:
            raise MalformedResponseError(f"Non-JSON body from {url}") from e

    # -----------------------
    # Markets
    # -----------------------

    async def get_markets(
        self,
        *,
        per_page: int,
        page: int = 1,
        category: Optional[str] = None,
        ids: Optional[Iterable[str]] = None,
    ) -> List[Dict[str, Any]]:
        """Market listing in USD sorted by market cap, optionally filtered by category or ids."""
        params: Dict[str, Any] = {
            "vs_currency": "usd",
            "order": "market_cap_desc",
            "per_page": per_page,
            "page": page,
            "sparkline": "false",
        }
        if category:
            params["category"] = category
        if ids is not None:
            params["ids"] = ",".join(ids)

        data = await self._get_json(f"{self.base_url}/coins/markets", params)
        if not isinstance(data, list):
            raise MalformedResponseError("Expected a list from /coins/markets")
        return [row for row in data if isinstance(row, dict)]

    # -----------------------
    # Single coin
    # -----------------------

    async def get_coin(self, coin_id: str) -> Dict[str, Any]:
        params = {
            "localization": "false",
            "tickers": "false",
            "market_data": "true",
            "community_data": "true",
            "developer_data": "false",
            "sparkline": "true",
        }
        data = await self._get_json(f"{self.base_url}/coins/{coin_id}", params)
        if not isinstance(data, dict) or not data.get("id"):
            raise MalformedResponseError(f"Unexpected coin payload for {coin_id}")
        return data

    async def get_market_chart(self, coin_id: str, days: int) -> List[float]:
        """Price points only (timestamps dropped). Hourly up to 90 days, daily beyond."""
        params = {
            "vs_currency": "usd",
            "days": days,
            "interval": "daily" if days > 90 else "hourly",
        }
        data = await self._get_json(f"{self.base_url}/coins/{coin_id}/market_chart", params)
        prices = data.get("prices") if isinstance(data, dict) else None
        if not isinstance(prices, list):
            raise MalformedResponseError(f"Missing prices in market_chart for {coin_id}")

        out: List[float] = []
        for point in prices:
            if isinstance(point, (list, tuple)) and len(point) >= 2 and isinstance(point[1], (int, float)):
                out.append(float(point[1]))
        return out

    # -----------------------
    # Global + FX
    # -----------------------

    async def get_global(self) -> Dict[str, Any]:
        data = await self._get_json(f"{self.base_url}/global")
        inner = data.get("data") if isinstance(data, dict) else None
        if not isinstance(inner, dict):
            raise MalformedResponseError("Missing data object in /global")
        return inner

    async def get_exchange_rates(self) -> Dict[str, float]:
        data = await self._get_json(self.exchange_rate_url)
        rates = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(rates, dict):
            raise MalformedResponseError("Missing rates in exchange-rate response")
        out: Dict[str, float] = {}
        for ccy, rate in rates.items():
            if isinstance(rate, (int, float)) and not isinstance(rate, bool):
                out[str(ccy).upper()] = float(rate)
        return out
