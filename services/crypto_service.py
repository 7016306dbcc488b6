# services/crypto_service.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

import httpx
from pydantic import ValidationError

from config.settings import EngineSettings, load_settings
from schemas.crypto import Asset, AssetDetail, ChangePercent, GlobalMarketSnapshot
from services.cache.cache_backend import TieredCache, build_tiered_cache
from services.cache.cache_utils import read_through, stale_or_empty
from services.cache.kv_store import KeyValueStore, build_kv_store
from services.coingecko_client import CoinGeckoClient, CoinGeckoError, MalformedResponseError
from services.crypto_categories import CATEGORY_FALLBACK_COINS
from services.crypto_normalize import (
    coin_to_asset,
    coin_to_detail,
    global_to_snapshot,
    market_rows_to_assets,
)
from services.crypto_search import SEARCH_RESULT_LIMIT, search_assets
from services.currency_service import (
    ExchangeRates,
    convert_large_value,
    convert_price,
    format_change_percent,
    format_large_number,
)

logger = logging.getLogger(__name__)

Json = Dict[str, Any]
T = TypeVar("T")

FETCH_ERRORS: Tuple[type, ...] = (CoinGeckoError,)

CATEGORY_PAGE_SIZE = 100
FALLBACK_PAGE_SIZE = 50
HISTORY_WINDOWS_DAYS = (7, 30, 365)
GLOBAL_CACHE_KEY = "global_market"


def _normalized(fn: Callable[..., T], *args: Any) -> T:
    try:
        return fn(*args)
    except (TypeError, ValueError, AttributeError, OverflowError) as e:
        raise MalformedResponseError(f"Could not normalize upstream payload: {e}") from e


def _dump_assets(assets: Sequence[Asset]) -> List[Json]:
    return [a.model_dump(by_alias=True) for a in assets]


def _load_assets(payload: Any) -> List[Asset]:
    if not isinstance(payload, list):
        return []
    out: List[Asset] = []
    for row in payload:
        try:
            out.append(Asset.model_validate(row))
        except ValidationError as e:
            logger.warning("dropping unreadable cached asset row err=%s", e.errors()[:1])
    return out


def _load_model(model: type, payload: Any) -> Any:
    if payload is None:
        return None
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        logger.warning("unreadable cached %s err=%s", model.__name__, e.errors()[:1])
        return None


class CryptoDataService:
    """
    Cache-first access to CoinGecko market data for the widget.

    Read methods never raise on upstream or storage trouble: they resolve to
    fresh data, stale cached data, or an explicit empty value ([] / None).
    """

    def __init__(
        self,
        client: CoinGeckoClient,
        cache: TieredCache,
        *,
        rates: Optional[ExchangeRates] = None,
        fallback_table: Mapping[str, Sequence[str]] = CATEGORY_FALLBACK_COINS,
        search_universe_size: int = 250,
        search_limit: int = SEARCH_RESULT_LIMIT,
    ):
        self.client = client
        self.cache = cache
        self.rates = rates or ExchangeRates()
        self.fallback_table = fallback_table
        self.search_universe_size = search_universe_size
        self.search_limit = search_limit

    # -----------------------
    # Listings
    # -----------------------

    async def get_top_assets(self, limit: int = 20) -> List[Asset]:
        limit = max(1, int(limit))

        async def fetch() -> List[Json]:
            rows = await self.client.get_markets(per_page=limit, page=1)
            return _dump_assets(_normalized(market_rows_to_assets, rows))

        payload = await read_through(self.cache, f"top_{limit}", fetch, empty=[], errors=FETCH_ERRORS)
        return _load_assets(payload)

    async def get_cryptos_by_category(self, category: str) -> List[Asset]:
        category = (category or "").strip()
        if not category:
            return []

        key = f"category_{category}"
        hit = self.cache.get(key)
        if hit is not None:
            return _load_assets(hit)

        primary_failed = False
        try:
            rows = await self.client.get_markets(per_page=CATEGORY_PAGE_SIZE, page=1, category=category)
            assets = _normalized(market_rows_to_assets, rows)
        except FETCH_ERRORS as e:
            logger.warning("category query failed category=%s err=%s", category, e)
            primary_failed = True
            assets = []

        if assets:
            payload = _dump_assets(assets)
            self.cache.set(key, payload)
            return assets

        logger.info("category query empty, using fallback ids category=%s", category)
        return await self._category_fallback(category, key, primary_failed=primary_failed)

    async def _category_fallback(self, category: str, key: str, *, primary_failed: bool) -> List[Asset]:
        coin_ids = list(self.fallback_table.get(category, ()))
        if not coin_ids:
            logger.info("no fallback coins defined category=%s", category)
            if primary_failed:
                return _load_assets(stale_or_empty(self.cache, key, [], reason="category query failed"))
            return []

        try:
            rows = await self.client.get_markets(per_page=FALLBACK_PAGE_SIZE, page=1, ids=coin_ids)
            payload = _dump_assets(_normalized(market_rows_to_assets, rows))
        except FETCH_ERRORS as e:
            return _load_assets(stale_or_empty(self.cache, key, [], reason=f"fallback query failed: {e}"))

        # Same key as the primary path; readers cannot tell which one filled it
        self.cache.set(key, payload)
        return _load_assets(payload)

    # -----------------------
    # Single asset
    # -----------------------

    async def get_asset(self, coin_id: str) -> Optional[Asset]:
        coin_id = (coin_id or "").strip()
        if not coin_id:
            return None

        async def fetch() -> Json:
            coin = await self.client.get_coin(coin_id)
            return _normalized(coin_to_asset, coin).model_dump(by_alias=True)

        payload = await read_through(self.cache, f"crypto_{coin_id}", fetch, empty=None, errors=FETCH_ERRORS)
        return _load_model(Asset, payload)

    async def get_historical_prices(self, coin_id: str, days: int) -> Optional[List[float]]:
        try:
            return await self.client.get_market_chart(coin_id, days)
        except FETCH_ERRORS as e:
            logger.warning("history fetch failed coin=%s days=%s err=%s", coin_id, days, e)
            return None

    async def get_asset_detail(self, coin_id: str) -> Optional[AssetDetail]:
        coin_id = (coin_id or "").strip()
        if not coin_id:
            return None

        async def fetch() -> Json:
            # Detail and the three charts in flight together; a chart failure
            # only blanks that chart
            coin, *charts = await asyncio.gather(
                self.client.get_coin(coin_id),
                *(self.get_historical_prices(coin_id, d) for d in HISTORY_WINDOWS_DAYS),
                return_exceptions=True,
            )
            if isinstance(coin, BaseException):
                raise coin
            chart_7d, chart_30d, chart_1y = (c if isinstance(c, list) else None for c in charts)
            detail = _normalized(coin_to_detail, coin, chart_7d, chart_30d, chart_1y)
            return detail.model_dump(by_alias=True)

        payload = await read_through(self.cache, f"details_{coin_id}", fetch, empty=None, errors=FETCH_ERRORS)
        return _load_model(AssetDetail, payload)

    # -----------------------
    # Global
    # -----------------------

    async def get_global_market_data(self) -> Optional[GlobalMarketSnapshot]:
        async def fetch() -> Json:
            data = await self.client.get_global()
            return _normalized(global_to_snapshot, data).model_dump(by_alias=True)

        payload = await read_through(self.cache, GLOBAL_CACHE_KEY, fetch, empty=None, errors=FETCH_ERRORS)
        return _load_model(GlobalMarketSnapshot, payload)

    # -----------------------
    # Search
    # -----------------------

    async def search_crypto(self, query: str) -> List[Asset]:
        candidates = await self.get_top_assets(self.search_universe_size)
        return search_assets(query, candidates, limit=self.search_limit)

    async def search_crypto_in_category(self, query: str, category: str) -> List[Asset]:
        candidates = await self.get_cryptos_by_category(category)
        return search_assets(query, candidates, limit=self.search_limit)

    # -----------------------
    # FX + formatting
    # -----------------------

    async def update_exchange_rates(self) -> None:
        try:
            fetched = await self.client.get_exchange_rates()
        except FETCH_ERRORS as e:
            logger.warning("exchange-rate refresh failed, keeping previous table err=%s", e)
            return
        self.rates.replace(fetched)
        logger.info("exchange rates refreshed")

    def convert_price(self, price_usd: Any, currency: str) -> str:
        return convert_price(price_usd, currency, self.rates)

    def convert_large_value(self, value_usd: Any, currency: str) -> str:
        return convert_large_value(value_usd, currency, self.rates)

    def format_large_number(self, value_usd: Any, currency: str) -> str:
        return format_large_number(value_usd, currency, self.rates)

    @staticmethod
    def format_change_percent(change: Any) -> ChangePercent:
        return format_change_percent(change)

    # -----------------------
    # Maintenance
    # -----------------------

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("crypto cache cleared")


def build_crypto_service(
    settings: Optional[EngineSettings] = None,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    store: Optional[KeyValueStore] = None,
    clock: Callable[[], float] = time.time,
) -> CryptoDataService:
    s = settings or load_settings()
    client = CoinGeckoClient(
        base_url=s.coingecko_base_url,
        api_key=s.coingecko_api_key,
        timeout=s.request_timeout_sec,
        exchange_rate_url=s.exchange_rate_url,
        http_client=http_client,
    )
    kv = store or build_kv_store(s.cache_backend, redis_url=s.redis_url, file_path=s.cache_file_path)
    cache = build_tiered_cache(
        kv,
        namespace=s.cache_namespace,
        volatile_ttl_sec=s.volatile_ttl_sec,
        durable_ttl_sec=s.durable_ttl_sec,
        clock=clock,
    )
    return CryptoDataService(
        client,
        cache,
        search_universe_size=s.search_universe_size,
        search_limit=s.search_result_limit,
    )


_service_singleton: Optional[CryptoDataService] = None


def get_crypto_service() -> CryptoDataService:
    global _service_singleton
    if _service_singleton is None:
        _service_singleton = build_crypto_service()
    return _service_singleton
