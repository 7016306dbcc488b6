import asyncio
import json
import unittest
from typing import Any, Dict, List, Optional

import httpx

from config.settings import EngineSettings
from services.cache.kv_store import MemoryKeyValueStore
from services.crypto_service import build_crypto_service

BASE_URL = "https://api.test/api/v3"
FX_URL = "https://fx.test/v4/latest/USD"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def market_row(coin_id: str, symbol: str, name: str, price: Any = 1.0, **extra: Any) -> Dict[str, Any]:
    row = {
        "id": coin_id,
        "symbol": symbol,
        "name": name,
        "image": f"https://img.test/{coin_id}.png",
        "current_price": price,
        "market_cap": 1000,
        "total_volume": 50,
        "price_change_percentage_24h": 2.5,
    }
    row.update(extra)
    return row


def coin_payload(**market_data: Any) -> Dict[str, Any]:
    md = {
        "current_price": {"usd": 65000},
        "price_change_percentage_24h": -1.25,
        "market_cap": {"usd": 1_280_000_000_000},
        "total_volume": {"usd": 31_000_000_000},
        "ath": {"usd": 73_738},
        "ath_date": {"usd": "2024-03-14T07:10:36.635Z"},
        "circulating_supply": 19_700_000.0,
        "max_supply": 21_000_000.0,
        "price_change_percentage_7d": 3.1,
    }
    md.update(market_data)
    return {
        "id": "bitcoin",
        "symbol": "btc",
        "name": "Bitcoin",
        "market_cap_rank": 1,
        "image": {"large": "https://img.test/btc-large.png", "small": "https://img.test/btc-small.png"},
        "description": {"en": "Bitcoin is the first decentralized cryptocurrency. It launched in 2009."},
        "links": {"homepage": ["https://bitcoin.org", ""]},
        "market_data": md,
    }


class FakeUpstream:
    """Routes CoinGecko-shaped requests; `fail` maps a route kind to a status code or "down"."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.markets: List[Dict[str, Any]] = []
        self.category_rows: Dict[str, List[Dict[str, Any]]] = {}
        self.ids_rows: List[Dict[str, Any]] = []
        self.coin: Optional[Dict[str, Any]] = None
        self.charts: Dict[int, List[float]] = {}
        self.global_data: Dict[str, Any] = {}
        self.rates: Dict[str, Any] = {}
        self.fail: Dict[str, Any] = {}
        # verbatim bodies for payloads json.dumps refuses to write (1e999)
        self.raw_bodies: Dict[str, bytes] = {}

    def kinds(self) -> List[str]:
        return [self._kind(r) for r in self.requests]

    def _kind(self, request: httpx.Request) -> str:
        path = request.url.path
        params = request.url.params
        if request.url.host == "fx.test":
            return "rates"
        if path.endswith("/coins/markets"):
            if "category" in params:
                return "category"
            if "ids" in params:
                return "ids"
            return "markets"
        if path.endswith("/market_chart"):
            return f"chart:{params['days']}"
        if path.endswith("/global"):
            return "global"
        return "coin"

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        kind = self._kind(request)
        failure = self.fail.get(kind)
        if failure == "down":
            raise httpx.ConnectError("connection refused", request=request)
        if failure == "timeout":
            raise httpx.ReadTimeout("timed out", request=request)
        if isinstance(failure, int):
            return httpx.Response(failure, json={"error": "nope"})
        if kind in self.raw_bodies:
            return httpx.Response(200, content=self.raw_bodies[kind], headers={"content-type": "application/json"})

        params = request.url.params
        if kind == "markets":
            return httpx.Response(200, json=self.markets[: int(params["per_page"])])
        if kind == "category":
            return httpx.Response(200, json=self.category_rows.get(params["category"], []))
        if kind == "ids":
            return httpx.Response(200, json=self.ids_rows)
        if kind.startswith("chart:"):
            series = self.charts.get(int(params["days"]), [])
            return httpx.Response(200, json={"prices": [[i * 1000, p] for i, p in enumerate(series)]})
        if kind == "global":
            return httpx.Response(200, json={"data": self.global_data})
        if kind == "rates":
            return httpx.Response(200, json={"base": "USD", "rates": self.rates})
        if self.coin is None:
            return httpx.Response(404, json={"error": "coin not found"})
        return httpx.Response(200, json=self.coin)


class CryptoServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.upstream = FakeUpstream()
        self.clock = FakeClock()
        self.store = MemoryKeyValueStore()
        self.settings = EngineSettings(coingecko_base_url=BASE_URL, exchange_rate_url=FX_URL)

    def run_with_service(self, scenario):
        async def _run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(self.upstream.handler)) as http:
                svc = build_crypto_service(self.settings, http_client=http, store=self.store, clock=self.clock)
                return await scenario(svc)

        return asyncio.run(_run())


class TopAssetsTests(CryptoServiceTestCase):
    def test_rank_is_positional_not_upstream_rank(self) -> None:
        self.upstream.markets = [
            market_row("bitcoin", "btc", "Bitcoin", market_cap_rank=7),
            market_row("ethereum", "eth", "Ethereum", market_cap_rank=3),
            market_row("tether", "usdt", "Tether", market_cap_rank=99),
            market_row("solana", "sol", "Solana", market_cap_rank=1),
            market_row("ripple", "xrp", "XRP", market_cap_rank=42),
        ]

        assets = self.run_with_service(lambda svc: svc.get_top_assets(5))

        self.assertEqual([a.rank for a in assets], ["1", "2", "3", "4", "5"])
        self.assertEqual([a.id for a in assets], ["bitcoin", "ethereum", "tether", "solana", "ripple"])
        params = self.upstream.requests[0].url.params
        self.assertEqual(params["per_page"], "5")
        self.assertEqual(params["page"], "1")
        self.assertEqual(params["order"], "market_cap_desc")

    def test_missing_numbers_become_zero_strings(self) -> None:
        self.upstream.markets = [
            market_row("newcoin", "new", "New Coin", price=None, price_change_percentage_24h=None, market_cap=None),
        ]

        (asset,) = self.run_with_service(lambda svc: svc.get_top_assets(1))

        self.assertEqual(asset.price_usd, "0")
        self.assertEqual(asset.change_percent_24h, "0")
        self.assertEqual(asset.market_cap_usd, "0")
        self.assertEqual(asset.volume_usd_24h, "50")

    def test_sub_cent_price_stays_positional(self) -> None:
        self.upstream.markets = [
            market_row("shiba-inu", "shib", "Shiba Inu", price=0.000012, price_change_percentage_24h=-0.00005),
        ]

        (asset,) = self.run_with_service(lambda svc: svc.get_top_assets(1))

        self.assertEqual(asset.price_usd, "0.000012")
        self.assertEqual(asset.change_percent_24h, "-0.00005")

    def test_second_call_is_served_from_cache(self) -> None:
        self.upstream.markets = [market_row("bitcoin", "btc", "Bitcoin")]

        async def scenario(svc):
            await svc.get_top_assets(1)
            return await svc.get_top_assets(1)

        assets = self.run_with_service(scenario)
        self.assertEqual(len(assets), 1)
        self.assertEqual(self.upstream.kinds(), ["markets"])

    def test_failure_serves_stale_data(self) -> None:
        self.upstream.markets = [market_row("bitcoin", "btc", "Bitcoin", price=60000)]

        async def scenario(svc):
            await svc.get_top_assets(1)
            self.clock.advance(3 * 60 * 60)
            self.upstream.fail["markets"] = 503
            return await svc.get_top_assets(1)

        (asset,) = self.run_with_service(scenario)
        self.assertEqual(asset.price_usd, "60000")
        self.assertEqual(self.upstream.kinds(), ["markets", "markets"])

    def test_failure_without_cache_returns_empty_list(self) -> None:
        for failure in (500, 429, "down", "timeout"):
            with self.subTest(failure=failure):
                self.upstream = FakeUpstream()
                self.store = MemoryKeyValueStore()
                self.upstream.fail["markets"] = failure
                self.assertEqual(self.run_with_service(lambda svc: svc.get_top_assets(10)), [])

    def test_malformed_body_is_a_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": {"error_code": 1}})

        self.upstream.handler = handler  # type: ignore[assignment]
        self.assertEqual(self.run_with_service(lambda svc: svc.get_top_assets(10)), [])

    def test_stale_entry_written_by_another_process_is_used(self) -> None:
        self.store.set(
            "crypto_cache_top_2",
            json.dumps({
                "data": [{
                    "id": "bitcoin", "rank": "1", "symbol": "btc", "name": "Bitcoin",
                    "priceUsd": "1", "changePercent24Hr": "0", "marketCapUsd": "0", "volumeUsd24Hr": "0",
                }],
                "timestamp": int((self.clock.now - 86400) * 1000),
            }),
        )
        self.upstream.fail["markets"] = "down"

        (asset,) = self.run_with_service(lambda svc: svc.get_top_assets(2))
        self.assertEqual(asset.id, "bitcoin")


class AssetDetailTests(CryptoServiceTestCase):
    def test_one_day_series_derived_from_seven_day(self) -> None:
        seven_day = [float(i) for i in range(168)]
        self.upstream.coin = coin_payload()
        self.upstream.charts = {7: seven_day, 30: [1.0, 2.0], 365: [3.0]}

        detail = self.run_with_service(lambda svc: svc.get_asset_detail("bitcoin"))

        self.assertEqual(len(detail.sparkline_1d), 24)
        self.assertEqual(detail.sparkline_1d, seven_day[-24:])
        self.assertEqual(detail.sparkline_7d, seven_day)
        self.assertEqual(detail.sparkline_30d, [1.0, 2.0])
        self.assertEqual(detail.sparkline_1y, [3.0])

    def test_one_day_caps_at_twenty_five_points(self) -> None:
        self.upstream.coin = coin_payload()
        self.upstream.charts = {7: [1.0] * 700}

        detail = self.run_with_service(lambda svc: svc.get_asset_detail("bitcoin"))
        self.assertEqual(len(detail.sparkline_1d), 25)

    def test_upstream_sparkline_preferred_over_fetched_chart(self) -> None:
        self.upstream.coin = coin_payload(sparkline_7d={"price": [5.0] * 14})
        self.upstream.charts = {7: [1.0] * 168}

        detail = self.run_with_service(lambda svc: svc.get_asset_detail("bitcoin"))
        self.assertEqual(detail.sparkline_7d, [5.0] * 14)
        self.assertEqual(detail.sparkline_1d, [5.0, 5.0])

    def test_empty_seven_day_series_yields_no_one_day_series(self) -> None:
        self.upstream.coin = coin_payload()
        self.upstream.charts = {7: []}

        detail = self.run_with_service(lambda svc: svc.get_asset_detail("bitcoin"))
        self.assertIsNone(detail.sparkline_1d)
        self.assertIsNone(detail.sparkline_7d)

    def test_chart_failure_only_blanks_that_period(self) -> None:
        self.upstream.coin = coin_payload()
        self.upstream.charts = {7: [1.0] * 168, 30: [2.0] * 30, 365: [3.0] * 365}
        self.upstream.fail["chart:30"] = 500

        detail = self.run_with_service(lambda svc: svc.get_asset_detail("bitcoin"))

        self.assertIsNone(detail.sparkline_30d)
        self.assertEqual(len(detail.sparkline_7d), 168)
        self.assertEqual(len(detail.sparkline_1y), 365)
        self.assertEqual(
            sorted(k for k in self.upstream.kinds() if k.startswith("chart:")),
            ["chart:30", "chart:365", "chart:7"],
        )

    def test_history_interval_depends_on_window(self) -> None:
        self.upstream.coin = coin_payload()
        self.run_with_service(lambda svc: svc.get_asset_detail("bitcoin"))

        intervals = {
            r.url.params["days"]: r.url.params["interval"]
            for r in self.upstream.requests
            if r.url.path.endswith("/market_chart")
        }
        self.assertEqual(intervals, {"7": "hourly", "30": "hourly", "365": "daily"})

    def test_core_and_optional_fields(self) -> None:
        self.upstream.coin = coin_payload()

        detail = self.run_with_service(lambda svc: svc.get_asset_detail("bitcoin"))

        self.assertEqual(detail.rank, "1")
        self.assertEqual(detail.price_usd, "65000")
        self.assertEqual(detail.change_percent_24h, "-1.25")
        self.assertEqual(detail.image, "https://img.test/btc-large.png")
        self.assertEqual(detail.description, "Bitcoin is the first decentralized cryptocurrency.")
        self.assertEqual(detail.homepage, "https://bitcoin.org")
        self.assertEqual(detail.ath_price, 73738.0)
        self.assertEqual(detail.max_supply, 21_000_000.0)
        # absent upstream -> absent here, never a made-up default
        self.assertIsNone(detail.atl_price)
        self.assertIsNone(detail.atl_date)
        self.assertIsNone(detail.total_supply)
        self.assertIsNone(detail.price_change_1y)

    def test_detail_is_cached_with_camel_case_payload(self) -> None:
        self.upstream.coin = coin_payload()
        self.run_with_service(lambda svc: svc.get_asset_detail("bitcoin"))

        stored = json.loads(self.store.get("crypto_cache_details_bitcoin"))
        self.assertEqual(stored["data"]["priceUsd"], "65000")
        self.assertIn("sparkline1d", stored["data"])

    def test_unknown_coin_returns_none(self) -> None:
        self.upstream.coin = None
        self.assertIsNone(self.run_with_service(lambda svc: svc.get_asset_detail("nope")))

    def test_blank_id_makes_no_request(self) -> None:
        self.assertIsNone(self.run_with_service(lambda svc: svc.get_asset_detail("  ")))
        self.assertEqual(self.upstream.requests, [])

    def test_infinite_numbers_are_treated_as_missing(self) -> None:
        body = json.dumps(coin_payload())
        body = body.replace('"market_cap_rank": 1,', '"market_cap_rank": 1e999,')
        body = body.replace('"current_price": {"usd": 65000}', '"current_price": {"usd": 1e999}')
        self.upstream.raw_bodies["coin"] = body.encode()

        async def scenario(svc):
            return await svc.get_asset("bitcoin"), await svc.get_asset_detail("bitcoin")

        asset, detail = self.run_with_service(scenario)

        self.assertEqual(asset.rank, "0")
        self.assertEqual(asset.price_usd, "0")
        self.assertEqual(detail.rank, "0")
        self.assertEqual(detail.ath_price, 73738.0)

    def test_get_asset_uses_upstream_rank(self) -> None:
        self.upstream.coin = coin_payload()
        self.upstream.coin["market_cap_rank"] = None

        asset = self.run_with_service(lambda svc: svc.get_asset("bitcoin"))
        self.assertEqual(asset.rank, "0")
        self.assertEqual(asset.symbol, "btc")


class CategoryTests(CryptoServiceTestCase):
    def test_server_side_category_used_when_non_empty(self) -> None:
        self.upstream.category_rows["solana-ecosystem"] = [
            market_row("solana", "sol", "Solana"),
            market_row("jupiter", "jup", "Jupiter"),
        ]

        assets = self.run_with_service(lambda svc: svc.get_cryptos_by_category("solana-ecosystem"))

        self.assertEqual([a.id for a in assets], ["solana", "jupiter"])
        self.assertEqual(self.upstream.kinds(), ["category"])
        self.assertEqual(self.upstream.requests[0].url.params["per_page"], "100")

    def test_empty_category_uses_fallback_ids(self) -> None:
        self.upstream.ids_rows = [market_row("stacks", "stx", "Stacks"), market_row("alex-lab", "alex", "ALEX Lab")]

        assets = self.run_with_service(lambda svc: svc.get_cryptos_by_category("stacks-ecosystem"))

        self.assertEqual([a.rank for a in assets], ["1", "2"])
        self.assertEqual(self.upstream.kinds(), ["category", "ids"])
        params = self.upstream.requests[1].url.params
        self.assertEqual(params["ids"], "stacks,alex-lab,citycoins,wrapped-bitcoin,blockstack")
        self.assertEqual(params["per_page"], "50")

    def test_category_error_uses_fallback_ids(self) -> None:
        self.upstream.fail["category"] = 429
        self.upstream.ids_rows = [market_row("aptos", "apt", "Aptos")]

        assets = self.run_with_service(lambda svc: svc.get_cryptos_by_category("aptos-ecosystem"))
        self.assertEqual([a.id for a in assets], ["aptos"])

    def test_unknown_empty_category_returns_empty_without_fallback_call(self) -> None:
        assets = self.run_with_service(lambda svc: svc.get_cryptos_by_category("made-up-category"))
        self.assertEqual(assets, [])
        self.assertEqual(self.upstream.kinds(), ["category"])

    def test_both_paths_fill_the_same_key(self) -> None:
        self.upstream.ids_rows = [market_row("optimism", "op", "Optimism")]

        async def scenario(svc):
            await svc.get_cryptos_by_category("optimism-ecosystem")
            return svc.cache.get("category_optimism-ecosystem")

        cached = self.run_with_service(scenario)
        self.assertEqual(cached[0]["id"], "optimism")

    def test_fallback_failure_serves_stale(self) -> None:
        self.upstream.category_rows["layer-1"] = [market_row("bitcoin", "btc", "Bitcoin")]

        async def scenario(svc):
            await svc.get_cryptos_by_category("layer-1")
            self.clock.advance(5 * 60 * 60)
            self.upstream.fail["category"] = "down"
            self.upstream.fail["ids"] = "down"
            return await svc.get_cryptos_by_category("layer-1")

        assets = self.run_with_service(scenario)
        self.assertEqual([a.id for a in assets], ["bitcoin"])

    def test_everything_failing_returns_empty(self) -> None:
        self.upstream.fail["category"] = 500
        self.upstream.fail["ids"] = 500
        self.assertEqual(self.run_with_service(lambda svc: svc.get_cryptos_by_category("layer-1")), [])


class SearchTests(CryptoServiceTestCase):
    def test_search_runs_over_top_250(self) -> None:
        self.upstream.markets = [
            market_row("bitcoin", "btc", "Bitcoin"),
            market_row("wrapped-bitcoin", "wbtc", "Wrapped Bitcoin"),
            market_row("ethereum", "eth", "Ethereum"),
        ]

        results = self.run_with_service(lambda svc: svc.search_crypto("BTC "))

        self.assertEqual([a.id for a in results], ["bitcoin", "wrapped-bitcoin"])
        self.assertEqual(self.upstream.requests[0].url.params["per_page"], "250")

    def test_empty_query_in_category_returns_whole_category(self) -> None:
        self.upstream.category_rows["base-ecosystem"] = [
            market_row("aerodrome-finance", "aero", "Aerodrome"),
            market_row("degen-base", "degen", "Degen"),
        ]

        results = self.run_with_service(lambda svc: svc.search_crypto_in_category("", "base-ecosystem"))
        self.assertEqual(len(results), 2)

    def test_search_in_category_only_sees_category_assets(self) -> None:
        self.upstream.markets = [market_row("ethereum", "eth", "Ethereum")]
        self.upstream.category_rows["polygon-ecosystem"] = [
            market_row("matic-network", "matic", "Polygon"),
            market_row("quickswap", "quick", "QuickSwap"),
        ]

        results = self.run_with_service(lambda svc: svc.search_crypto_in_category("eth", "polygon-ecosystem"))
        self.assertEqual(results, [])


class ExchangeRateTests(CryptoServiceTestCase):
    def test_failed_refresh_keeps_previous_rates(self) -> None:
        self.upstream.rates = {"EUR": 0.90, "GBP": 0.79, "JPY": 150.2, "CAD": 1.37, "AUD": 1.52}

        async def scenario(svc):
            await svc.update_exchange_rates()
            first = svc.rates.rate("EUR")
            self.upstream.fail["rates"] = "down"
            await svc.update_exchange_rates()
            return first, svc.rates.rate("EUR")

        first, after_failure = self.run_with_service(scenario)
        self.assertEqual(first, 0.90)
        self.assertEqual(after_failure, 0.90)

    def test_partial_response_keeps_missing_currency(self) -> None:
        self.upstream.rates = {"EUR": 0.91}

        async def scenario(svc):
            await svc.update_exchange_rates()
            return svc.rates.snapshot()

        table = self.run_with_service(scenario)
        self.assertEqual(table["EUR"], 0.91)
        self.assertEqual(table["JPY"], 110.0)
        self.assertEqual(table["USD"], 1.0)

    def test_formatting_uses_refreshed_rates(self) -> None:
        self.upstream.rates = {"EUR": 0.5}

        async def scenario(svc):
            await svc.update_exchange_rates()
            return svc.convert_price("100", "EUR")

        self.assertEqual(self.run_with_service(scenario), "€50.00")


class GlobalAndMaintenanceTests(CryptoServiceTestCase):
    def test_global_snapshot_normalized(self) -> None:
        self.upstream.global_data = {
            "total_market_cap": {"usd": 2.5e12, "eur": 2.3e12},
            "market_cap_change_percentage_24h_usd": -0.8,
            "active_cryptocurrencies": 14000,
            "markets": 1100,
        }

        snap = self.run_with_service(lambda svc: svc.get_global_market_data())

        self.assertEqual(snap.total_market_cap, 2.5e12)
        self.assertEqual(snap.total_market_cap_change_24h, -0.8)
        self.assertIsNone(snap.market_cap_ath)
        self.assertIsNone(snap.market_cap_ath_date)
        self.assertEqual(snap.active_coins, 14000)
        self.assertIsNotNone(self.store.get("crypto_cache_global_market"))

    def test_infinite_global_figures_are_zeroed(self) -> None:
        self.upstream.raw_bodies["global"] = (
            b'{"data": {"total_market_cap": {"usd": 1e999}, "market_cap_change_percentage_24h_usd": 1.5,'
            b' "active_cryptocurrencies": 1e999, "markets": 1100}}'
        )

        snap = self.run_with_service(lambda svc: svc.get_global_market_data())

        self.assertEqual(snap.total_market_cap, 0.0)
        self.assertEqual(snap.active_coins, 0)
        self.assertEqual(snap.markets, 1100)

    def test_global_failure_returns_none(self) -> None:
        self.upstream.fail["global"] = 502
        self.assertIsNone(self.run_with_service(lambda svc: svc.get_global_market_data()))

    def test_clear_cache_forces_refetch(self) -> None:
        self.upstream.markets = [market_row("bitcoin", "btc", "Bitcoin")]
        self.store.set("window_bounds", "{}")

        async def scenario(svc):
            await svc.get_top_assets(1)
            svc.clear_cache()
            await svc.get_top_assets(1)

        self.run_with_service(scenario)
        self.assertEqual(self.upstream.kinds(), ["markets", "markets"])
        self.assertEqual(self.store.get("window_bounds"), "{}")


if __name__ == "__main__":
    unittest.main()
