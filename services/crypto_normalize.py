# services/crypto_normalize.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from schemas.crypto import Asset, AssetDetail, GlobalMarketSnapshot
from utils.common_helpers import clean_str, num_str, safe_float, safe_int, to_float

Json = Dict[str, Any]

ONE_DAY_MAX_POINTS = 25


def _usd(block: Any) -> Any:
    """CoinGecko nests per-currency values: {"usd": 1.0, "eur": ...}."""
    return block.get("usd") if isinstance(block, dict) else None


def _image_url(raw: Any) -> Optional[str]:
    if isinstance(raw, dict):
        return clean_str(raw.get("large")) or clean_str(raw.get("small")) or clean_str(raw.get("thumb"))
    return clean_str(raw)


def _float_list(values: Any) -> Optional[List[float]]:
    if not isinstance(values, list):
        return None
    out = [float(v) for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)]
    return out


def market_row_to_asset(row: Json, rank: int) -> Asset:
    """One /coins/markets row. `rank` is the 1-based position in the response."""
    return Asset(
        id=str(row.get("id") or ""),
        rank=str(rank),
        symbol=str(row.get("symbol") or ""),
        name=str(row.get("name") or ""),
        priceUsd=num_str(row.get("current_price")),
        changePercent24Hr=num_str(row.get("price_change_percentage_24h")),
        marketCapUsd=num_str(row.get("market_cap")),
        volumeUsd24Hr=num_str(row.get("total_volume")),
        image=_image_url(row.get("image")),
    )


def market_rows_to_assets(rows: Sequence[Json]) -> List[Asset]:
    # Rank is positional so any requested slice is numbered 1..n
    return [market_row_to_asset(row, i + 1) for i, row in enumerate(rows)]


def coin_to_asset(coin: Json) -> Asset:
    """Summary from the /coins/{id} payload; rank is CoinGecko's own market_cap_rank."""
    md = coin.get("market_data") or {}
    return Asset(
        id=str(coin.get("id") or ""),
        rank=str(safe_int(coin.get("market_cap_rank"))),
        symbol=str(coin.get("symbol") or ""),
        name=str(coin.get("name") or ""),
        priceUsd=num_str(_usd(md.get("current_price"))),
        changePercent24Hr=num_str(md.get("price_change_percentage_24h")),
        marketCapUsd=num_str(_usd(md.get("market_cap"))),
        volumeUsd24Hr=num_str(_usd(md.get("total_volume"))),
        image=_image_url(coin.get("image")),
    )


def first_sentence(text: Any) -> Optional[str]:
    s = clean_str(text)
    if not s:
        return None
    head = s.split(".")[0].strip()
    return f"{head}." if head else None


def derive_one_day(series_7d: Optional[Sequence[float]]) -> Optional[List[float]]:
    """
    Approximate the last 24h from a 7-day series by point count:
    the last min(25, len // 7) points. Not timestamp based.
    """
    if not series_7d:
        return None
    points = min(ONE_DAY_MAX_POINTS, len(series_7d) // 7)
    if points == 0:
        return []
    return list(series_7d[-points:])


def coin_to_detail(
    coin: Json,
    chart_7d: Optional[List[float]] = None,
    chart_30d: Optional[List[float]] = None,
    chart_1y: Optional[List[float]] = None,
) -> AssetDetail:
    md = coin.get("market_data") or {}
    base = coin_to_asset(coin)

    # Upstream's own 7d sparkline wins over the separately fetched chart
    sparkline_7d = _float_list((md.get("sparkline_7d") or {}).get("price")) or chart_7d or None

    links = coin.get("links") or {}
    homepages = links.get("homepage") if isinstance(links, dict) else None
    homepage = clean_str(homepages[0]) if isinstance(homepages, list) and homepages else None

    description = coin.get("description")
    return AssetDetail(
        **base.model_dump(by_alias=True),
        description=first_sentence(description.get("en") if isinstance(description, dict) else None),
        homepage=homepage,
        athPrice=safe_float(_usd(md.get("ath"))),
        athDate=clean_str(_usd(md.get("ath_date"))),
        atlPrice=safe_float(_usd(md.get("atl"))),
        atlDate=clean_str(_usd(md.get("atl_date"))),
        priceChange7d=safe_float(md.get("price_change_percentage_7d")),
        priceChange30d=safe_float(md.get("price_change_percentage_30d")),
        priceChange1y=safe_float(md.get("price_change_percentage_1y")),
        circulatingSupply=safe_float(md.get("circulating_supply")),
        totalSupply=safe_float(md.get("total_supply")),
        maxSupply=safe_float(md.get("max_supply")),
        sparkline1d=derive_one_day(sparkline_7d),
        sparkline=sparkline_7d,
        sparkline30d=chart_30d,
        sparkline1y=chart_1y,
    )


def global_to_snapshot(data: Json) -> GlobalMarketSnapshot:
    return GlobalMarketSnapshot(
        totalMarketCap=to_float(_usd(data.get("total_market_cap"))),
        totalMarketCapChange24h=to_float(data.get("market_cap_change_percentage_24h_usd")),
        marketCapAth=safe_float(data.get("market_cap_ath")) or None,
        marketCapAthDate=clean_str(data.get("market_cap_ath_date")),
        activeCoins=safe_int(data.get("active_cryptocurrencies")),
        markets=safe_int(data.get("markets")),
    )
