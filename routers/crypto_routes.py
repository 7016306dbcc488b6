# routers/crypto_routes.py
from __future__ import annotations

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from schemas.crypto import Asset, AssetDetail, ChangePercent, Ecosystem, GlobalMarketSnapshot
from services.crypto_categories import ECOSYSTEMS, category_for_ecosystem
from services.crypto_service import CryptoDataService, get_crypto_service
from services.currency_service import normalize_currency

router = APIRouter()


# ---------- Routes (thin controllers delegating to the service) ----------
@router.get("/top", response_model=List[Asset])
async def top_assets(
    limit: int = Query(20, ge=1, le=250),
    svc: CryptoDataService = Depends(get_crypto_service),
):
    return await svc.get_top_assets(limit)


@router.get("/assets/{coin_id}", response_model=Asset)
async def asset(coin_id: str, svc: CryptoDataService = Depends(get_crypto_service)):
    data = await svc.get_asset(coin_id)
    if data is None:
        raise HTTPException(status_code=404, detail=f"No data for {coin_id}")
    return data


@router.get("/assets/{coin_id}/details", response_model=AssetDetail)
async def asset_details(coin_id: str, svc: CryptoDataService = Depends(get_crypto_service)):
    data = await svc.get_asset_detail(coin_id)
    if data is None:
        raise HTTPException(status_code=404, detail=f"No data for {coin_id}")
    return data


@router.get("/categories/{category}", response_model=List[Asset])
async def category_assets(category: str, svc: CryptoDataService = Depends(get_crypto_service)):
    return await svc.get_cryptos_by_category(category)


@router.get("/search", response_model=List[Asset])
async def search(
    q: str = Query("", description="Symbol or name fragment"),
    category: Optional[str] = Query(default=None),
    svc: CryptoDataService = Depends(get_crypto_service),
):
    if category:
        return await svc.search_crypto_in_category(q, category)
    return await svc.search_crypto(q)


@router.get("/global", response_model=GlobalMarketSnapshot)
async def global_market(svc: CryptoDataService = Depends(get_crypto_service)):
    data = await svc.get_global_market_data()
    if data is None:
        raise HTTPException(status_code=503, detail="Global market data unavailable")
    return data


@router.get("/ecosystems", response_model=List[Ecosystem])
async def ecosystems():
    return list(ECOSYSTEMS)


@router.get("/ecosystems/{ecosystem_id}/assets", response_model=List[Asset])
async def ecosystem_assets(ecosystem_id: str, svc: CryptoDataService = Depends(get_crypto_service)):
    category = category_for_ecosystem(ecosystem_id)
    if category is None:
        raise HTTPException(status_code=404, detail=f"Unknown ecosystem {ecosystem_id}")
    return await svc.get_cryptos_by_category(category)


@router.get("/rates")
async def rates(svc: CryptoDataService = Depends(get_crypto_service)) -> Dict[str, float]:
    return svc.rates.snapshot()


@router.post("/rates/refresh")
async def refresh_rates(svc: CryptoDataService = Depends(get_crypto_service)) -> Dict[str, float]:
    await svc.update_exchange_rates()
    return svc.rates.snapshot()


@router.delete("/cache")
async def clear_cache(svc: CryptoDataService = Depends(get_crypto_service)):
    svc.clear_cache()
    return {"success": True}


@router.get("/format/price")
async def format_price(
    value: str = Query(..., description="USD amount"),
    currency: str = Query("USD"),
    svc: CryptoDataService = Depends(get_crypto_service),
):
    ccy = normalize_currency(currency)
    return {
        "currency": ccy,
        "price": svc.convert_price(value, ccy),
        "large": svc.convert_large_value(value, ccy),
        "compact": svc.format_large_number(value, ccy),
    }


@router.get("/format/change", response_model=ChangePercent)
async def format_change(value: str = Query(...)):
    return CryptoDataService.format_change_percent(value)
