# schemas/crypto.py
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Asset(BaseModel):
    """
    Normalized market record. Numeric fields are decimal strings and always
    present ("0" when upstream has nothing), so consumers never null-check them.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    rank: str
    symbol: str
    name: str
    price_usd: str = Field(alias="priceUsd")
    change_percent_24h: str = Field(alias="changePercent24Hr")
    market_cap_usd: str = Field(alias="marketCapUsd")
    volume_usd_24h: str = Field(alias="volumeUsd24Hr")
    image: Optional[str] = None


class AssetDetail(Asset):
    # Optional extras are left as None when upstream omits them.
    description: Optional[str] = None
    homepage: Optional[str] = None
    ath_price: Optional[float] = Field(default=None, alias="athPrice")
    ath_date: Optional[str] = Field(default=None, alias="athDate")
    atl_price: Optional[float] = Field(default=None, alias="atlPrice")
    atl_date: Optional[str] = Field(default=None, alias="atlDate")
    price_change_7d: Optional[float] = Field(default=None, alias="priceChange7d")
    price_change_30d: Optional[float] = Field(default=None, alias="priceChange30d")
    price_change_1y: Optional[float] = Field(default=None, alias="priceChange1y")
    circulating_supply: Optional[float] = Field(default=None, alias="circulatingSupply")
    total_supply: Optional[float] = Field(default=None, alias="totalSupply")
    max_supply: Optional[float] = Field(default=None, alias="maxSupply")
    sparkline_1d: Optional[List[float]] = Field(default=None, alias="sparkline1d")
    sparkline_7d: Optional[List[float]] = Field(default=None, alias="sparkline")
    sparkline_30d: Optional[List[float]] = Field(default=None, alias="sparkline30d")
    sparkline_1y: Optional[List[float]] = Field(default=None, alias="sparkline1y")


class GlobalMarketSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    total_market_cap: float = Field(alias="totalMarketCap")
    total_market_cap_change_24h: float = Field(alias="totalMarketCapChange24h")
    market_cap_ath: Optional[float] = Field(default=None, alias="marketCapAth")
    market_cap_ath_date: Optional[str] = Field(default=None, alias="marketCapAthDate")
    active_coins: int = Field(alias="activeCoins")
    markets: int


class ChangePercent(BaseModel):
    text: str
    is_positive: bool = Field(alias="isPositive")

    model_config = ConfigDict(populate_by_name=True)


class Ecosystem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    color: str
    category: str
