from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from schemas.crypto import ChangePercent
from utils.common_helpers import to_float

logger = logging.getLogger(__name__)

SUPPORTED_CCY = ("USD", "EUR", "GBP", "JPY", "CAD", "AUD")

# Multipliers from USD, used until the first successful refresh
DEFAULT_RATES: Mapping[str, float] = MappingProxyType({
    "USD": 1.0,
    "EUR": 0.85,
    "GBP": 0.73,
    "JPY": 110.0,
    "CAD": 1.25,
    "AUD": 1.35,
})

# en-US currency display symbols (what a browser's Intl formatter prints)
CURRENCY_SYMBOLS: Mapping[str, str] = MappingProxyType({
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "CAD": "CA$",
    "AUD": "A$",
})

# Compact symbols for K/M/B figures
SHORT_SYMBOLS: Mapping[str, str] = MappingProxyType({
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "CAD": "C$",
    "AUD": "A$",
})


def normalize_currency(code: Optional[str]) -> str:
    ccy = (code or "USD").strip().upper()
    return ccy if ccy in SUPPORTED_CCY else "USD"


class ExchangeRates:
    """
    Rate table owned by one service instance.

    Lifecycle: defaults -> replaced wholesale on each successful refresh ->
    read by the formatters. A failed refresh never touches it.
    """

    def __init__(self, initial: Optional[Mapping[str, float]] = None):
        self._rates: Dict[str, float] = dict(DEFAULT_RATES)
        if initial:
            self._rates = self._merged(initial)

    def _merged(self, fetched: Mapping[str, float]) -> Dict[str, float]:
        table = {"USD": 1.0}
        for ccy in SUPPORTED_CCY:
            if ccy == "USD":
                continue
            rate = fetched.get(ccy)
            if isinstance(rate, (int, float)) and not isinstance(rate, bool) and rate > 0:
                table[ccy] = float(rate)
            else:
                # Missing from this response: keep what we had
                table[ccy] = self._rates[ccy]
        return table

    def replace(self, fetched: Mapping[str, float]) -> None:
        self._rates = self._merged(fetched)

    def rate(self, currency: Optional[str]) -> float:
        return self._rates.get(normalize_currency(currency), 1.0)

    def snapshot(self) -> Dict[str, float]:
        return dict(self._rates)


# ---------- Formatting ----------

def _group_digits(value: float, min_digits: int, max_digits: int) -> str:
    s = f"{abs(value):,.{max_digits}f}"
    if "." in s:
        int_part, frac = s.split(".")
        frac = frac.rstrip("0")
        if len(frac) < min_digits:
            frac = frac.ljust(min_digits, "0")
        s = f"{int_part}.{frac}" if frac else int_part
    return s


def _money(value: float, currency: str, min_digits: int, max_digits: int) -> str:
    sign = "-" if value < 0 and round(abs(value), max_digits) != 0 else ""
    return f"{sign}{CURRENCY_SYMBOLS[currency]}{_group_digits(value, min_digits, max_digits)}"


def convert_price(price_usd: Any, currency: Optional[str], rates: ExchangeRates) -> str:
    """USD price -> formatted price in `currency`. Sub-1 values keep up to 6 decimals."""
    ccy = normalize_currency(currency)
    converted = to_float(price_usd) * rates.rate(ccy)
    max_digits = 6 if converted < 1 else 2
    return _money(converted, ccy, 2, max_digits)


def convert_large_value(value_usd: Any, currency: Optional[str], rates: ExchangeRates) -> str:
    ccy = normalize_currency(currency)
    converted = to_float(value_usd) * rates.rate(ccy)
    return _money(converted, ccy, 0, 0)


def format_large_number(value_usd: Any, currency: Optional[str], rates: ExchangeRates) -> str:
    """Market-cap style figures: $1.23B, €4.56M, £7.89K."""
    ccy = normalize_currency(currency)
    converted = to_float(value_usd) * rates.rate(ccy)
    symbol = SHORT_SYMBOLS[ccy]

    if converted >= 1e9:
        return f"{symbol}{converted / 1e9:.2f}B"
    if converted >= 1e6:
        return f"{symbol}{converted / 1e6:.2f}M"
    if converted >= 1e3:
        return f"{symbol}{converted / 1e3:.2f}K"
    sign = "-" if converted < 0 else ""
    return f"{sign}{symbol}{_group_digits(converted, 0, 3)}"


def format_change_percent(change: Any) -> ChangePercent:
    value = to_float(change)
    is_positive = value >= 0
    return ChangePercent(text=f"{'+' if is_positive else ''}{value:.2f}%", isPositive=is_positive)
