# config/settings.py
from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class EngineSettings:
    """
    Runtime knobs for the market data engine.

    Built from env vars by `load_settings()`; tests construct it directly.
    """

    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: str | None = None
    request_timeout_sec: float = 10.0
    exchange_rate_url: str = "https://api.exchangerate-api.com/v4/latest/USD"

    # Durable keys look like "<namespace>_<logical key>"
    cache_namespace: str = "crypto_cache"
    volatile_ttl_sec: int = 5 * 60
    durable_ttl_sec: int = 60 * 60

    # memory | redis | file
    cache_backend: str = "memory"
    redis_url: str | None = None
    cache_file_path: str = field(
        default_factory=lambda: os.path.join(os.path.expanduser("~"), ".crypto_widget", "cache.json")
    )

    search_universe_size: int = 250
    search_result_limit: int = 20


def load_settings() -> EngineSettings:
    defaults = EngineSettings()
    return EngineSettings(
        coingecko_base_url=os.getenv("COINGECKO_BASE_URL", defaults.coingecko_base_url).rstrip("/"),
        coingecko_api_key=os.getenv("COINGECKO_API_KEY") or None,
        request_timeout_sec=_env_float("COINGECKO_TIMEOUT_SEC", defaults.request_timeout_sec),
        exchange_rate_url=os.getenv("EXCHANGE_RATE_URL", defaults.exchange_rate_url),
        cache_namespace=os.getenv("CACHE_NAMESPACE", defaults.cache_namespace),
        volatile_ttl_sec=_env_int("CACHE_VOLATILE_TTL_SEC", defaults.volatile_ttl_sec),
        durable_ttl_sec=_env_int("CACHE_DURABLE_TTL_SEC", defaults.durable_ttl_sec),
        cache_backend=(os.getenv("CACHE_BACKEND") or defaults.cache_backend).strip().lower(),
        redis_url=os.getenv("REDIS_URL") or None,
        cache_file_path=os.getenv("CACHE_FILE_PATH", defaults.cache_file_path),
        search_universe_size=_env_int("SEARCH_UNIVERSE_SIZE", defaults.search_universe_size),
        search_result_limit=_env_int("SEARCH_RESULT_LIMIT", defaults.search_result_limit),
    )
