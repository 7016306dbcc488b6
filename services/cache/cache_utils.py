# services/cache/cache_utils.py
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from services.cache.cache_backend import JsonValue, TieredCache

logger = logging.getLogger(__name__)

T = TypeVar("T")


def should_cache_non_empty(val: Any) -> bool:
    """
    Default policy: cache anything except None.
    Empty lists are cached too; "upstream has nothing" is a valid answer.
    """
    return val is not None


def stale_or_empty(cache: TieredCache, key: str, empty: T, *, reason: str = "") -> Any:
    """Last resort after a failed fetch: expired entry if one exists, else `empty`."""
    stale = cache.get_stale(key)
    if stale is not None:
        logger.warning("serving stale cache key=%s reason=%s", key, reason, extra={"cache_key": key})
        return stale
    logger.warning("no cached data available key=%s reason=%s", key, reason, extra={"cache_key": key})
    return empty


async def read_through(
    cache: TieredCache,
    key: str,
    fetch: Callable[[], Awaitable[JsonValue]],
    *,
    empty: T,
    errors: Tuple[Type[BaseException], ...] = (Exception,),
    should_cache: Callable[[Any], bool] = should_cache_non_empty,
) -> Any:
    """
    Fresh cache -> fetch + write-through -> stale cache -> `empty`.

    Only exceptions listed in `errors` are turned into the stale fallback;
    anything else is a bug and propagates.
    """
    hit = cache.get(key)
    if hit is not None:
        return hit

    try:
        val = await fetch()
    except errors as e:
        return stale_or_empty(cache, key, empty, reason=f"{type(e).__name__}: {e}")

    if should_cache(val):
        cache.set(key, val)
    return val
