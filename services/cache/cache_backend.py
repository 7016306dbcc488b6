# services/cache/cache_backend.py
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Union

from services.cache.kv_store import KeyValueStore

# -------------------------
# Types
# -------------------------
JsonValue = Union[Dict[str, Any], List[Any], str, int, float, bool, None]

# -------------------------
# Defaults
# -------------------------
VOLATILE_TTL_SEC = 5 * 60
DURABLE_TTL_SEC = 60 * 60
DEFAULT_NAMESPACE = "crypto_cache"

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: JsonValue
    written_at: float  # epoch seconds
    # Set on copies made during rehydration; overrides the tier TTL
    expires_at: Optional[float] = None

    def is_fresh(self, now: float, ttl_sec: float) -> bool:
        if self.expires_at is not None:
            return now < self.expires_at
        return now - self.written_at < ttl_sec


class CacheTier(Protocol):
    """
    One layer of the cache hierarchy.

    `get` honours the tier's own TTL, `get_stale` ignores it.
    `set` and `clear` report success instead of raising.
    """

    name: str
    ttl_sec: float

    def get(self, key: str, now: float) -> Optional[CacheEntry]: ...

    def get_stale(self, key: str) -> Optional[CacheEntry]: ...

    def set(self, entry: CacheEntry) -> bool: ...

    def clear(self) -> bool: ...


class MemoryTier:
    """Volatile in-process tier."""

    name = "memory"

    def __init__(self, ttl_sec: float = VOLATILE_TTL_SEC):
        self.ttl_sec = ttl_sec
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str, now: float) -> Optional[CacheEntry]:
        hit = self._entries.get(key)
        if hit is None or not hit.is_fresh(now, self.ttl_sec):
            return None
        return hit

    def get_stale(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def set(self, entry: CacheEntry) -> bool:
        self._entries[entry.key] = entry
        return True

    def clear(self) -> bool:
        self._entries.clear()
        return True

    def __len__(self) -> int:
        return len(self._entries)


class KeyValueTier:
    """
    Durable tier on top of a KeyValueStore.

    Keys are stored as "<namespace>_<key>" and values as
    {"data": payload, "timestamp": epoch_ms}.
    """

    name = "durable"

    def __init__(
        self,
        store: KeyValueStore,
        namespace: str = DEFAULT_NAMESPACE,
        ttl_sec: float = DURABLE_TTL_SEC,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.namespace = namespace
        self.ttl_sec = ttl_sec
        self._log = logger or _logger

    @property
    def prefix(self) -> str:
        return f"{self.namespace}_"

    def _store_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _read(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = self.store.get(self._store_key(key))
        except Exception as e:
            self._log.warning("durable cache read failed key=%s err=%s", key, e)
            return None
        if not raw:
            return None
        try:
            parsed = json.loads(raw)
            ts = float(parsed["timestamp"]) / 1000.0
            return CacheEntry(key=key, payload=parsed["data"], written_at=ts)
        except (ValueError, TypeError, KeyError) as e:
            self._log.warning("durable cache entry corrupt key=%s err=%s", key, e)
            return None

    def get(self, key: str, now: float) -> Optional[CacheEntry]:
        hit = self._read(key)
        if hit is None or not hit.is_fresh(now, self.ttl_sec):
            return None
        return hit

    def get_stale(self, key: str) -> Optional[CacheEntry]:
        return self._read(key)

    def set(self, entry: CacheEntry) -> bool:
        try:
            blob = json.dumps(
                {"data": entry.payload, "timestamp": int(entry.written_at * 1000)},
                separators=(",", ":"),
            )
            self.store.set(self._store_key(entry.key), blob)
            return True
        except Exception:
            # quota / connection / unserializable payload; TieredCache logs the failure
            return False

    def clear(self) -> bool:
        try:
            for k in self.store.keys(self.prefix):
                self.store.delete(k)
            return True
        except Exception:
            return False


class TieredCache:
    """
    Read-through over an ordered list of tiers (fastest first).

      - get: first tier holding a fresh entry wins; faster tiers get a copy
        that stays fresh for their own TTL from now, but never past the
        moment the source entry expires
      - get_stale: first tier holding any entry, expiry ignored
      - set: write-through to every tier with one timestamp
    """

    def __init__(
        self,
        tiers: Sequence[CacheTier],
        *,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        if not tiers:
            raise ValueError("TieredCache needs at least one tier")
        self.tiers: List[CacheTier] = list(tiers)
        self._clock = clock
        self._log = logger or _logger

    def get(self, key: str) -> Optional[JsonValue]:
        now = self._clock()
        for i, tier in enumerate(self.tiers):
            entry = tier.get(key, now)
            if entry is None:
                continue
            source_expiry = entry.expires_at if entry.expires_at is not None else entry.written_at + tier.ttl_sec
            for faster in self.tiers[:i]:
                rehydrated = replace(entry, expires_at=min(now + faster.ttl_sec, source_expiry))
                if not faster.set(rehydrated):
                    self._log.warning("cache rehydrate failed tier=%s key=%s", faster.name, key)
            self._log.debug("cache hit tier=%s key=%s", tier.name, key)
            return entry.payload
        return None

    def get_stale(self, key: str) -> Optional[JsonValue]:
        for tier in self.tiers:
            entry = tier.get_stale(key)
            if entry is not None:
                return entry.payload
        return None

    def set(self, key: str, payload: JsonValue) -> None:
        entry = CacheEntry(key=key, payload=payload, written_at=self._clock())
        for tier in self.tiers:
            if not tier.set(entry):
                self._log.warning("cache write failed tier=%s key=%s", tier.name, key)

    def clear(self) -> None:
        for tier in self.tiers:
            if not tier.clear():
                self._log.warning("cache clear failed tier=%s", tier.name)


def build_tiered_cache(
    store: KeyValueStore,
    *,
    namespace: str = DEFAULT_NAMESPACE,
    volatile_ttl_sec: float = VOLATILE_TTL_SEC,
    durable_ttl_sec: float = DURABLE_TTL_SEC,
    clock: Callable[[], float] = time.time,
    logger: Optional[logging.Logger] = None,
) -> TieredCache:
    return TieredCache(
        [
            MemoryTier(ttl_sec=volatile_ttl_sec),
            KeyValueTier(store, namespace=namespace, ttl_sec=durable_ttl_sec, logger=logger),
        ],
        clock=clock,
        logger=logger,
    )
