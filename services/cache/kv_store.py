# services/cache/kv_store.py
from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Dict, List, Optional, Protocol

import redis as redis_sync

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """
    Durable string -> string store backing the persistent cache tier.

    Implementations may raise on any call (connection lost, disk full);
    the cache tier wrapping them is responsible for catching.
    """

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> List[str]: ...


class MemoryKeyValueStore:
    """Dict-backed store. Lives as long as the process; used in tests and when no backend is configured."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._data if k.startswith(prefix)]


class RedisKeyValueStore:
    """Redis-backed store, shared by every process pointing at the same URL."""

    def __init__(self, url: str):
        self._client = redis_sync.from_url(
            url,
            decode_responses=True,  # returns str for GET
            socket_timeout=2,
            socket_connect_timeout=2,
        )

    def get(self, key: str) -> Optional[str]:
        raw = self._client.get(key)
        return raw if isinstance(raw, str) else None

    def set(self, key: str, value: str) -> None:
        self._client.set(key, value)

    def delete(self, key: str) -> None:
        self._client.delete(key)

    def keys(self, prefix: str = "") -> List[str]:
        return [str(k) for k in self._client.scan_iter(match=f"{prefix}*")]


class JsonFileKeyValueStore:
    """
    Single JSON file on disk, the desktop equivalent of browser local storage.

    The file is read once on first access and rewritten atomically on every
    mutation, so a crash mid-write leaves the previous version intact.
    """

    def __init__(self, path: str):
        self.path = path
        self._data: Optional[Dict[str, str]] = None

    def _load(self) -> Dict[str, str]:
        if self._data is not None:
            return self._data
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except FileNotFoundError:
            raw = {}
        except (OSError, ValueError) as e:
            logger.warning("cache file unreadable, starting empty path=%s err=%s", self.path, e)
            raw = {}
        self._data = {str(k): v for k, v in raw.items() if isinstance(v, str)} if isinstance(raw, dict) else {}
        return self._data

    def _flush(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".cache-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, separators=(",", ":"))
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = dict(self._load())
        data[key] = value
        self._flush(data)
        self._data = data

    def delete(self, key: str) -> None:
        data = self._load()
        if key not in data:
            return
        data = {k: v for k, v in data.items() if k != key}
        self._flush(data)
        self._data = data

    def keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._load() if k.startswith(prefix)]


def build_kv_store(backend: str, *, redis_url: Optional[str] = None, file_path: Optional[str] = None) -> KeyValueStore:
    """Pick a store from settings. Falls back to memory when the chosen backend is unusable."""
    b = (backend or "memory").strip().lower()
    if b == "redis":
        if redis_url:
            return RedisKeyValueStore(redis_url)
        logger.warning("CACHE_BACKEND=redis but REDIS_URL missing; using memory store")
        return MemoryKeyValueStore()
    if b == "file":
        if file_path:
            return JsonFileKeyValueStore(file_path)
        logger.warning("CACHE_BACKEND=file but no CACHE_FILE_PATH; using memory store")
        return MemoryKeyValueStore()
    return MemoryKeyValueStore()
