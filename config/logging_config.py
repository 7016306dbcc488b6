"""
Logging setup for the market data engine.

LOG_LEVEL sets the root level (default INFO). LOG_JSON=1 switches to one JSON
object per line, which is what the widget host process forwards to its own
log file. CACHE_LOG_LEVEL can raise or lower the cache/fetch loggers alone,
e.g. DEBUG to watch hits and rehydrations without drowning in everything else.

Only the handler installed here is replaced on a second call, so a host that
embeds the engine keeps its own handlers.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# Structured fields the fetch and cache layers attach through `extra=`
ENGINE_EXTRAS = ("cache_key", "upstream", "status_code")

ENGINE_LOGGERS = ("services.cache", "services.crypto_service", "services.coingecko_client")
NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")

_HANDLER_NAME = "crypto-engine"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


def _level(name: Optional[str], default: int) -> int:
    if not name:
        return default
    value = logging.getLevelName(name.strip().upper())
    return value if isinstance(value, int) else default


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in ENGINE_EXTRAS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info and record.exc_info[0]:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Install (or reinstall) the engine's stdout handler. Arguments override the env."""
    root_level = _level(level or os.getenv("LOG_LEVEL"), logging.INFO)
    use_json = _env_flag("LOG_JSON") if json_logs is None else json_logs

    root = logging.getLogger()
    root.setLevel(root_level)
    for h in [h for h in root.handlers if h.get_name() == _HANDLER_NAME]:
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s | %(message)s"))
    root.addHandler(handler)

    cache_level = os.getenv("CACHE_LOG_LEVEL")
    if cache_level:
        for name in ENGINE_LOGGERS:
            logging.getLogger(name).setLevel(_level(cache_level, root_level))

    # One httpx line per cache miss is too chatty at INFO
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
