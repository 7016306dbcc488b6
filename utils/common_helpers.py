from decimal import Decimal
import math
from typing import Any, Optional


def to_float(x: Any) -> float:
    if x is None:
        return 0.0
    if isinstance(x, Decimal):
        x = float(x)
    try:
        v = float(x)
    except Exception:
        return 0.0
    return v if math.isfinite(v) else 0.0


def safe_float(x: Any) -> Optional[float]:
    """None for missing, bool, NaN and +/-inf (JSON 1e999 parses to inf)."""
    try:
        if x is None or isinstance(x, bool):
            return None
        v = float(x)
    except Exception:
        return None
    return v if math.isfinite(v) else None


def safe_int(x: Any) -> int:
    v = safe_float(x)
    return int(v) if v is not None else 0


def num_str(x: Any) -> str:
    """
    Decimal-as-string for upstream numbers. Missing / non-numeric -> "0".
    Integers keep no trailing ".0" so 65000 stays "65000"; small prices
    stay positional ("0.000012", never "1.2e-05").
    """
    if isinstance(x, bool):
        return "0"
    if isinstance(x, int):
        return str(x)
    v = safe_float(x)
    if v is None:
        return "0"
    if v.is_integer():
        return str(int(v))
    s = format(Decimal(repr(v)), "f")
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return s


def clean_str(x: Any) -> Optional[str]:
    if not isinstance(x, str):
        return None
    s = x.strip()
    return s or None
