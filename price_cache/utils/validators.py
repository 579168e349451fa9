from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any


def to_native_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    try:
        casted = float(value)
        if casted != casted:
            return default
        return casted
    except (TypeError, ValueError):
        return default


def to_native_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def normalize_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        iso = str(value).replace("Z", "+00:00")
        dt = datetime.fromisoformat(iso)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_valid_price(price: float) -> bool:
    return math.isfinite(price) and price > 0


def derive_change(price: float, previous_close: float | None) -> tuple[float, float]:
    """Absolute and percentage change against the previous close, rounded to 2 places."""
    if not previous_close:
        return 0.0, 0.0
    change = price - previous_close
    change_pct = change / previous_close * 100
    return round(change, 2), round(change_pct, 2)
