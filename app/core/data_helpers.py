"""
Centralized data conversion helpers.

Usage:
    from app.core.data_helpers import safe_float, safe_int, safe_datetime, normalize_symbol
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timezone
from typing import Any

from app.core.exceptions import BadRequestError


# Yahoo-style symbols: AAPL, NVO.CO, BRK-B, ^GSPC, EURUSD=X
SYMBOL_PATTERN = re.compile(r"^[A-Z0-9.\-\^=]{1,20}$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_symbol(symbol: str) -> str:
    """Validate and normalize a ticker symbol.

    Raises:
        BadRequestError: If the symbol is empty or has invalid characters
    """
    normalized = (symbol or "").strip().upper()
    if not normalized or not SYMBOL_PATTERN.match(normalized):
        raise BadRequestError(
            message=f"Invalid symbol: {symbol!r}",
            details={"symbol": symbol},
        )
    return normalized


def has_exchange_suffix(symbol: str) -> bool:
    """True for exchange-qualified symbols such as ``NVO.CO``."""
    return "." in symbol


def _is_na(value: Any) -> bool:
    try:
        import pandas as pd

        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def safe_float(value: Any, default: float | None = None) -> float | None:
    """
    Safely convert value to float.

    Handles None, NaN, Inf, pandas NA/NaT, and conversion errors gracefully.
    """
    if value is None or isinstance(value, bool):
        return default
    if _is_na(value):
        return default
    try:
        f = float(value)
    except (ValueError, TypeError):
        return default
    if math.isnan(f) or math.isinf(f):
        return default
    return f


def safe_int(value: Any, default: int | None = None) -> int | None:
    """Safely convert value to int (accepts float strings like "123.0")."""
    f = safe_float(value)
    if f is None:
        return default
    return int(f)


def safe_datetime(value: Any) -> datetime | None:
    """
    Convert ISO strings, dates, datetimes and unix timestamps to aware UTC datetimes.

    Timestamps above 1e12 are treated as milliseconds.
    """
    if value is None or isinstance(value, bool) or _is_na(value):
        return None
    if hasattr(value, "to_pydatetime"):
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    try:
        if isinstance(value, (int, float)):
            ts = float(value)
            if ts > 1e12:
                ts = ts / 1000.0
            return datetime.fromtimestamp(ts, tz=timezone.utc)
        if isinstance(value, str) and value.strip():
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except (ValueError, TypeError, OSError, OverflowError):
        return None
    return None


def safe_date(value: Any) -> date | None:
    parsed = safe_datetime(value)
    return parsed.date() if parsed else None


__all__ = [
    "SYMBOL_PATTERN",
    "has_exchange_suffix",
    "normalize_symbol",
    "safe_date",
    "safe_datetime",
    "safe_float",
    "safe_int",
    "utcnow",
]
