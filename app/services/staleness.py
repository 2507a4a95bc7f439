"""
Staleness policy for cached market data.

Pure functions: given when a value was last refreshed and the configured
thresholds, decide whether it must be refreshed. No I/O.

Usage:
    from app.services.staleness import DataKind, is_stale

    if is_stale(DataKind.PRICE, candle.updated_at):
        ...
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from app.core.config import settings
from app.core.data_helpers import safe_datetime, utcnow


class DataKind(str, Enum):
    PRICE = "price"
    FUNDAMENTALS = "fundamentals"


def threshold_seconds(kind: DataKind) -> float:
    """Configured maximum age for ``kind``."""
    if kind == DataKind.PRICE:
        return float(settings.stale_price_seconds)
    return float(settings.stale_fundamentals_seconds)


def is_stale(
    kind: DataKind,
    last_updated_at: datetime | None,
    now: datetime | None = None,
    threshold_override_seconds: float | None = None,
    force: bool = False,
) -> bool:
    """
    True when data of ``kind`` last refreshed at ``last_updated_at`` must be
    refreshed at ``now``.

    Missing data is always stale; ``force`` short-circuits to True.
    """
    if force:
        return True
    last = safe_datetime(last_updated_at)
    if last is None:
        return True

    threshold = (
        threshold_override_seconds
        if threshold_override_seconds is not None
        else threshold_seconds(kind)
    )
    current = safe_datetime(now) if now is not None else utcnow()
    age = (current - last).total_seconds()
    return age > threshold
