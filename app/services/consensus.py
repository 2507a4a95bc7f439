"""Recency-weighted analyst consensus derived from stored rating actions."""

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Optional

from app.core.data_helpers import safe_date, utcnow


# Rating actions within 30 days weigh 3, within 90 days 2, older 1
RECENCY_WEIGHTS = ((30, 3.0), (90, 2.0))
DEFAULT_WEIGHT = 1.0
RATINGS_WINDOW = 20

STRONG_BUY_SHARE = 0.7
BUY_SHARE = 0.5
SELL_SHARE = 0.5

_BUY_WORDS = ("strong buy", "buy", "outperform", "overweight")
_SELL_WORDS = ("sell", "underperform", "underweight")


def classify_rating(rating: str | None) -> str:
    """Bucket free-text rating into buy / sell / hold."""
    text = (rating or "").lower()
    if any(word in text for word in _BUY_WORDS):
        return "buy"
    if any(word in text for word in _SELL_WORDS):
        return "sell"
    return "hold"


def recency_weight(rating_date: date | datetime | None, today: date) -> float:
    rated = safe_date(rating_date)
    if rated is None:
        return DEFAULT_WEIGHT
    age = (today - rated).days
    for max_days, weight in RECENCY_WEIGHTS:
        if age <= max_days:
            return weight
    return DEFAULT_WEIGHT


def derive_consensus(ratings: Iterable, today: date | None = None) -> Optional[str]:
    """
    Derive a consensus label from analyst rating rows.

    ``ratings`` are objects with ``rating`` and ``rating_date`` attributes
    (e.g. ``AnalystRating`` rows), newest first; only the first
    ``RATINGS_WINDOW`` are considered.

    Returns:
        "Strong Buy", "Buy", "Hold", "Sell", or None when there are no ratings
    """
    today = today or utcnow().date()
    totals = {"buy": 0.0, "hold": 0.0, "sell": 0.0}

    for i, row in enumerate(ratings):
        if i >= RATINGS_WINDOW:
            break
        totals[classify_rating(row.rating)] += recency_weight(row.rating_date, today)

    total = sum(totals.values())
    if total == 0:
        return None

    buy_share = totals["buy"] / total
    if buy_share > STRONG_BUY_SHARE:
        return "Strong Buy"
    if buy_share > BUY_SHARE:
        return "Buy"
    if totals["sell"] / total > SELL_SHARE:
        return "Sell"
    return "Hold"
