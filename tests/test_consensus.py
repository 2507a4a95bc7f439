"""Tests for recency-weighted analyst consensus."""

from __future__ import annotations

from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from app.services.consensus import RATINGS_WINDOW, classify_rating, derive_consensus, recency_weight


TODAY = date(2026, 6, 30)


def rating(label: str, days_ago: int) -> SimpleNamespace:
    return SimpleNamespace(rating=label, rating_date=TODAY - timedelta(days=days_ago))


class TestClassifyRating:
    """Tests for classify_rating()."""

    @pytest.mark.parametrize(
        "label,bucket",
        [
            ("Strong Buy", "buy"),
            ("Buy", "buy"),
            ("Outperform", "buy"),
            ("Overweight", "buy"),
            ("Sell", "sell"),
            ("Strong Sell", "sell"),
            ("Underperform", "sell"),
            ("Underweight", "sell"),
            ("Neutral", "hold"),
            ("Market Perform", "hold"),
            ("", "hold"),
            (None, "hold"),
        ],
    )
    def test_buckets(self, label, bucket):
        assert classify_rating(label) == bucket


class TestRecencyWeight:
    """Tests for recency_weight()."""

    def test_bands(self):
        assert recency_weight(TODAY - timedelta(days=10), TODAY) == 3.0
        assert recency_weight(TODAY - timedelta(days=30), TODAY) == 3.0
        assert recency_weight(TODAY - timedelta(days=60), TODAY) == 2.0
        assert recency_weight(TODAY - timedelta(days=200), TODAY) == 1.0
        assert recency_weight(None, TODAY) == 1.0


class TestDeriveConsensus:
    """Tests for derive_consensus()."""

    def test_no_ratings(self):
        assert derive_consensus([], today=TODAY) is None

    def test_strong_buy(self):
        rows = [rating("Buy", 1), rating("Outperform", 5), rating("Strong Buy", 9), rating("Hold", 3)]
        # buy share 9 / 12 = 0.75
        assert derive_consensus(rows, today=TODAY) == "Strong Buy"

    def test_buy(self):
        rows = [rating("Buy", 1), rating("Buy", 2), rating("Hold", 3), rating("Buy", 120)]
        # buy share 7 / 10 = 0.7 is not above the strong-buy share
        assert derive_consensus(rows, today=TODAY) == "Buy"

    def test_even_split_is_hold(self):
        rows = [rating("Buy", 1), rating("Buy", 2), rating("Hold", 3), rating("Neutral", 4)]
        assert derive_consensus(rows, today=TODAY) == "Hold"

    def test_recent_sells_outweigh(self):
        rows = [rating("Buy", 200), rating("Sell", 5), rating("Underperform", 60)]
        # sell share 5 / 6
        assert derive_consensus(rows, today=TODAY) == "Sell"

    def test_only_the_newest_window_counts(self):
        rows = [rating("Hold", 1)] * RATINGS_WINDOW + [rating("Buy", 1)] * 5
        assert derive_consensus(rows, today=TODAY) == "Hold"
