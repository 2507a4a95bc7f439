"""Tests for the staleness policy and symbol/conversion helpers."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from app.core.data_helpers import has_exchange_suffix, normalize_symbol, safe_datetime, safe_float
from app.core.exceptions import BadRequestError
from app.services.staleness import DataKind, is_stale, threshold_seconds


NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


class TestIsStale:
    """Tests for is_stale()."""

    def test_missing_data_is_stale(self):
        assert is_stale(DataKind.PRICE, None, now=NOW) is True
        assert is_stale(DataKind.FUNDAMENTALS, None, now=NOW) is True

    def test_force_short_circuits(self):
        assert is_stale(DataKind.PRICE, NOW, now=NOW, force=True) is True

    def test_price_within_threshold_is_fresh(self):
        assert is_stale(DataKind.PRICE, NOW - timedelta(minutes=10), now=NOW) is False

    def test_price_past_threshold_is_stale(self):
        assert is_stale(DataKind.PRICE, NOW - timedelta(minutes=16), now=NOW) is True

    def test_age_equal_to_threshold_is_fresh(self):
        last = NOW - timedelta(seconds=threshold_seconds(DataKind.PRICE))
        assert is_stale(DataKind.PRICE, last, now=NOW) is False

    def test_fundamentals_use_their_own_threshold(self):
        assert is_stale(DataKind.FUNDAMENTALS, NOW - timedelta(hours=23), now=NOW) is False
        assert is_stale(DataKind.FUNDAMENTALS, NOW - timedelta(hours=25), now=NOW) is True

    def test_threshold_override(self):
        last = NOW - timedelta(seconds=45)
        assert is_stale(DataKind.PRICE, last, now=NOW, threshold_override_seconds=30) is True
        assert is_stale(DataKind.PRICE, last, now=NOW, threshold_override_seconds=60) is False

    def test_naive_timestamps_are_utc(self):
        naive = (NOW - timedelta(minutes=5)).replace(tzinfo=None)
        assert is_stale(DataKind.PRICE, naive, now=NOW) is False

    def test_thresholds_follow_settings(self, monkeypatch):
        from app.core.config import settings

        monkeypatch.setattr(settings, "stale_price_minutes", 1)
        assert threshold_seconds(DataKind.PRICE) == 60
        assert is_stale(DataKind.PRICE, NOW - timedelta(minutes=2), now=NOW) is True

    @pytest.mark.parametrize("kind", list(DataKind))
    def test_never_fresh_again_as_time_passes(self, kind):
        last = NOW - timedelta(hours=1)
        seen_stale = False
        for minutes in range(0, 60 * 30, 7):
            stale = is_stale(kind, last, now=last + timedelta(minutes=minutes))
            assert not (seen_stale and not stale), f"fresh again after {minutes} minutes"
            seen_stale = seen_stale or stale
        assert seen_stale

    def test_never_fresh_again_as_threshold_shrinks(self):
        last = NOW - timedelta(minutes=20)
        seen_stale = False
        for threshold in range(3600, -1, -60):
            stale = is_stale(DataKind.PRICE, last, now=NOW, threshold_override_seconds=threshold)
            assert not (seen_stale and not stale), f"fresh again at threshold {threshold}s"
            seen_stale = seen_stale or stale
        assert seen_stale


class TestNormalizeSymbol:
    """Tests for normalize_symbol()."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("aapl", "AAPL"),
            ("  msft ", "MSFT"),
            ("nvo.co", "NVO.CO"),
            ("brk-b", "BRK-B"),
            ("^gspc", "^GSPC"),
            ("eurusd=x", "EURUSD=X"),
        ],
    )
    def test_valid_symbols(self, raw, expected):
        assert normalize_symbol(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "AA PL", "AAPL$", "A" * 21, None])
    def test_invalid_symbols(self, raw):
        with pytest.raises(BadRequestError):
            normalize_symbol(raw)

    def test_exchange_suffix(self):
        assert has_exchange_suffix("NVO.CO") is True
        assert has_exchange_suffix("AAPL") is False


class TestConversions:
    """Tests for safe_float() / safe_datetime()."""

    def test_safe_float(self):
        assert safe_float("1.5") == 1.5
        assert safe_float(float("nan")) is None
        assert safe_float(float("inf")) is None
        assert safe_float(True) is None
        assert safe_float("n/a", default=0.0) == 0.0

    def test_safe_datetime_sources(self):
        assert safe_datetime(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
        assert safe_datetime(1_700_000_000_000) == safe_datetime(1_700_000_000)
        assert safe_datetime("2026-01-02T03:04:05Z") == datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert safe_datetime(date(2026, 1, 2)) == datetime(2026, 1, 2, tzinfo=timezone.utc)
        assert safe_datetime("garbage") is None
