"""Tests for coverage-driven history sync."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.core.data_helpers import utcnow
from app.core.exceptions import BadRequestError
from app.repositories import price_candles_orm as candles_repo
from app.repositories import tickers_orm as tickers_repo
from app.services.data_providers.fallback import ProviderChain
from app.services.history import (
    HistoryService,
    coverage_ratio,
    expected_points,
    resolve_window,
)


START = datetime(2026, 1, 5, tzinfo=timezone.utc)


class TestCoverageMath:
    """Tests for expected_points() / coverage_ratio()."""

    def test_daily_week(self):
        assert expected_points(START, START + timedelta(days=7), "1d") == pytest.approx(5.0)

    def test_intraday_bars(self):
        assert expected_points(START, START + timedelta(days=7), "1h") == pytest.approx(35.0)
        assert expected_points(START, START + timedelta(days=7), "5m") == pytest.approx(390.0)

    def test_weekly_and_monthly(self):
        assert expected_points(START, START + timedelta(days=70), "1wk") == pytest.approx(10.0)
        assert expected_points(START, START + timedelta(days=90), "1mo") == pytest.approx(3.0)

    def test_ratio(self):
        assert coverage_ratio(5, START, START + timedelta(days=7)) == pytest.approx(1.0)
        assert coverage_ratio(0, START, START + timedelta(days=7)) == 0.0

    def test_window_shorter_than_one_bar(self):
        end = START + timedelta(hours=3)
        assert coverage_ratio(1, START, end, "1d") == 1.0
        assert coverage_ratio(0, START, end, "1d") == 0.0


class TestResolveWindow:
    """Tests for resolve_window()."""

    def test_unsupported_interval(self):
        with pytest.raises(BadRequestError):
            resolve_window("3d")

    def test_start_after_end(self):
        with pytest.raises(BadRequestError):
            resolve_window("1d", start=START + timedelta(days=1), end=START)

    def test_days_back_from_end(self):
        start, end = resolve_window("1d", end=START, days=10)
        assert end == START
        assert start == START - timedelta(days=10)

    def test_intraday_default_window(self):
        start, end = resolve_window("5m", end=START)
        assert end - start == timedelta(days=2)

    def test_naive_bounds_become_utc(self):
        start, end = resolve_window("1d", start=datetime(2026, 1, 1), end=datetime(2026, 1, 2))
        assert start.tzinfo is not None
        assert end.tzinfo is not None


@pytest.fixture
def history_chain(fake_provider, apple_profile, make_candles):
    today = utcnow().date()
    candles = make_candles(today - timedelta(days=800), today)
    primary = fake_provider("finnhub", profile=apple_profile)
    secondary = fake_provider("yahoo", candles=candles)
    return ProviderChain(primary=primary, secondary=secondary)


class TestEnsureHistory:
    """Tests for HistoryService.ensure_history()."""

    @pytest.mark.asyncio
    async def test_backfills_then_serves_from_store(self, db, history_chain):
        service = HistoryService(chain=history_chain)

        first = await service.ensure_history("AAPL", years=1)
        second = await service.ensure_history("AAPL", years=1)

        assert first >= 260
        assert second == first
        # The second call is answered by the store
        assert history_chain.secondary.calls["history"] == 1

    @pytest.mark.asyncio
    async def test_resync_does_not_duplicate(self, db, history_chain):
        service = HistoryService(chain=history_chain)
        await service.ensure_history("AAPL", years=1)

        ticker = await tickers_repo.get_ticker("AAPL")
        end = utcnow()
        before = await candles_repo.count_candles(ticker.id, "1d", end - timedelta(days=900), end)

        await service.ensure_history("AAPL", years=2)
        after = await candles_repo.count_candles(ticker.id, "1d", end - timedelta(days=900), end)

        assert after > before
        await service.ensure_history("AAPL", years=2)
        assert await candles_repo.count_candles(ticker.id, "1d", end - timedelta(days=900), end) == after


class TestGetHistory:
    """Tests for HistoryService.get_history()."""

    @pytest.mark.asyncio
    async def test_covered_window_skips_providers(self, db, history_chain):
        service = HistoryService(chain=history_chain)
        await service.ensure_history("AAPL", years=1)
        calls = dict(history_chain.secondary.calls)

        candles = await service.get_history("AAPL", "1d", days=90)

        assert history_chain.secondary.calls == calls
        assert history_chain.primary.calls["history"] == 0
        assert 60 <= len(candles) <= 66
        assert [c.ts for c in candles] == sorted(c.ts for c in candles)

    @pytest.mark.asyncio
    async def test_empty_store_syncs_a_year(self, db, history_chain):
        service = HistoryService(chain=history_chain)

        candles = await service.get_history("AAPL", "1d", days=30)
        await service.wait_for_background()

        assert 20 <= len(candles) <= 23
        ticker = await tickers_repo.get_ticker("AAPL")
        end = utcnow()
        stored = await candles_repo.count_candles(ticker.id, "1d", end - timedelta(days=366), end)
        assert stored >= 260

    @pytest.mark.asyncio
    async def test_narrow_fetch_from_primary_when_sync_fails(self, db, fake_provider, apple_profile, make_candles):
        today = utcnow().date()
        primary = fake_provider(
            "finnhub",
            profile=apple_profile,
            candles=make_candles(today - timedelta(days=20), today, close=42.0),
        )
        secondary = fake_provider("yahoo", fail={"history"})
        service = HistoryService(chain=ProviderChain(primary=primary, secondary=secondary))

        candles = await service.get_history("AAPL", "1d", days=10)
        await service.wait_for_background()

        assert candles
        assert all(c.close == 42.0 for c in candles)
        assert all(c.source == "finnhub_history" for c in candles)

        ticker = await tickers_repo.get_ticker("AAPL")
        end = utcnow()
        stored = await candles_repo.count_candles(ticker.id, "1d", end - timedelta(days=11), end)
        assert stored == len(candles)

    @pytest.mark.asyncio
    async def test_all_providers_down_degrades_to_store(self, db, fake_provider, apple_profile):
        primary = fake_provider("finnhub", profile=apple_profile, fail={"history"})
        secondary = fake_provider("yahoo", fail={"history"})
        service = HistoryService(chain=ProviderChain(primary=primary, secondary=secondary))

        candles = await service.get_history("AAPL", "1d", days=30)

        assert candles == []

    @pytest.mark.asyncio
    async def test_bad_interval(self, db, history_chain):
        with pytest.raises(BadRequestError):
            await HistoryService(chain=history_chain).get_history("AAPL", "7m")
