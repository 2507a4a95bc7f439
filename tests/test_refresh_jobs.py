"""Tests for the background refresh jobs and the scheduler wrapper."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.data_helpers import utcnow
from app.core.exceptions import SymbolNotFound
from app.database.orm import Portfolio, PortfolioPosition, PriceCandle, Ticker
from app.jobs import refresh
from app.jobs.registry import get_all_jobs, get_job
from app.jobs.scheduler import JobScheduler
from app.schemas.market_data import AnalyzerItem, AnalyzerMeta, AnalyzerResponse, SnapshotError


async def _seed_candle(add_rows, symbol: str, age: timedelta, source: str = "finnhub_quote", days_back: int = 0) -> Ticker:
    ticker = await add_rows(Ticker(symbol=symbol, name=symbol))
    now = utcnow()
    day = now.replace(hour=0, minute=0, second=0, microsecond=0) - timedelta(days=days_back)
    await add_rows(
        PriceCandle(ticker_id=ticker.id, timeframe="1d", ts=day, close=10.0, source=source, updated_at=now - age)
    )
    return ticker


class TestPortfolioRefresh:
    """Tests for refresh_active_portfolio_symbols()."""

    @pytest.mark.asyncio
    async def test_refreshes_held_symbols_forcing_stale_ones(self, db, add_rows):
        active, closed = await add_rows(
            Portfolio(user_id=1, name="Main", is_active=True),
            Portfolio(user_id=1, name="Old", is_active=False),
        )
        await add_rows(
            PortfolioPosition(portfolio_id=active.id, symbol="aapl", quantity=10),
            PortfolioPosition(portfolio_id=active.id, symbol="MSFT", quantity=5),
            PortfolioPosition(portfolio_id=active.id, symbol="NVDA", quantity=0),
            PortfolioPosition(portfolio_id=closed.id, symbol="TSLA", quantity=3),
        )
        await _seed_candle(add_rows, "AAPL", timedelta(seconds=5))
        await _seed_candle(add_rows, "MSFT", timedelta(hours=2))
        snapshots = MagicMock(get_snapshot=AsyncMock())

        result = await refresh.refresh_active_portfolio_symbols(snapshots=snapshots)

        assert result == {"symbols": 2, "forced": 1, "refreshed": 2, "failed": 0}
        calls = {c.args[0]: c.kwargs["force"] for c in snapshots.get_snapshot.await_args_list}
        assert calls == {"AAPL": False, "MSFT": True}

    @pytest.mark.asyncio
    async def test_failures_are_counted(self, db, add_rows):
        portfolio = await add_rows(Portfolio(user_id=1, name="Main"))
        await add_rows(
            PortfolioPosition(portfolio_id=portfolio.id, symbol="AAPL", quantity=1),
            PortfolioPosition(portfolio_id=portfolio.id, symbol="GONE", quantity=1),
        )
        snapshots = MagicMock(
            get_snapshot=AsyncMock(side_effect=lambda symbol, force: _raise_for(symbol, "GONE"))
        )

        result = await refresh.refresh_active_portfolio_symbols(snapshots=snapshots)

        assert result["refreshed"] == 1
        assert result["failed"] == 1
        # Never stored, so both are forced
        assert result["forced"] == 2

    @pytest.mark.asyncio
    async def test_no_portfolios(self, db):
        snapshots = MagicMock(get_snapshot=AsyncMock())
        result = await refresh.refresh_active_portfolio_symbols(snapshots=snapshots)
        assert result["symbols"] == 0
        snapshots.get_snapshot.assert_not_awaited()


def _raise_for(symbol: str, bad: str):
    if symbol == bad:
        raise SymbolNotFound(symbol)
    return None


def _page(*symbols: str) -> AnalyzerResponse:
    return AnalyzerResponse(
        items=[AnalyzerItem(symbol=s) for s in symbols],
        meta=AnalyzerMeta(total=len(symbols), page=1, limit=50, total_pages=1),
    )


class TestTopCandidates:
    """Tests for refresh_top_candidates()."""

    @pytest.mark.asyncio
    async def test_refreshes_only_stale_candidates(self, db, add_rows):
        await _seed_candle(add_rows, "AAA", timedelta(seconds=5))
        await _seed_candle(add_rows, "BBB", timedelta(hours=1))
        analyzer = MagicMock(search=AsyncMock(return_value=_page("AAA", "BBB", "CCC")))
        snapshots = MagicMock(
            get_snapshots=AsyncMock(return_value=[MagicMock(), SnapshotError(symbol="CCC", error="gone")])
        )

        result = await refresh.refresh_top_candidates(snapshots=snapshots, analyzer=analyzer)

        assert result == {"candidates": 3, "stale": 2, "refreshed": 1, "failed": 1}
        snapshots.get_snapshots.assert_awaited_once_with(["BBB", "CCC"], update_if_stale=True, force=True)

        query = analyzer.search.await_args.args[0]
        assert query.sort_by == "upside"
        assert query.sort_dir == "DESC"

    @pytest.mark.asyncio
    async def test_backfilled_close_counts_as_stale(self, db, add_rows):
        await _seed_candle(add_rows, "AAA", timedelta(seconds=5), source="yahoo_history", days_back=1)
        analyzer = MagicMock(search=AsyncMock(return_value=_page("AAA")))
        snapshots = MagicMock(get_snapshots=AsyncMock(return_value=[MagicMock()]))

        result = await refresh.refresh_top_candidates(snapshots=snapshots, analyzer=analyzer)

        assert result["stale"] == 1
        snapshots.get_snapshots.assert_awaited_once_with(["AAA"], update_if_stale=True, force=True)

    @pytest.mark.asyncio
    async def test_nothing_stale(self, db, add_rows):
        await _seed_candle(add_rows, "AAA", timedelta(seconds=5))
        analyzer = MagicMock(search=AsyncMock(return_value=_page("AAA")))
        snapshots = MagicMock(get_snapshots=AsyncMock())

        result = await refresh.refresh_top_candidates(snapshots=snapshots, analyzer=analyzer)

        assert result["stale"] == 0
        snapshots.get_snapshots.assert_not_awaited()


class TestRegistryAndScheduler:
    """Job registration and JobScheduler execution."""

    def test_jobs_registered(self):
        assert get_job("refresh_portfolio_symbols") is refresh.refresh_active_portfolio_symbols
        assert get_job("refresh_top_candidates") is refresh.refresh_top_candidates
        assert get_job("nope") is None

    def test_intervals_follow_settings(self, monkeypatch):
        from app.core.config import settings

        monkeypatch.setattr(settings, "portfolio_refresh_seconds", 45)
        _, interval = get_all_jobs()["refresh_portfolio_symbols"]
        assert interval() == 45

    @pytest.mark.asyncio
    async def test_execute_job_logs_failures(self):
        scheduler = JobScheduler()

        async def job():
            raise RuntimeError("boom")

        assert await scheduler._execute_job("broken", job) is None

    @pytest.mark.asyncio
    async def test_execute_job_returns_result(self):
        scheduler = JobScheduler()

        async def job():
            return {"refreshed": 3}

        assert await scheduler._execute_job("ok", job) == {"refreshed": 3}

    @pytest.mark.asyncio
    async def test_run_unknown_job(self):
        with pytest.raises(ValueError):
            await JobScheduler().run_job_now("nope")

    @pytest.mark.asyncio
    async def test_disabled_scheduler_does_not_start(self, monkeypatch):
        from app.core.config import settings

        monkeypatch.setattr(settings, "scheduler_enabled", False)
        scheduler = JobScheduler()
        await scheduler.start()
        assert scheduler.running is False
