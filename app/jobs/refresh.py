"""
Periodic cache warmers.

- ``refresh_portfolio_symbols``: symbols held in live portfolios, one at a
  time, forced when their latest price is older than the loop interval.
- ``refresh_top_candidates``: the top of the upside ranking, re-fetched in
  bounded batches when their latest price is older than the loop interval.

Both go through the same snapshot service interactive requests use, so
coalescing keeps them from duplicating an in-flight fetch.
"""

from __future__ import annotations

from typing import Any, Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.repositories import portfolios_orm as portfolios_repo
from app.repositories import price_candles_orm as candles_repo
from app.repositories import tickers_orm as tickers_repo
from app.schemas.market_data import SnapshotError
from app.services.analyzer import AnalyzerQuery, AnalyzerService
from app.services.snapshot import SnapshotService, get_snapshot_service
from app.services.staleness import DataKind, is_stale

from .registry import register_job

logger = get_logger("jobs.refresh")


async def _stale_symbols(symbols: list[str], max_age_seconds: int) -> list[str]:
    """Symbols whose newest daily candle was written more than ``max_age_seconds`` ago."""
    tickers = await tickers_repo.get_tickers(symbols)
    times = await candles_repo.get_latest_candle_times([t.id for t in tickers.values()])
    stale = []
    for symbol in symbols:
        ticker = tickers.get(symbol)
        last = times.get(ticker.id) if ticker is not None else None
        if is_stale(DataKind.PRICE, last, threshold_override_seconds=max_age_seconds):
            stale.append(symbol)
    return stale


@register_job("refresh_portfolio_symbols", lambda: settings.portfolio_refresh_seconds)
async def refresh_active_portfolio_symbols(
    snapshots: Optional[SnapshotService] = None,
) -> dict[str, Any]:
    """Refresh every symbol held in an active portfolio, sequentially."""
    snapshots = snapshots or get_snapshot_service()
    symbols = await portfolios_repo.list_active_symbols()
    if not symbols:
        return {"symbols": 0, "forced": 0, "refreshed": 0, "failed": 0}

    forced = set(await _stale_symbols(symbols, settings.portfolio_refresh_seconds))
    refreshed = failed = 0

    for symbol in symbols:
        try:
            await snapshots.get_snapshot(symbol, force=symbol in forced)
            refreshed += 1
        except Exception as e:
            failed += 1
            logger.warning(f"Portfolio refresh for {symbol} failed: {e}", extra={"symbol": symbol})

    return {"symbols": len(symbols), "forced": len(forced), "refreshed": refreshed, "failed": failed}


@register_job("refresh_top_candidates", lambda: settings.candidate_refresh_seconds)
async def refresh_top_candidates(
    snapshots: Optional[SnapshotService] = None,
    analyzer: Optional[AnalyzerService] = None,
) -> dict[str, Any]:
    """Re-fetch stale entries among the top upside candidates."""
    snapshots = snapshots or get_snapshot_service()
    analyzer = analyzer or AnalyzerService(use_cache=False)

    page = await analyzer.search(
        AnalyzerQuery(sort_by="upside", sort_dir="DESC", limit=settings.candidate_refresh_limit)
    )
    symbols = [item.symbol for item in page.items]
    stale = await _stale_symbols(symbols, settings.candidate_refresh_seconds)
    if not stale:
        return {"candidates": len(symbols), "stale": 0, "refreshed": 0, "failed": 0}

    results = await snapshots.get_snapshots(stale, update_if_stale=True, force=True)
    failed = sum(1 for r in results if isinstance(r, SnapshotError))
    return {
        "candidates": len(symbols),
        "stale": len(stale),
        "refreshed": len(results) - failed,
        "failed": failed,
    }
