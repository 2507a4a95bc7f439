"""Market data API routes - snapshots, history, news, verdicts and the analyzer."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional, Union

from fastapi import APIRouter, BackgroundTasks, Depends, Path, Query, status

from app.api.dependencies import (
    analyzer_service,
    history_service,
    news_service,
    require_admin_key,
    snapshot_service,
    verdict_service,
)
from app.core.config import settings
from app.core.data_helpers import normalize_symbol
from app.core.exceptions import AppException
from app.core.logging import get_logger
from app.schemas.market_data import (
    AnalyzerResponse,
    BatchSnapshotRequest,
    CandleOut,
    NewsOut,
    Snapshot,
    SnapshotError,
    SyncAccepted,
    VerdictResponse,
)
from app.services.analyzer import AnalyzerQuery, AnalyzerService
from app.services.history import HistoryService
from app.services.news import NewsService
from app.services.snapshot import SnapshotService
from app.services.verdict import VerdictService


logger = get_logger("api.market_data")

router = APIRouter()

SymbolPath = Path(..., min_length=1, max_length=20, description="Ticker symbol, e.g. AAPL or NVO.CO")


@router.get(
    "/analyzer",
    response_model=AnalyzerResponse,
    summary="Ranked ticker universe",
    description="Filter, sort and paginate tickers by verdict score and fundamentals.",
)
async def get_analyzer(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_dir: Optional[str] = Query("DESC", alias="sortDir"),
    search: Optional[str] = Query(None, max_length=100),
    risk: Optional[List[str]] = Query(None, description="Low, Medium, High"),
    ai_rating: Optional[List[str]] = Query(None, alias="aiRating"),
    upside: Optional[str] = Query(None, description="Minimum upside percent, e.g. '> 20%'"),
    overall_score: Optional[str] = Query(None, alias="overallScore"),
    min_market_cap: Optional[float] = Query(None, alias="minMarketCap", ge=0),
    profitable_only: bool = Query(False, alias="profitableOnly"),
    sector: Optional[List[str]] = Query(None),
    service: AnalyzerService = Depends(analyzer_service),
) -> AnalyzerResponse:
    query = AnalyzerQuery.from_params(
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_dir=sort_dir,
        search=search,
        risk=risk,
        ai_rating=ai_rating,
        upside=upside,
        overall_score=overall_score,
        min_market_cap=min_market_cap,
        profitable_only=profitable_only,
        sector=sector,
    )
    return await service.search(query)


@router.post(
    "/snapshots",
    response_model=List[Union[Snapshot, SnapshotError]],
    summary="Batch snapshots",
    description="Cached snapshots for up to 50 symbols. Failed symbols carry an error entry.",
)
async def get_snapshots(
    payload: BatchSnapshotRequest,
    service: SnapshotService = Depends(snapshot_service),
) -> List[Union[Snapshot, SnapshotError]]:
    return await service.get_snapshots(payload.symbols, update_if_stale=False)


@router.get(
    "/{symbol}/snapshot",
    response_model=Snapshot,
    summary="Ticker snapshot",
    description="Profile, latest price, fundamentals, analysis and counts, refreshed when stale.",
)
async def get_snapshot(
    symbol: str = SymbolPath,
    force: bool = Query(False, description="Refresh regardless of staleness"),
    service: SnapshotService = Depends(snapshot_service),
) -> Snapshot:
    return await service.get_snapshot(symbol, force=force)


@router.get(
    "/{symbol}/history",
    response_model=List[CandleOut],
    summary="Price history",
    description="Candles for a window, backfilled from providers when local coverage is thin.",
)
async def get_history(
    symbol: str = SymbolPath,
    days: int = Query(30, ge=1, le=3650),
    interval: str = Query("1d"),
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    service: HistoryService = Depends(history_service),
) -> List[CandleOut]:
    return await service.get_history(symbol, interval=interval, start=start, end=end, days=days)


@router.get(
    "/{symbol}/news",
    response_model=List[NewsOut],
    summary="Company news",
)
async def get_news(
    symbol: str = SymbolPath,
    start: Optional[date] = Query(None, alias="from"),
    end: Optional[date] = Query(None, alias="to"),
    service: NewsService = Depends(news_service),
) -> List[NewsOut]:
    return await service.get_company_news(symbol, start, end)


@router.get(
    "/{symbol}/verdict",
    response_model=VerdictResponse,
    summary="Verdict score",
    description="Composite verdict computed from stored analysis, price and fundamentals.",
)
async def get_verdict(
    symbol: str = SymbolPath,
    service: VerdictService = Depends(verdict_service),
) -> VerdictResponse:
    return await service.get_verdict(symbol)


@router.post(
    "/{symbol}/sync",
    response_model=SyncAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Backfill history (admin)",
    dependencies=[Depends(require_admin_key)],
)
async def sync_history(
    background_tasks: BackgroundTasks,
    symbol: str = SymbolPath,
    service: HistoryService = Depends(history_service),
) -> SyncAccepted:
    symbol = normalize_symbol(symbol)
    years = settings.history_sync_years
    background_tasks.add_task(_run_history_sync, service, symbol, years)
    logger.info(f"Scheduled {years}y history sync for {symbol}", extra={"symbol": symbol})
    return SyncAccepted(symbol=symbol, years=years)


async def _run_history_sync(service: HistoryService, symbol: str, years: int) -> None:
    try:
        await service.ensure_history(symbol, years)
    except AppException as e:
        logger.warning(f"History sync for {symbol} failed: {e.message}", extra={"symbol": symbol})
    except Exception:
        logger.exception(f"History sync for {symbol} crashed")
