"""
Snapshot assembler.

A snapshot is everything the UI needs about one ticker in a single call:
profile, latest candle, fresh quote (when one was fetched), fundamentals,
the latest risk analysis with its verdict, counts and a close-price
sparkline.

Flow per symbol (coalesced on ``snapshot:{SYMBOL}``):
1. ensure the ticker exists
2. load latest candle and fundamentals
3. refresh through the provider chain when either is stale (or ``force``)
4. derive a consensus rating from analyst actions when none is stored
5. load analysis, counts and sparkline concurrently, each failure isolated

Persistence failures after a successful fetch are logged and the fetched
data is still returned.

Usage:
    from app.services.snapshot import get_snapshot_service

    snapshot = await get_snapshot_service().get_snapshot("AAPL")
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence, Union

from app.core.config import settings
from app.core.data_helpers import normalize_symbol, safe_datetime, utcnow
from app.core.exceptions import AppException, PersistenceFailure, ProviderError
from app.core.logging import get_logger
from app.database.orm import PriceCandle, Ticker
from app.repositories import analyst_ratings_orm as ratings_repo
from app.repositories import company_news_orm as news_repo
from app.repositories import fundamentals_orm as fundamentals_repo
from app.repositories import price_candles_orm as candles_repo
from app.repositories import risk_analysis_orm as risk_repo
from app.repositories import tickers_orm as tickers_repo
from app.schemas.market_data import (
    AiAnalysisOut,
    CandleOut,
    FundamentalsOut,
    NewsOut,
    QuoteOut,
    Snapshot,
    SnapshotCounts,
    SnapshotError,
    TickerInfo,
)
from app.scoring import compute_verdict
from app.services.consensus import RATINGS_WINDOW, derive_consensus
from app.services.data_providers.base import Quote
from app.services.data_providers.fallback import (
    MarketDataBundle,
    ProviderChain,
    fetch_market_data,
    fetch_with_fallback,
    get_provider_chain,
    range_position,
)
from app.services.data_providers.resilience import RequestCoalescer
from app.services.staleness import DataKind, is_stale
from app.services.tickers import TickerService, clean_ratings
from app.services.verdict import build_verdict_inputs, verdict_out


logger = get_logger("services.snapshot")

SPARKLINE_POINTS = 14
SNAPSHOT_NEWS_LIMIT = 5
QUOTE_TIMEFRAME = "1d"


def candle_time(candle: Optional[PriceCandle]) -> Optional[datetime]:
    """Price watermark of the latest candle (quote candles are keyed on the day start)."""
    if candle is None:
        return None
    return candles_repo.price_watermark(candle.ts, candle.updated_at, candle.source)


def quote_candle_row(quote: Quote) -> dict[str, Any]:
    """Daily candle row for a live quote, keyed on the UTC trading day."""
    stamp = safe_datetime(quote.timestamp) or utcnow()
    day = datetime(stamp.year, stamp.month, stamp.day, tzinfo=timezone.utc)
    return {
        "ts": day,
        "open": quote.open,
        "high": quote.high,
        "low": quote.low,
        "close": quote.price,
        "prev_close": quote.previous_close,
        "volume": quote.volume,
    }


def _settled(value: Any, default: Any, label: str, symbol: str) -> Any:
    if isinstance(value, BaseException):
        logger.warning(f"Snapshot {label} for {symbol} failed: {value}", extra={"symbol": symbol})
        return default
    return value


@dataclass
class _Refresh:
    """Outcome of one provider refresh."""

    bundle: MarketDataBundle
    ticker: Optional[Ticker] = None
    candle: Optional[PriceCandle] = None
    fundamentals: Any = None


class SnapshotService:
    """Assembles snapshots, refreshing stale data through the provider chain."""

    def __init__(
        self,
        tickers: TickerService | None = None,
        chain: ProviderChain | None = None,
        coalescer: RequestCoalescer | None = None,
    ):
        self._chain = chain
        self._coalescer = coalescer or RequestCoalescer("snapshots")
        self._tickers = tickers or TickerService(chain=chain, coalescer=self._coalescer)

    @property
    def chain(self) -> ProviderChain:
        return self._chain or get_provider_chain()

    # =========================================================================
    # Public API
    # =========================================================================

    async def get_snapshot(
        self,
        symbol: str,
        force: bool = False,
        update_if_stale: bool = True,
    ) -> Snapshot:
        """
        Snapshot for one symbol.

        Args:
            symbol: Ticker symbol (normalized)
            force: Refresh regardless of staleness
            update_if_stale: When False, never call providers for stale data

        Raises:
            BadRequestError: Malformed symbol
            SymbolNotFound: Symbol unknown to the store and every provider
        """
        symbol = normalize_symbol(symbol)
        return await self._coalescer.execute(
            f"snapshot:{symbol}",
            lambda: self._assemble(symbol, force, update_if_stale),
        )

    async def get_snapshots(
        self,
        symbols: Sequence[str],
        update_if_stale: bool = False,
        force: bool = False,
    ) -> list[Union[Snapshot, SnapshotError]]:
        """
        Snapshots for many symbols, ``snapshot_batch_size`` at a time.

        A failing symbol becomes a ``SnapshotError`` entry; the batch goes on.
        """
        size = max(1, settings.snapshot_batch_size)
        results: list[Union[Snapshot, SnapshotError]] = []

        for i in range(0, len(symbols), size):
            chunk = list(symbols[i:i + size])
            settled = await asyncio.gather(
                *(self.get_snapshot(s, force=force, update_if_stale=update_if_stale) for s in chunk),
                return_exceptions=True,
            )
            for symbol, result in zip(chunk, settled):
                if isinstance(result, Exception):
                    message = result.message if isinstance(result, AppException) else str(result)
                    logger.info(f"Batch snapshot for {symbol} failed: {message}", extra={"symbol": symbol})
                    results.append(SnapshotError(symbol=str(symbol).upper(), error=message))
                elif isinstance(result, BaseException):
                    raise result
                else:
                    results.append(result)

        return results

    # =========================================================================
    # Assembly
    # =========================================================================

    async def _assemble(self, symbol: str, force: bool, update_if_stale: bool) -> Snapshot:
        ticker = await self._tickers.ensure_ticker(symbol)
        candle = await candles_repo.get_latest_candle(ticker.id, QUOTE_TIMEFRAME)
        fundamentals = await fundamentals_repo.get_fundamentals(ticker.id)

        price_stale = is_stale(DataKind.PRICE, candle_time(candle), force=force)
        fundamentals_stale = is_stale(
            DataKind.FUNDAMENTALS,
            fundamentals.updated_at if fundamentals else None,
            force=force,
        )

        source = "cache"
        quote: Optional[Quote] = None
        fundamentals_out = FundamentalsOut.model_validate(fundamentals) if fundamentals else None
        latest_price = CandleOut.model_validate(candle) if candle else None

        if update_if_stale and (price_stale or fundamentals_stale):
            logger.debug(
                f"Refreshing {symbol} (price_stale={price_stale}, fundamentals_stale={fundamentals_stale})",
                extra={"symbol": symbol},
            )
            refresh = await self._refresh(ticker, refresh_ratings=fundamentals_stale)
            bundle = refresh.bundle
            quote = bundle.quote
            if bundle.source:
                source = bundle.source
            ticker = refresh.ticker or ticker

            if refresh.candle is not None:
                latest_price = CandleOut.model_validate(refresh.candle)
            elif quote is not None:
                latest_price = CandleOut(source=f"{bundle.source}_quote", **quote_candle_row(quote))

            if refresh.fundamentals is not None:
                fundamentals_out = FundamentalsOut.model_validate(refresh.fundamentals)
            elif bundle.financials:
                current = fundamentals_out.model_dump() if fundamentals_out else {}
                current.update({k: v for k, v in bundle.financials.items() if v is not None})
                fundamentals_out = FundamentalsOut.model_validate(current)

        return await self._finish(ticker, latest_price, quote, fundamentals_out, source)

    async def _finish(
        self,
        ticker: Ticker,
        latest_price: Optional[CandleOut],
        quote: Optional[Quote],
        fundamentals_out: Optional[FundamentalsOut],
        source: str,
    ) -> Snapshot:
        symbol = ticker.symbol
        need_consensus = fundamentals_out is None or not fundamentals_out.consensus_rating
        now = utcnow()

        (
            analysis,
            news_count,
            research_count,
            analyst_count,
            social_count,
            sparkline,
            ratings,
            news,
        ) = await asyncio.gather(
            risk_repo.get_latest_analysis(ticker.id),
            news_repo.count_news(ticker.id),
            risk_repo.count_research_notes(ticker.id),
            ratings_repo.count_ratings(ticker.id),
            risk_repo.count_social_posts(ticker.id),
            candles_repo.get_recent_closes(ticker.id, SPARKLINE_POINTS, QUOTE_TIMEFRAME),
            ratings_repo.get_recent_ratings(ticker.id, RATINGS_WINDOW) if need_consensus else _nothing(),
            news_repo.get_news(
                ticker.id,
                now - timedelta(days=settings.news_lookback_days),
                now,
                limit=SNAPSHOT_NEWS_LIMIT,
            ),
            return_exceptions=True,
        )

        analysis = _settled(analysis, None, "analysis", symbol)
        counts = SnapshotCounts(
            news=_settled(news_count, 0, "news count", symbol),
            research=_settled(research_count, 0, "research count", symbol),
            analysts=_settled(analyst_count, 0, "analyst count", symbol),
            social=_settled(social_count, 0, "social count", symbol),
        )
        sparkline = _settled(sparkline, [], "sparkline", symbol)
        ratings = _settled(ratings, [], "analyst ratings", symbol) or []
        news = _settled(news, [], "news", symbol)

        ai_analysis = None
        if analysis is not None:
            inputs = build_verdict_inputs(ticker, analysis, fundamentals_out, latest_price)
            ai_analysis = AiAnalysisOut.model_validate(analysis)
            ai_analysis.verdict = verdict_out(compute_verdict(inputs))

        if need_consensus:
            consensus = derive_consensus(ratings)
            if consensus is not None:
                fundamentals_out = (fundamentals_out or FundamentalsOut()).model_copy(
                    update={"consensus_rating": consensus, "consensus_derived": True}
                )

        if fundamentals_out is not None:
            price = latest_price.close if latest_price and latest_price.close else fundamentals_out.current_price
            fundamentals_out.range_position = range_position(
                price,
                fundamentals_out.fifty_two_week_low,
                fundamentals_out.fifty_two_week_high,
            )

        return Snapshot(
            ticker=TickerInfo.model_validate(ticker),
            latest_price=latest_price,
            quote=QuoteOut(**quote.to_dict()) if quote is not None else None,
            fundamentals=fundamentals_out,
            ai_analysis=ai_analysis,
            source=source,
            news=[NewsOut.model_validate(n) for n in news],
            counts=counts,
            sparkline=sparkline,
        )

    # =========================================================================
    # Refresh
    # =========================================================================

    async def _refresh(self, ticker: Ticker, refresh_ratings: bool) -> _Refresh:
        symbol = ticker.symbol
        bundle = await fetch_market_data(symbol, self.chain)
        refresh = _Refresh(bundle=bundle)

        if bundle.is_empty:
            logger.warning(f"No provider returned data for {symbol}: {bundle.errors}", extra={"symbol": symbol})
            return refresh

        if bundle.quote is not None:
            try:
                await candles_repo.save_candles(
                    ticker.id,
                    QUOTE_TIMEFRAME,
                    [quote_candle_row(bundle.quote)],
                    source=f"{bundle.source}_quote",
                )
                refresh.candle = await candles_repo.get_latest_candle(ticker.id, QUOTE_TIMEFRAME)
            except PersistenceFailure as e:
                self._write_failed("quote", symbol, e)

        if bundle.profile is not None:
            try:
                if await tickers_repo.update_profile(ticker.id, bundle.profile.to_ticker_fields()):
                    refresh.ticker = await tickers_repo.get_ticker(symbol)
            except PersistenceFailure as e:
                self._write_failed("profile", symbol, e)

        if bundle.financials:
            try:
                refresh.fundamentals = await fundamentals_repo.merge_fundamentals(
                    ticker.id, bundle.financials, source=bundle.source
                )
            except PersistenceFailure as e:
                self._write_failed("fundamentals", symbol, e)

        if refresh_ratings:
            await self._refresh_ratings(ticker)

        return refresh

    async def _refresh_ratings(self, ticker: Ticker) -> int:
        symbol = ticker.symbol
        try:
            items, provider = await fetch_with_fallback(
                self.chain.chain_for(symbol),
                lambda p: p.get_analyst_ratings(symbol),
                bool,
                label=f"analyst ratings {symbol}",
            )
        except ProviderError as e:
            logger.info(f"No analyst ratings for {symbol}: {e.message}", extra={"symbol": symbol})
            return 0

        try:
            inserted = await ratings_repo.insert_ratings(ticker.id, clean_ratings(items))
        except PersistenceFailure as e:
            logger.warning(f"Persisting analyst ratings for {symbol} failed: {e.message}", extra={"symbol": symbol})
            return 0
        logger.debug(f"Stored {inserted} analyst ratings for {symbol} from {provider}")
        return inserted

    @staticmethod
    def _write_failed(what: str, symbol: str, error: PersistenceFailure) -> None:
        logger.warning(f"Persisting {what} for {symbol} failed: {error.message}", extra={"symbol": symbol})


async def _nothing() -> list:
    return []


_snapshot_service: SnapshotService | None = None


def get_snapshot_service() -> SnapshotService:
    """Get singleton SnapshotService instance."""
    global _snapshot_service
    if _snapshot_service is None:
        from app.services.registry import get_request_coalescer
        from app.services.tickers import get_ticker_service

        _snapshot_service = SnapshotService(
            tickers=get_ticker_service(),
            coalescer=get_request_coalescer(),
        )
    return _snapshot_service
