"""
History coverage sync.

The candle store is authoritative once it covers a requested range well
enough; otherwise the range is backfilled from the deep-history provider and,
failing that, the primary provider, before answering from the store.

Coverage:
    expected = trading days in range x bars per trading day
    trading days ~= calendar days x 5/7
    coverage = stored / expected

A history read never fails because an upstream provider did: the worst case is
whatever partial data the store already holds.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Optional, Sequence

from app.core.data_helpers import normalize_symbol, safe_datetime, utcnow
from app.core.exceptions import (
    BadRequestError,
    InsufficientHistoryCoverage,
    PersistenceFailure,
    ProviderError,
)
from app.core.logging import get_logger
from app.database.orm import Ticker
from app.repositories import price_candles_orm as candles_repo
from app.schemas.market_data import CandleOut
from app.services.data_providers.base import Candle, ProviderClient
from app.services.data_providers.fallback import ProviderChain, get_provider_chain
from app.services.data_providers.resilience import RequestCoalescer
from app.services.tickers import TickerService


logger = get_logger("services.history")

SUPPORTED_INTERVALS = ("1m", "2m", "5m", "15m", "30m", "60m", "90m", "1h", "1d", "1wk", "1mo")

# Default window (days) when no start is given for intraday intervals
INTRADAY_WINDOW_DAYS = {
    "1m": 2,
    "2m": 2,
    "5m": 2,
    "15m": 14,
    "30m": 14,
    "60m": 14,
    "90m": 14,
    "1h": 14,
}

# Regular session bars per trading day (6.5h)
BARS_PER_TRADING_DAY = {
    "1m": 390,
    "2m": 195,
    "5m": 78,
    "15m": 26,
    "30m": 13,
    "60m": 7,
    "90m": 5,
    "1h": 7,
    "1d": 1,
}

TRADING_DAYS_PER_WEEK = 5 / 7
COVERAGE_THRESHOLD = 0.95

# A daily deep sync always warms at least a year
DEEP_SYNC_MIN_DAYS = 365
DAILY_INTERVALS = ("1d", "1wk", "1mo")

DEFAULT_HISTORY_DAYS = 30


# =============================================================================
# Coverage math
# =============================================================================


def expected_points(start: datetime, end: datetime, interval: str = "1d") -> float:
    """Expected number of candles for ``interval`` within [start, end]."""
    calendar_days = max((end - start).total_seconds() / 86400, 0.0)
    if interval == "1wk":
        return calendar_days / 7
    if interval == "1mo":
        return calendar_days / 30
    return calendar_days * TRADING_DAYS_PER_WEEK * BARS_PER_TRADING_DAY.get(interval, 1)


def coverage_ratio(stored: int, start: datetime, end: datetime, interval: str = "1d") -> float:
    expected = expected_points(start, end, interval)
    if expected < 1:
        return 1.0 if stored else 0.0
    return stored / expected


def resolve_window(
    interval: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    days: int = DEFAULT_HISTORY_DAYS,
) -> tuple[datetime, datetime]:
    """
    Normalize a requested range to aware UTC datetimes.

    Without ``start``, intraday intervals get their short default window and
    everything else goes ``days`` back from ``end``.

    Raises:
        BadRequestError: Unsupported interval or start after end
    """
    if interval not in SUPPORTED_INTERVALS:
        raise BadRequestError(
            message=f"Unsupported interval: {interval}",
            details={"supported": list(SUPPORTED_INTERVALS)},
        )

    end = safe_datetime(end) or utcnow().replace(second=0, microsecond=0)
    start = safe_datetime(start)
    if start is None:
        window = INTRADAY_WINDOW_DAYS.get(interval, days)
        start = end - timedelta(days=window)
    if start > end:
        raise BadRequestError(message="'from' must not be after 'to'")
    return start, end


def _rows(candles: Sequence[Candle]) -> list[dict]:
    return [c.to_row() for c in candles if c.close is not None and c.ts is not None]


# =============================================================================
# Service
# =============================================================================


class HistoryService:
    """Candle history with coverage-driven backfill."""

    def __init__(
        self,
        tickers: TickerService | None = None,
        chain: ProviderChain | None = None,
        coalescer: RequestCoalescer | None = None,
    ):
        self._chain = chain
        self._coalescer = coalescer or RequestCoalescer("history")
        self._tickers = tickers or TickerService(chain=chain, coalescer=self._coalescer)
        self._background: set[asyncio.Task] = set()

    @property
    def chain(self) -> ProviderChain:
        return self._chain or get_provider_chain()

    async def get_history(
        self,
        symbol: str,
        interval: str = "1d",
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        days: int = DEFAULT_HISTORY_DAYS,
    ) -> list[CandleOut]:
        """
        Candles for ``symbol`` in the window, oldest first.

        Raises:
            BadRequestError: Malformed symbol, interval or window
            SymbolNotFound: Symbol unknown to the store and every provider
        """
        symbol = normalize_symbol(symbol)
        start, end = resolve_window(interval, start, end, days)
        ticker = await self._tickers.ensure_ticker(symbol)

        key = f"history:{symbol}:{interval}:{start:%Y-%m-%dT%H:%M}:{end:%Y-%m-%dT%H:%M}"
        return await self._coalescer.execute(key, lambda: self._load(ticker, interval, start, end))

    async def ensure_history(self, symbol: str, years: int = 5) -> int:
        """
        Backfill ``years`` of daily candles. Idempotent.

        Returns:
            Number of daily candles stored for the range afterwards
        """
        symbol = normalize_symbol(symbol)
        end = utcnow().replace(second=0, microsecond=0)
        start = end - timedelta(days=365 * years)
        ticker = await self._tickers.ensure_ticker(symbol)

        key = f"history:{symbol}:1d:{start:%Y-%m-%dT%H:%M}:{end:%Y-%m-%dT%H:%M}"
        candles = await self._coalescer.execute(key, lambda: self._load(ticker, "1d", start, end))
        logger.info(f"History for {symbol}: {len(candles)} daily candles over {years}y", extra={"symbol": symbol})
        return len(candles)

    async def wait_for_background(self) -> None:
        """Wait for pending background candle saves."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _covered(self, ticker: Ticker, interval: str, start: datetime, end: datetime) -> list[CandleOut]:
        """Stored candles when they cover the window.

        Raises:
            InsufficientHistoryCoverage: Coverage at or below the threshold
        """
        stored = await candles_repo.count_candles(ticker.id, interval, start, end)
        coverage = coverage_ratio(stored, start, end, interval)
        if coverage <= COVERAGE_THRESHOLD:
            raise InsufficientHistoryCoverage(ticker.symbol, coverage)
        return await self._stored(ticker, interval, start, end)

    async def _stored(self, ticker: Ticker, interval: str, start: datetime, end: datetime) -> list[CandleOut]:
        rows = await candles_repo.get_candles(ticker.id, interval, start, end)
        return [CandleOut.model_validate(r) for r in rows]

    async def _load(self, ticker: Ticker, interval: str, start: datetime, end: datetime) -> list[CandleOut]:
        symbol = ticker.symbol
        try:
            return await self._covered(ticker, interval, start, end)
        except InsufficientHistoryCoverage as e:
            logger.debug(f"{e.message} ({interval}), syncing", extra={"symbol": symbol})

        # Deep sync from the secondary provider, awaited
        sync_start = start
        if interval in DAILY_INTERVALS:
            sync_start = min(start, end - timedelta(days=DEEP_SYNC_MIN_DAYS))
        await self._sync(ticker, self.chain.secondary, sync_start, end, interval)

        try:
            return await self._covered(ticker, interval, start, end)
        except InsufficientHistoryCoverage as e:
            coverage = e.coverage

        # Narrow window: primary first, then the secondary again
        for provider in self.chain.chain_for(symbol):
            candles = await self._fetch(provider, symbol, start, end, interval)
            if not candles:
                continue
            stored = await self._stored(ticker, interval, start, end)
            self._save_in_background(ticker, interval, candles, provider.name)
            return _merge(stored, candles, provider.name)

        logger.info(
            f"History for {symbol} {interval} degraded to stored data (coverage {coverage:.2f})",
            extra={"symbol": symbol},
        )
        return await self._stored(ticker, interval, start, end)

    async def _fetch(
        self,
        provider: ProviderClient,
        symbol: str,
        start: datetime,
        end: datetime,
        interval: str,
    ) -> list[Candle]:
        try:
            return await provider.get_history(symbol, start, end, interval)
        except ProviderError as e:
            logger.warning(f"History for {symbol} via {provider.name} failed: {e.message}", extra={"symbol": symbol})
        except Exception as e:
            logger.warning(f"History for {symbol} via {provider.name} raised {type(e).__name__}: {e}", extra={"symbol": symbol})
        return []

    async def _sync(
        self,
        ticker: Ticker,
        provider: ProviderClient,
        start: datetime,
        end: datetime,
        interval: str,
    ) -> int:
        candles = await self._fetch(provider, ticker.symbol, start, end, interval)
        if not candles:
            return 0
        try:
            return await candles_repo.save_candles(
                ticker.id, interval, _rows(candles), source=f"{provider.name}_history"
            )
        except PersistenceFailure as e:
            logger.warning(f"Persisting history for {ticker.symbol} failed: {e.message}", extra={"symbol": ticker.symbol})
            return 0

    def _save_in_background(self, ticker: Ticker, interval: str, candles: list[Candle], provider: str) -> None:
        async def _save() -> None:
            try:
                await candles_repo.save_candles(ticker.id, interval, _rows(candles), source=f"{provider}_history")
            except PersistenceFailure as e:
                logger.warning(f"Background history save for {ticker.symbol} failed: {e.message}")

        task = asyncio.create_task(_save())
        self._background.add(task)
        task.add_done_callback(self._background.discard)


def _merge(stored: list[CandleOut], fetched: Sequence[Candle], source: str) -> list[CandleOut]:
    """Stored candles overlaid with freshly fetched ones, oldest first."""
    by_ts = {safe_datetime(c.ts): c for c in stored}
    for candle in fetched:
        ts = safe_datetime(candle.ts)
        if ts is None or candle.close is None:
            continue
        by_ts[ts] = CandleOut(source=f"{source}_history", **candle.to_row())
    return [by_ts[ts] for ts in sorted(by_ts)]


_history_service: HistoryService | None = None


def get_history_service() -> HistoryService:
    """Get singleton HistoryService instance."""
    global _history_service
    if _history_service is None:
        from app.services.registry import get_request_coalescer
        from app.services.tickers import get_ticker_service

        _history_service = HistoryService(
            tickers=get_ticker_service(),
            coalescer=get_request_coalescer(),
        )
    return _history_service
