"""
Yahoo Finance provider (yfinance) - secondary and deep-history source.

This module centralizes ALL yfinance calls to:
1. Enforce rate limiting consistently via a single entry point
2. Share one ``Ticker.info`` payload between quote, profile and financials
   (short in-memory cache) so one snapshot refresh costs one Yahoo call
3. Keep blocking SDK and pandas work off the event loop

Architecture:
- Single ThreadPoolExecutor for all blocking yfinance calls
- Central rate limiter from app.core.rate_limiter
- Per-provider circuit breaker from the resilience module

Usage:
    from app.services.data_providers import get_yfinance_service

    yahoo = get_yfinance_service()
    quote = await yahoo.get_quote("NVO.CO")
    candles = await yahoo.get_history("AAPL", start, end, interval="1d")
"""

from __future__ import annotations

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional

import pandas as pd
import yfinance as yf

from app.core.data_helpers import safe_date, safe_datetime, safe_float, safe_int
from app.core.exceptions import ProviderError, ProviderUnavailable
from app.core.logging import get_logger
from app.core.rate_limiter import get_yfinance_limiter

from .base import AnalystRatingItem, Candle, Financials, NewsItem, Profile, Quote
from .resilience import CircuitBreaker, CircuitOpenError

logger = get_logger("data_providers.yfinance")

PROVIDER_NAME = "yahoo"

# Single shared executor for ALL yfinance calls
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="yfinance")

# In-memory info cache - one Yahoo call serves quote, profile and financials
_MEMORY_CACHE: dict[str, tuple[float, Any]] = {}
MEMORY_CACHE_TTL = 60

SUPPORTED_INTERVALS = ("1m", "2m", "5m", "15m", "30m", "60m", "90m", "1h", "1d", "1wk", "1mo")

MAX_RATINGS = 100

# Yahoo recommendationKey -> consensus label
RECOMMENDATIONS = {
    "strong_buy": "Strong Buy",
    "buy": "Buy",
    "hold": "Hold",
    "underperform": "Sell",
    "sell": "Sell",
    "strong_sell": "Strong Sell",
}

# info key -> fundamentals column
INFO_FIELDS = {
    "market_cap": "marketCap",
    "pe_ratio": "trailingPE",
    "forward_pe": "forwardPE",
    "peg_ratio": "trailingPegRatio",
    "price_to_book": "priceToBook",
    "price_to_sales": "priceToSalesTrailing12Months",
    "eps_ttm": "trailingEps",
    "revenue_ttm": "totalRevenue",
    "revenue_per_share": "revenuePerShare",
    "free_cash_flow": "freeCashflow",
    "revenue_growth": "revenueGrowth",
    "earnings_growth": "earningsGrowth",
    "gross_margin": "grossMargins",
    "operating_margin": "operatingMargins",
    "profit_margin": "profitMargins",
    "return_on_equity": "returnOnEquity",
    "return_on_assets": "returnOnAssets",
    "debt_to_equity": "debtToEquity",
    "current_ratio": "currentRatio",
    "quick_ratio": "quickRatio",
    "total_cash": "totalCash",
    "total_debt": "totalDebt",
    "shares_outstanding": "sharesOutstanding",
    "beta": "beta",
    "fifty_two_week_high": "fiftyTwoWeekHigh",
    "fifty_two_week_low": "fiftyTwoWeekLow",
    "analyst_target_mean": "targetMeanPrice",
    "analyst_target_low": "targetLowPrice",
    "analyst_target_high": "targetHighPrice",
}


def _is_etf_or_index(symbol: str, quote_type: Optional[str] = None) -> bool:
    """Check if symbol is ETF, index, or fund."""
    if symbol.startswith("^"):
        return True
    if quote_type:
        return quote_type.upper() in ("ETF", "INDEX", "MUTUALFUND", "TRUST")
    return False


def _current_price(info: dict[str, Any]) -> Optional[float]:
    return safe_float(
        info.get("regularMarketPrice")
        or info.get("currentPrice")
        or info.get("previousClose")
    )


def parse_financials(info: dict[str, Any]) -> dict[str, Any]:
    """Map a ``Ticker.info`` payload onto fundamentals columns."""
    quote_type = (info.get("quoteType") or "EQUITY").upper()
    is_etf = _is_etf_or_index(info.get("symbol") or "", quote_type)

    values: dict[str, Any] = {}
    for column, key in INFO_FIELDS.items():
        values[column] = safe_float(info.get(key))

    if is_etf:
        values["market_cap"] = safe_float(info.get("totalAssets"))
        for column in ("pe_ratio", "forward_pe", "peg_ratio", "revenue_ttm", "profit_margin"):
            values[column] = None

    # Yahoo reports dividend yield in percent
    raw_div_yield = safe_float(info.get("dividendYield"))
    values["dividend_yield"] = raw_div_yield / 100 if raw_div_yield else None

    values["current_price"] = _current_price(info)
    values["consensus_rating"] = RECOMMENDATIONS.get((info.get("recommendationKey") or "").lower())
    values["num_analyst_opinions"] = safe_int(info.get("numberOfAnalystOpinions"))
    return values


def frame_to_candles(df: Optional[pd.DataFrame]) -> list[Candle]:
    """Convert a yfinance OHLCV frame into candles (rows without close dropped)."""
    if df is None or df.empty:
        return []

    candles = []
    for index, row in df.iterrows():
        close = safe_float(row.get("Close"))
        ts = safe_datetime(index)
        if close is None or ts is None:
            continue
        candles.append(
            Candle(
                ts=ts,
                open=safe_float(row.get("Open")),
                high=safe_float(row.get("High")),
                low=safe_float(row.get("Low")),
                close=close,
                volume=safe_float(row.get("Volume")),
            )
        )
    return candles


def parse_news(raw: list[dict[str, Any]], start: date, end: date) -> list[NewsItem]:
    """Normalize ``Ticker.news`` (old flat and new ``content`` shapes)."""
    items: list[NewsItem] = []
    for entry in raw or []:
        content = entry.get("content") or entry
        external_id = entry.get("id") or entry.get("uuid") or content.get("id")
        headline = content.get("title")
        published = safe_datetime(
            content.get("pubDate") or content.get("displayTime") or entry.get("providerPublishTime")
        )
        if not external_id or not headline or published is None:
            continue
        if not (start <= published.date() <= end):
            continue

        provider = content.get("provider") or {}
        url = (content.get("canonicalUrl") or {}).get("url") or entry.get("link")
        thumbnail = content.get("thumbnail") or {}
        resolutions = thumbnail.get("resolutions") or []
        items.append(
            NewsItem(
                external_id=str(external_id),
                published_at=published,
                headline=headline,
                summary=content.get("summary") or None,
                source=provider.get("displayName") or entry.get("publisher"),
                url=url,
                image=thumbnail.get("originalUrl") or (resolutions[0].get("url") if resolutions else None),
            )
        )
    return items


def parse_upgrades_downgrades(df: Optional[pd.DataFrame]) -> list[AnalystRatingItem]:
    """Convert ``Ticker.upgrades_downgrades`` into rating items, newest first."""
    if df is None or df.empty:
        return []

    ratings = []
    for index, row in df.sort_index(ascending=False).head(MAX_RATINGS).iterrows():
        ratings.append(
            AnalystRatingItem(
                firm=row.get("Firm"),
                rating=row.get("ToGrade") or None,
                rating_date=safe_date(index),
                price_target=safe_float(row.get("currentPriceTarget")),
            )
        )
    return ratings


class YFinanceService:
    """
    Yahoo Finance provider implementing ``ProviderClient``.

    Every public method runs its blocking counterpart in the shared executor
    under the yfinance rate limiter and circuit breaker.
    """

    name = PROVIDER_NAME

    def __init__(self):
        self._limiter = get_yfinance_limiter()
        self._breaker = CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            name=PROVIDER_NAME,
        )

    # =========================================================================
    # Memory Cache Helpers
    # =========================================================================

    def _get_from_memory(self, key: str) -> Optional[Any]:
        if key in _MEMORY_CACHE:
            ts, data = _MEMORY_CACHE[key]
            if time.time() - ts < MEMORY_CACHE_TTL:
                return data
            del _MEMORY_CACHE[key]
        return None

    def _set_in_memory(self, key: str, data: Any) -> None:
        _MEMORY_CACHE[key] = (time.time(), data)
        if len(_MEMORY_CACHE) > 500:
            now = time.time()
            expired = [k for k, (ts, _) in _MEMORY_CACHE.items() if now - ts > MEMORY_CACHE_TTL]
            for k in expired:
                del _MEMORY_CACHE[k]

    # =========================================================================
    # Core yfinance API Calls (Sync, run in thread pool)
    # =========================================================================

    def _acquire(self, what: str) -> None:
        if not self._limiter.acquire_sync():
            raise ProviderUnavailable(PROVIDER_NAME, f"Rate limit timeout for {what}")

    def _fetch_info_sync(self, symbol: str) -> Optional[dict[str, Any]]:
        """Fetch ``Ticker.info`` (blocking). None when Yahoo does not know the symbol."""
        cache_key = f"info:{symbol}"
        cached = self._get_from_memory(cache_key)
        if cached is not None:
            return cached

        self._acquire(symbol)
        info = yf.Ticker(symbol).info or {}
        if not info or not (info.get("symbol") or info.get("shortName")):
            return None

        self._set_in_memory(cache_key, info)
        return info

    def _fetch_history_sync(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        interval: str,
    ) -> Optional[pd.DataFrame]:
        """Fetch price history (blocking)."""
        self._acquire(f"history {symbol}")
        df = yf.download(
            symbol,
            start=start,
            end=end,
            interval=interval,
            auto_adjust=True,
            progress=False,
            timeout=30,
        )
        if df is None or df.empty:
            return None

        # Handle MultiIndex columns (newer yfinance)
        if isinstance(df.columns, pd.MultiIndex):
            ticker_upper = symbol.upper()
            if ticker_upper in df.columns.get_level_values(1):
                df = df.xs(ticker_upper, axis=1, level=1)
            else:
                df.columns = df.columns.droplevel(1)
        return df

    def _fetch_news_sync(self, symbol: str) -> list[dict[str, Any]]:
        self._acquire(f"news {symbol}")
        return yf.Ticker(symbol).news or []

    def _fetch_upgrades_downgrades_sync(self, symbol: str) -> Optional[pd.DataFrame]:
        self._acquire(f"ratings {symbol}")
        return yf.Ticker(symbol).upgrades_downgrades

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking call in the executor under the circuit breaker."""
        loop = asyncio.get_running_loop()

        async def _call() -> Any:
            return await loop.run_in_executor(_executor, func, *args)

        try:
            return await self._breaker.call(_call)
        except CircuitOpenError as e:
            raise ProviderUnavailable(PROVIDER_NAME, str(e)) from e
        except ProviderError:
            raise
        except Exception as e:
            logger.warning(f"yfinance {func.__name__} failed for {args[0] if args else ''}: {e}")
            raise ProviderUnavailable(PROVIDER_NAME, f"yfinance call failed: {e}") from e

    # =========================================================================
    # ProviderClient
    # =========================================================================

    async def get_info(self, symbol: str) -> Optional[dict[str, Any]]:
        return await self._run(self._fetch_info_sync, symbol)

    async def get_quote(self, symbol: str) -> Optional[Quote]:
        info = await self.get_info(symbol)
        if not info:
            return None
        price = _current_price(info)
        if price is None:
            return None
        return Quote(
            price=price,
            change=safe_float(info.get("regularMarketChange")),
            percent_change=safe_float(info.get("regularMarketChangePercent")),
            high=safe_float(info.get("dayHigh") or info.get("regularMarketDayHigh")),
            low=safe_float(info.get("dayLow") or info.get("regularMarketDayLow")),
            open=safe_float(info.get("open") or info.get("regularMarketOpen")),
            previous_close=safe_float(info.get("previousClose")),
            volume=safe_float(info.get("volume") or info.get("regularMarketVolume")),
            timestamp=safe_datetime(info.get("regularMarketTime")),
        )

    async def get_profile(self, symbol: str) -> Optional[Profile]:
        info = await self.get_info(symbol)
        if not info:
            return None
        quote_type = (info.get("quoteType") or "EQUITY").upper()
        is_etf = _is_etf_or_index(symbol, quote_type)
        return Profile(
            name=info.get("shortName") or info.get("longName"),
            exchange=info.get("exchange"),
            currency=info.get("currency"),
            country=info.get("country"),
            sector=None if is_etf else info.get("sector"),
            industry=None if is_etf else info.get("industry"),
            web_url=info.get("website"),
            ipo_date=safe_date(info.get("firstTradeDateMilliseconds")),
            market_cap=safe_float(info.get("totalAssets") if is_etf else info.get("marketCap")),
            shares_outstanding=safe_float(info.get("sharesOutstanding")),
        )

    async def get_financials(self, symbol: str) -> Optional[Financials]:
        info = await self.get_info(symbol)
        if not info:
            return None
        return Financials(values=parse_financials(info))

    async def get_history(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        interval: str = "1d",
    ) -> list[Candle]:
        if interval not in SUPPORTED_INTERVALS:
            return []
        # yfinance treats ``end`` as exclusive
        df = await self._run(self._fetch_history_sync, symbol, start, end + timedelta(days=1), interval)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(_executor, frame_to_candles, df)

    async def get_news(self, symbol: str, start: date, end: date) -> list[NewsItem]:
        raw = await self._run(self._fetch_news_sync, symbol)
        return parse_news(raw, start, end)

    async def get_analyst_ratings(self, symbol: str) -> list[AnalystRatingItem]:
        df = await self._run(self._fetch_upgrades_downgrades_sync, symbol)
        return parse_upgrades_downgrades(df)

    def get_stats(self) -> dict[str, Any]:
        return {"circuit": self._breaker.get_stats(), "limiter": self._limiter.status()}


def clear_memory_cache() -> None:
    _MEMORY_CACHE.clear()


_instance: Optional[YFinanceService] = None


def get_yfinance_service() -> YFinanceService:
    """Get the singleton Yahoo Finance provider."""
    global _instance
    if _instance is None:
        _instance = YFinanceService()
    return _instance


__all__ = [
    "PROVIDER_NAME",
    "YFinanceService",
    "clear_memory_cache",
    "frame_to_candles",
    "get_yfinance_service",
    "parse_financials",
    "parse_news",
    "parse_upgrades_downgrades",
]

