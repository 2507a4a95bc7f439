"""
Finnhub REST client - primary provider for domestic symbols.

All calls go through one shared ``httpx.AsyncClient`` and are guarded by:
- the Finnhub token bucket from ``app.core.rate_limiter``
- a per-provider circuit breaker
- bounded retries on transport errors

Finnhub reports market capitalization and share counts in millions and
margins/yields in percent; both are normalized here so stored values use
the same units as the Yahoo provider.

Usage:
    from app.services.data_providers.finnhub_service import get_finnhub_service

    finnhub = get_finnhub_service()
    quote = await finnhub.get_quote("AAPL")
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

import httpx

from app.core.config import settings
from app.core.data_helpers import safe_date, safe_datetime, safe_float
from app.core.exceptions import ProviderRestricted, ProviderUnavailable
from app.core.logging import get_logger
from app.core.rate_limiter import get_finnhub_limiter

from .base import AnalystRatingItem, Candle, Financials, NewsItem, Profile, Quote
from .resilience import CircuitBreaker, CircuitOpenError, RetryExhaustedError, retry_async

logger = get_logger("data_providers.finnhub")

PROVIDER_NAME = "finnhub"

# Finnhub candle resolutions per interval; intervals missing here are unsupported
RESOLUTIONS = {
    "1m": "1",
    "5m": "5",
    "15m": "15",
    "30m": "30",
    "60m": "60",
    "1h": "60",
    "1d": "D",
    "1wk": "W",
    "1mo": "M",
}

MILLIONS = 1_000_000.0

# metric key(s) -> (fundamentals column, scale)
METRIC_MAP: dict[str, tuple[tuple[str, ...], float]] = {
    "fifty_two_week_high": (("52WeekHigh",), 1.0),
    "fifty_two_week_low": (("52WeekLow",), 1.0),
    "pe_ratio": (("peTTM", "peBasicExclExtraTTM", "peExclExtraTTM"), 1.0),
    "price_to_book": (("pbQuarterly", "pbAnnual"), 1.0),
    "price_to_sales": (("psTTM", "psAnnual"), 1.0),
    "eps_ttm": (("epsTTM", "epsBasicExclExtraItemsTTM"), 1.0),
    "revenue_per_share": (("revenuePerShareTTM",), 1.0),
    "profit_margin": (("netProfitMarginTTM",), 0.01),
    "gross_margin": (("grossMarginTTM",), 0.01),
    "operating_margin": (("operatingMarginTTM",), 0.01),
    "return_on_equity": (("roeTTM",), 0.01),
    "return_on_assets": (("roaTTM",), 0.01),
    "current_ratio": (("currentRatioQuarterly", "currentRatioAnnual"), 1.0),
    "quick_ratio": (("quickRatioQuarterly", "quickRatioAnnual"), 1.0),
    "debt_to_equity": (("totalDebt/totalEquityQuarterly", "totalDebt/totalEquityAnnual"), 1.0),
    "beta": (("beta",), 1.0),
    "dividend_yield": (("dividendYieldIndicatedAnnual",), 0.01),
    "revenue_growth": (("revenueGrowthTTMYoy",), 0.01),
    "earnings_growth": (("epsGrowthTTMYoy",), 0.01),
    "market_cap": (("marketCapitalization",), MILLIONS),
}


def _first_metric(metric: dict[str, Any], keys: tuple[str, ...]) -> float | None:
    for key in keys:
        value = safe_float(metric.get(key))
        if value is not None:
            return value
    return None


def parse_metrics(metric: dict[str, Any]) -> dict[str, float]:
    """Map a ``/stock/metric`` payload onto fundamentals columns."""
    values: dict[str, float] = {}
    for column, (keys, scale) in METRIC_MAP.items():
        value = _first_metric(metric, keys)
        if value is not None:
            values[column] = value * scale
    return values


class FinnhubService:
    """Async Finnhub client implementing ``ProviderClient``."""

    name = PROVIDER_NAME

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._api_key = settings.finnhub_api_key if api_key is None else api_key
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.finnhub_base_url,
            timeout=settings.external_api_timeout,
        )
        self._limiter = get_finnhub_limiter()
        self._breaker = CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60.0,
            name=PROVIDER_NAME,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # =========================================================================
    # Transport
    # =========================================================================

    async def _get(self, path: str, params: dict[str, Any], symbol: str | None = None) -> Any:
        if not self._api_key:
            raise ProviderUnavailable(PROVIDER_NAME, "Finnhub API key not configured")

        if not await self._limiter.acquire():
            raise ProviderUnavailable(PROVIDER_NAME, "Finnhub rate limit wait timed out")

        async def _send() -> httpx.Response:
            return await self._client.get(path, params={**params, "token": self._api_key})

        async def _guarded() -> httpx.Response:
            response = await retry_async(
                _send,
                max_attempts=max(1, settings.external_api_retries),
                base_delay=0.5,
                retry_on=(httpx.TransportError,),
            )
            if response.status_code in (401, 403, 429) or response.status_code >= 500:
                raise ProviderUnavailable(
                    PROVIDER_NAME,
                    f"Finnhub {path} returned HTTP {response.status_code}",
                    details={"status": response.status_code, "symbol": symbol},
                )
            return response

        try:
            response = await self._breaker.call(_guarded)
        except CircuitOpenError as e:
            raise ProviderUnavailable(PROVIDER_NAME, str(e)) from e
        except RetryExhaustedError as e:
            raise ProviderUnavailable(PROVIDER_NAME, f"Finnhub {path} unreachable: {e.last_error}") from e

        if response.status_code != 200:
            raise ProviderUnavailable(
                PROVIDER_NAME,
                f"Finnhub {path} returned HTTP {response.status_code}",
                details={"status": response.status_code, "symbol": symbol},
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailable(PROVIDER_NAME, f"Finnhub {path} returned invalid JSON") from e

    # =========================================================================
    # ProviderClient
    # =========================================================================

    async def get_quote(self, symbol: str) -> Quote | None:
        data = await self._get("/quote", {"symbol": symbol}, symbol)
        if not isinstance(data, dict) or data.get("c") is None:
            return None

        price = safe_float(data.get("c")) or 0.0
        if price == 0.0:
            # Zero quote is how Finnhub answers for symbols outside the plan
            raise ProviderRestricted(
                PROVIDER_NAME,
                f"Finnhub returned a zero quote for {symbol}",
                details={"symbol": symbol},
            )

        return Quote(
            price=price,
            change=safe_float(data.get("d")),
            percent_change=safe_float(data.get("dp")),
            high=safe_float(data.get("h")),
            low=safe_float(data.get("l")),
            open=safe_float(data.get("o")),
            previous_close=safe_float(data.get("pc")),
            timestamp=safe_datetime(data.get("t")) if data.get("t") else None,
        )

    async def get_profile(self, symbol: str) -> Profile | None:
        data = await self._get("/stock/profile2", {"symbol": symbol}, symbol)
        if not isinstance(data, dict) or not data:
            return None

        market_cap = safe_float(data.get("marketCapitalization"))
        shares = safe_float(data.get("shareOutstanding"))
        return Profile(
            name=data.get("name") or None,
            exchange=data.get("exchange") or None,
            currency=data.get("currency") or None,
            country=data.get("country") or None,
            industry=data.get("finnhubIndustry") or None,
            logo_url=data.get("logo") or None,
            web_url=data.get("weburl") or None,
            ipo_date=safe_date(data.get("ipo")),
            market_cap=market_cap * MILLIONS if market_cap else None,
            shares_outstanding=shares * MILLIONS if shares else None,
        )

    async def get_financials(self, symbol: str) -> Financials | None:
        data = await self._get("/stock/metric", {"symbol": symbol, "metric": "all"}, symbol)
        metric = (data or {}).get("metric") if isinstance(data, dict) else None
        if not metric:
            return None
        return Financials(values=parse_metrics(metric))

    async def get_history(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        interval: str = "1d",
    ) -> list[Candle]:
        resolution = RESOLUTIONS.get(interval)
        if resolution is None:
            return []

        data = await self._get(
            "/stock/candle",
            {
                "symbol": symbol,
                "resolution": resolution,
                "from": int(start.timestamp()),
                "to": int(end.timestamp()),
            },
            symbol,
        )
        if not isinstance(data, dict) or data.get("s") != "ok":
            return []

        candles = []
        for i, ts in enumerate(data.get("t") or []):
            candles.append(
                Candle(
                    ts=safe_datetime(ts),
                    open=safe_float(_at(data.get("o"), i)),
                    high=safe_float(_at(data.get("h"), i)),
                    low=safe_float(_at(data.get("l"), i)),
                    close=safe_float(_at(data.get("c"), i)),
                    volume=safe_float(_at(data.get("v"), i)),
                )
            )
        return candles

    async def get_news(self, symbol: str, start: date, end: date) -> list[NewsItem]:
        data = await self._get(
            "/company-news",
            {"symbol": symbol, "from": start.isoformat(), "to": end.isoformat()},
            symbol,
        )
        items: list[NewsItem] = []
        for row in data or []:
            published = safe_datetime(row.get("datetime"))
            if row.get("id") is None or not row.get("headline") or published is None:
                continue
            items.append(
                NewsItem(
                    external_id=str(row["id"]),
                    published_at=published,
                    headline=row["headline"],
                    summary=row.get("summary") or None,
                    source=row.get("source") or None,
                    url=row.get("url") or None,
                    image=row.get("image") or None,
                    related=row.get("related") or None,
                )
            )
        return items

    async def get_analyst_ratings(self, symbol: str) -> list[AnalystRatingItem]:
        # Upgrade/downgrade history is a premium endpoint
        return []

    def get_stats(self) -> dict[str, Any]:
        return {"circuit": self._breaker.get_stats(), "limiter": self._limiter.status()}


def _at(values: list[Any] | None, index: int) -> Any:
    if not values or index >= len(values):
        return None
    return values[index]


_instance: FinnhubService | None = None


def get_finnhub_service() -> FinnhubService:
    """Get the singleton Finnhub client."""
    global _instance
    if _instance is None:
        _instance = FinnhubService()
    return _instance


async def close_finnhub_service() -> None:
    global _instance
    if _instance is not None:
        await _instance.close()
        _instance = None
