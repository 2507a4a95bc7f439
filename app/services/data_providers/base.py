"""
Provider client interface and normalized result types.

Every upstream data source implements :class:`ProviderClient`. Results are
plain dataclasses so the fallback chain, the snapshot assembler and the
repositories never deal with provider-specific payloads.

Conventions:
- Operations a provider does not support return ``None`` (or ``[]``).
- Network, auth and HTTP failures raise ``ProviderUnavailable``.
- Entitlement-limited answers raise ``ProviderRestricted`` (or surface as a
  zero-priced ``Quote`` the fallback predicate rejects).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Protocol, runtime_checkable


@dataclass
class Quote:
    price: float
    change: float | None = None
    percent_change: float | None = None
    high: float | None = None
    low: float | None = None
    open: float | None = None
    previous_close: float | None = None
    volume: float | None = None
    timestamp: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Profile:
    name: str | None = None
    exchange: str | None = None
    currency: str | None = None
    country: str | None = None
    sector: str | None = None
    industry: str | None = None
    logo_url: str | None = None
    web_url: str | None = None
    ipo_date: date | None = None
    market_cap: float | None = None
    shares_outstanding: float | None = None

    def is_empty(self) -> bool:
        return not self.name and not self.exchange

    def to_ticker_fields(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class Financials:
    """Fundamentals columns keyed by their ``fundamentals`` table names."""

    values: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str) -> Any:
        return self.values.get(key)

    def non_null(self) -> dict[str, Any]:
        return {k: v for k, v in self.values.items() if v is not None}


@dataclass
class Candle:
    ts: datetime
    open: float | None
    high: float | None
    low: float | None
    close: float | None
    volume: float | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "ts": self.ts,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass
class NewsItem:
    external_id: str
    published_at: datetime
    headline: str
    summary: str | None = None
    source: str | None = None
    url: str | None = None
    image: str | None = None
    related: str | None = None

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AnalystRatingItem:
    firm: str | None
    rating: str | None
    rating_date: Any
    price_target: float | None = None
    analyst_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@runtime_checkable
class ProviderClient(Protocol):
    """One upstream market data source."""

    name: str

    async def get_quote(self, symbol: str) -> Quote | None: ...

    async def get_profile(self, symbol: str) -> Profile | None: ...

    async def get_financials(self, symbol: str) -> Financials | None: ...

    async def get_history(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        interval: str = "1d",
    ) -> list[Candle]: ...

    async def get_news(self, symbol: str, start: date, end: date) -> list[NewsItem]: ...

    async def get_analyst_ratings(self, symbol: str) -> list[AnalystRatingItem]: ...
