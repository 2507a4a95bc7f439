"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator, Generator, Iterable, Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from app.core.exceptions import ProviderUnavailable
from app.services.data_providers.base import (
    AnalystRatingItem,
    Candle,
    Financials,
    NewsItem,
    Profile,
    Quote,
)
from app.services.data_providers.fallback import ProviderChain, set_provider_chain


# =============================================================================
# FAKE PROVIDERS
# =============================================================================


class FakeProvider:
    """In-memory provider client.

    Operations named in ``fail`` raise ``ProviderUnavailable``; every call is
    counted in ``calls`` by operation name.
    """

    def __init__(
        self,
        name: str,
        *,
        quote: Optional[Quote] = None,
        profile: Optional[Profile] = None,
        financials: Optional[Financials] = None,
        candles: Iterable[Candle] = (),
        news: Iterable[NewsItem] = (),
        ratings: Iterable[AnalystRatingItem] = (),
        fail: Iterable[str] = (),
    ):
        self.name = name
        self.quote = quote
        self.profile = profile
        self.financials = financials
        self.candles = list(candles)
        self.news = list(news)
        self.ratings = list(ratings)
        self.fail = set(fail)
        self.calls: dict[str, int] = defaultdict(int)

    def _call(self, op: str) -> None:
        self.calls[op] += 1
        if op in self.fail:
            raise ProviderUnavailable(self.name, f"{op} down")

    async def get_quote(self, symbol: str) -> Optional[Quote]:
        self._call("quote")
        return self.quote

    async def get_profile(self, symbol: str) -> Optional[Profile]:
        self._call("profile")
        return self.profile

    async def get_financials(self, symbol: str) -> Optional[Financials]:
        self._call("financials")
        return self.financials

    async def get_history(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        interval: str = "1d",
    ) -> list[Candle]:
        self._call("history")
        return [c for c in self.candles if start <= c.ts <= end]

    async def get_news(self, symbol: str, start: date, end: date) -> list[NewsItem]:
        self._call("news")
        return [n for n in self.news if start <= n.published_at.date() <= end]

    async def get_analyst_ratings(self, symbol: str) -> list[AnalystRatingItem]:
        self._call("ratings")
        return list(self.ratings)


def weekday_candles(start: date, end: date, close: float = 100.0) -> list[Candle]:
    """One daily candle at UTC midnight for every weekday in [start, end]."""
    candles = []
    day = start
    while day <= end:
        if day.weekday() < 5:
            ts = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
            candles.append(Candle(ts=ts, open=close, high=close + 1, low=close - 1, close=close, volume=1000.0))
        day += timedelta(days=1)
    return candles


@pytest.fixture
def fake_provider():
    """The FakeProvider class, for tests that build their own chain."""
    return FakeProvider


@pytest.fixture
def make_candles():
    return weekday_candles


@pytest.fixture
def apple_profile() -> Profile:
    return Profile(
        name="Apple Inc",
        exchange="NASDAQ",
        currency="USD",
        country="US",
        sector="Technology",
        industry="Consumer Electronics",
    )


@pytest.fixture
def primary(apple_profile: Profile) -> FakeProvider:
    return FakeProvider(
        "finnhub",
        quote=Quote(price=190.5, change=1.5, percent_change=0.79, high=191.0, low=188.0, open=189.0, previous_close=189.0),
        profile=apple_profile,
        financials=Financials(values={"pe_ratio": 29.5, "market_cap": 2.9e12, "fifty_two_week_high": 199.6, "fifty_two_week_low": 164.1}),
    )


@pytest.fixture
def secondary() -> FakeProvider:
    return FakeProvider(
        "yahoo",
        quote=Quote(price=190.0),
        profile=Profile(name="Apple Inc.", exchange="NMS", logo_url="https://logo.example/aapl.png"),
        financials=Financials(values={"pe_ratio": 30.1, "beta": 1.28, "dividend_yield": 0.005}),
    )


@pytest.fixture
def chain(primary: FakeProvider, secondary: FakeProvider) -> ProviderChain:
    return ProviderChain(primary=primary, secondary=secondary)


# =============================================================================
# DATABASE
# =============================================================================


@pytest_asyncio.fixture
async def db(tmp_path) -> AsyncGenerator:
    """Fresh SQLite database with the full schema, one per test."""
    from app.database.connection import close_database, get_engine, init_database
    from app.database.orm import Base

    await close_database()
    await init_database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    engine = await get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await close_database()


@pytest_asyncio.fixture
async def add_rows(db):
    """Persist ORM rows and return them with primary keys populated."""
    from app.database.connection import get_session

    async def _add(*rows):
        async with get_session() as session:
            session.add_all(rows)
            await session.commit()
        return rows[0] if len(rows) == 1 else rows

    return _add


# =============================================================================
# SINGLETONS
# =============================================================================


@pytest.fixture(autouse=True)
def reset_singletons(monkeypatch) -> Generator:
    """Every test starts without cached services, chains or coalescers."""
    from app.services import analyzer, history, news, snapshot, tickers, verdict
    from app.services.data_providers.yfinance_service import clear_memory_cache
    from app.services.registry import reset_request_coalescer

    for module, attr in (
        (analyzer, "_analyzer_service"),
        (history, "_history_service"),
        (news, "_news_service"),
        (snapshot, "_snapshot_service"),
        (tickers, "_ticker_service"),
        (verdict, "_verdict_service"),
    ):
        monkeypatch.setattr(module, attr, None)

    set_provider_chain(None)
    reset_request_coalescer()
    clear_memory_cache()
    yield
    set_provider_chain(None)
    reset_request_coalescer()


# =============================================================================
# API CLIENT
# =============================================================================


@pytest.fixture
def api_app():
    from app.api.app import create_api_app

    app = create_api_app()
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(api_app) -> Generator[TestClient, None, None]:
    """Synchronous test client over the API app (no lifespan)."""
    yield TestClient(api_app)
