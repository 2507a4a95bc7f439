"""Tests for the company news cache."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from app.core.exceptions import BadRequestError
from app.repositories import company_news_orm as news_repo
from app.repositories import tickers_orm as tickers_repo
from app.services.data_providers.base import NewsItem
from app.services.news import NewsService


def news_item(external_id: str, day: date, hour: int = 12) -> NewsItem:
    return NewsItem(
        external_id=external_id,
        published_at=datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc),
        headline=f"Headline {external_id}",
        source="Reuters",
        url=f"https://news.example/{external_id}",
    )


@pytest.fixture
def news_day() -> date:
    return datetime.now(timezone.utc).date() - timedelta(days=2)


class TestCompanyNews:
    """Tests for NewsService.get_company_news()."""

    @pytest.mark.asyncio
    async def test_fetches_caches_and_orders_newest_first(self, db, chain, primary, news_day):
        primary.news = [news_item("a", news_day, 9), news_item("b", news_day, 15), news_item("c", news_day - timedelta(days=1))]
        service = NewsService(chain=chain)

        items = await service.get_company_news("AAPL")

        assert [n.external_id for n in items] == ["b", "a", "c"]
        ticker = await tickers_repo.get_ticker("AAPL")
        assert await news_repo.count_news(ticker.id) == 3

    @pytest.mark.asyncio
    async def test_refetch_does_not_duplicate(self, db, chain, primary, news_day):
        primary.news = [news_item("a", news_day)]
        service = NewsService(chain=chain)

        await service.get_company_news("AAPL")
        await service.get_company_news("AAPL")

        ticker = await tickers_repo.get_ticker("AAPL")
        assert await news_repo.count_news(ticker.id) == 1

    @pytest.mark.asyncio
    async def test_provider_failure_serves_cache(self, db, chain, primary, secondary, news_day):
        primary.news = [news_item("a", news_day)]
        service = NewsService(chain=chain)
        await service.get_company_news("AAPL")

        primary.fail.add("news")
        secondary.fail.add("news")
        items = await service.get_company_news("AAPL")

        assert [n.external_id for n in items] == ["a"]

    @pytest.mark.asyncio
    async def test_falls_back_to_secondary(self, db, chain, secondary, news_day):
        secondary.news = [news_item("y1", news_day)]
        items = await NewsService(chain=chain).get_company_news("AAPL")
        assert [n.external_id for n in items] == ["y1"]

    @pytest.mark.asyncio
    async def test_explicit_window(self, db, chain, primary, news_day):
        primary.news = [news_item("in", news_day), news_item("out", news_day - timedelta(days=5))]
        items = await NewsService(chain=chain).get_company_news("AAPL", start=news_day, end=news_day)
        assert [n.external_id for n in items] == ["in"]

    @pytest.mark.asyncio
    async def test_start_after_end(self, db, chain, news_day):
        with pytest.raises(BadRequestError):
            await NewsService(chain=chain).get_company_news("AAPL", start=news_day, end=news_day - timedelta(days=1))
