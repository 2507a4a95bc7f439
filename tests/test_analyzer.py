"""Tests for the analyzer ranking query."""

from __future__ import annotations

from datetime import timedelta

import pytest
import pytest_asyncio

from app.core.data_helpers import utcnow
from app.core.exceptions import BadRequestError
from app.database.orm import Fundamentals, PriceCandle, RiskAnalysis, RiskScenario, Ticker
from app.services.analyzer import AnalyzerQuery, AnalyzerService, parse_min, parse_risk_band
from app.services.verdict import VerdictService


class FakeCache:
    def __init__(self):
        self.store: dict = {}
        self.gets = 0

    async def get(self, key):
        self.gets += 1
        return self.store.get(key)

    async def set(self, key, value, ttl=None):
        self.store[key] = value
        return True


def _analysis(ticker_id: int, risk: float, overall: float, base: float, bear: float) -> RiskAnalysis:
    return RiskAnalysis(
        ticker_id=ticker_id,
        financial_risk=risk,
        overall_score=overall,
        scenarios=[
            RiskScenario(scenario_type="base", price_mid=base),
            RiskScenario(scenario_type="bear", price_mid=bear),
        ],
    )


def _candle(ticker_id: int, close: float) -> PriceCandle:
    today = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    return PriceCandle(ticker_id=ticker_id, timeframe="1d", ts=today - timedelta(days=1), close=close)


@pytest_asyncio.fixture
async def universe(db, add_rows):
    aaa, bbb, ccc, ddd, eee = await add_rows(
        Ticker(symbol="AAA", name="Alpha Corp", sector="Technology"),
        Ticker(symbol="BBB", name="Beta Health", sector="Healthcare"),
        Ticker(symbol="CCC", name="Gamma Tech", sector="Technology"),
        Ticker(symbol="DDD", name="Hidden Co", sector="Technology", is_hidden=True),
        Ticker(symbol="EEE", name="Unanalyzed Inc", sector="Energy"),
    )
    await add_rows(
        Fundamentals(
            ticker_id=aaa.id, market_cap=3e12, pe_ratio=20.0, consensus_rating="Buy", revenue_ttm=1e9,
            fifty_two_week_high=160.0, fifty_two_week_low=70.0, profit_margin=0.2,
        ),
        Fundamentals(
            ticker_id=bbb.id, market_cap=1e11, pe_ratio=30.0, consensus_rating="Hold", revenue_ttm=1e8,
            fifty_two_week_high=120.0, fifty_two_week_low=90.0, profit_margin=-0.1,
        ),
        Fundamentals(ticker_id=ccc.id, market_cap=5e9),
        Fundamentals(ticker_id=ddd.id, market_cap=9e12),
        Fundamentals(ticker_id=eee.id, market_cap=8e12),
        _analysis(aaa.id, 2.0, 7.0, 150.0, 90.0),
        _analysis(bbb.id, 5.0, 5.0, 110.0, 95.0),
        _analysis(ccc.id, 9.5, 2.0, 105.0, 50.0),
        _analysis(ddd.id, 1.0, 9.0, 300.0, 200.0),
        *(_candle(t.id, 100.0) for t in (aaa, bbb, ccc, ddd, eee)),
    )
    return {"AAA": aaa, "BBB": bbb, "CCC": ccc}


async def _symbols(query: AnalyzerQuery) -> list[str]:
    response = await AnalyzerService(use_cache=False).search(query)
    return [item.symbol for item in response.items]


class TestAnalyzerSearch:
    """Tests for AnalyzerService.search()."""

    @pytest.mark.asyncio
    async def test_lists_visible_analyzed_tickers_by_market_cap(self, universe):
        response = await AnalyzerService(use_cache=False).search(AnalyzerQuery())

        assert [item.symbol for item in response.items] == ["AAA", "BBB", "CCC"]
        assert response.meta.total == 3
        assert response.meta.total_pages == 1

    @pytest.mark.asyncio
    async def test_verdict_columns(self, universe):
        response = await AnalyzerService(use_cache=False).search(AnalyzerQuery())
        by_symbol = {item.symbol: item for item in response.items}

        assert by_symbol["AAA"].ai_score == pytest.approx(87.0)
        assert by_symbol["AAA"].ai_rating == "Strong Buy"
        assert by_symbol["AAA"].upside == pytest.approx(50.0)
        assert by_symbol["BBB"].ai_rating == "Hold"
        assert by_symbol["CCC"].ai_rating == "Sell"

    @pytest.mark.asyncio
    async def test_scores_agree_with_verdict_service(self, universe):
        response = await AnalyzerService(use_cache=False).search(AnalyzerQuery())
        service = VerdictService()

        for item in response.items:
            verdict = (await service.get_verdict(item.symbol)).verdict
            assert item.ai_score == pytest.approx(verdict.score)
            assert item.ai_rating == verdict.rating
            assert item.ai_variant == verdict.variant

    @pytest.mark.asyncio
    async def test_sort_by_score_ascending(self, universe):
        query = AnalyzerQuery.from_params(sort_by="ai_score", sort_dir="asc")
        assert await _symbols(query) == ["CCC", "BBB", "AAA"]

    @pytest.mark.asyncio
    async def test_sort_by_upside(self, universe):
        query = AnalyzerQuery.from_params(sort_by="upside")
        assert await _symbols(query) == ["AAA", "BBB", "CCC"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "params, expected",
        [
            ({"risk": ["Low"]}, ["AAA"]),
            ({"risk": ["Low,Medium"]}, ["AAA", "BBB"]),
            ({"risk": ["high"]}, ["CCC"]),
            ({"upside": "> 20%"}, ["AAA"]),
            ({"overall_score": "5"}, ["AAA", "BBB"]),
            ({"min_market_cap": 1e11}, ["AAA", "BBB"]),
            ({"profitable_only": True}, ["AAA"]),
            ({"sector": ["Healthcare"]}, ["BBB"]),
            ({"search": "aa"}, ["AAA"]),
            ({"search": "tech"}, ["CCC"]),
            ({"ai_rating": ["sell"]}, ["CCC"]),
            ({"ai_rating": ["Strong Buy", "Hold"]}, ["AAA", "BBB"]),
        ],
    )
    async def test_filters(self, universe, params, expected):
        assert await _symbols(AnalyzerQuery.from_params(**params)) == expected

    @pytest.mark.asyncio
    async def test_pagination(self, universe):
        response = await AnalyzerService(use_cache=False).search(AnalyzerQuery.from_params(page=2, limit=2))

        assert [item.symbol for item in response.items] == ["CCC"]
        assert response.meta.total == 3
        assert response.meta.total_pages == 2

    @pytest.mark.asyncio
    async def test_empty_universe(self, db):
        response = await AnalyzerService(use_cache=False).search(AnalyzerQuery())
        assert response.items == []
        assert response.meta.total_pages == 0

    @pytest.mark.asyncio
    async def test_cached_page_is_reused(self, universe):
        cache = FakeCache()
        service = AnalyzerService(cache=cache)
        query = AnalyzerQuery()

        first = await service.search(query)
        assert query.cache_key() in cache.store

        cache.store[query.cache_key()]["meta"]["total"] = 99
        second = await service.search(query)

        assert second.meta.total == 99
        assert [i.symbol for i in second.items] == [i.symbol for i in first.items]


class TestAnalyzerQuery:
    """Tests for AnalyzerQuery.from_params()."""

    def test_defaults(self):
        query = AnalyzerQuery.from_params()
        assert query.sort_by == "market_cap"
        assert query.sort_dir == "DESC"

    @pytest.mark.parametrize(
        "params",
        [
            {"sort_by": "password"},
            {"sort_dir": "sideways"},
            {"risk": ["extreme"]},
            {"ai_rating": ["moonshot"]},
            {"upside": "lots"},
            {"page": 0},
            {"limit": 500},
        ],
    )
    def test_invalid_params(self, params):
        with pytest.raises(BadRequestError):
            AnalyzerQuery.from_params(**params)

    def test_rating_variant_maps_to_rating(self):
        query = AnalyzerQuery.from_params(ai_rating=["strong buy"])
        assert query.ai_rating == ["Strong Buy"]

    def test_equal_queries_share_cache_key(self):
        a = AnalyzerQuery.from_params(risk=["Low", "medium"], sector=["Tech"])
        b = AnalyzerQuery.from_params(risk=["Medium,low"], sector=["Tech"])
        assert a.cache_key() == b.cache_key()

    def test_parse_helpers(self):
        assert parse_min(">7.5", "overallScore") == 7.5
        assert parse_min(None, "upside") is None
        assert parse_risk_band("Medium (3.5-6.5)") == "medium"
