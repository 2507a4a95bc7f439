"""
Analyzer - ranked, filtered and paginated ticker universe.

The verdict expressions from :mod:`app.scoring.verdict` are compiled to SQL
and evaluated inside the query, so filtering and sorting on score, rating and
upside happen before pagination and agree with per-ticker verdicts.

Only visible tickers with at least one risk analysis are listed.
"""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import aliased

from app.cache import Cache, hash_key
from app.core.config import settings
from app.core.exceptions import BadRequestError
from app.core.logging import get_logger
from app.database.connection import get_session
from app.database.orm import Fundamentals, PriceCandle, RiskAnalysis, RiskScenario, Ticker
from app.schemas.market_data import AnalyzerItem, AnalyzerMeta, AnalyzerResponse
from app.scoring import compile_expr, ranking_expressions
from app.scoring.verdict import FALLBACK_RATING, RATING_TIERS, SPECULATIVE_RATING


logger = get_logger("services.analyzer")

SORT_FIELDS = (
    "ai_score",
    "upside",
    "overall_score",
    "financial_risk",
    "market_cap",
    "pe_ratio",
    "price",
    "symbol",
    "name",
    "updated_at",
)
DEFAULT_SORT = "market_cap"
MAX_LIMIT = 100

# Financial risk bands: (lower exclusive, upper inclusive)
RISK_BANDS = {
    "low": (None, 3.5),
    "medium": (3.5, 6.5),
    "high": (6.5, None),
}

_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


def _rating_lookup() -> dict[str, str]:
    lookup: dict[str, str] = {}
    for _, rating, variant in RATING_TIERS:
        lookup[rating.lower()] = rating
        lookup[variant.lower()] = rating
    for rating, variant in (SPECULATIVE_RATING, FALLBACK_RATING):
        lookup[rating.lower()] = rating
        lookup[variant.lower()] = rating
    return lookup


RATING_LOOKUP = _rating_lookup()


# =============================================================================
# Query parameters
# =============================================================================


def parse_min(value: Any, name: str) -> Optional[float]:
    """Parse ``20``, ``"20"``, ``"> 20%"`` or ``">7.5"`` into a float."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = _NUMBER.search(str(value))
    if not match:
        raise BadRequestError(message=f"Invalid {name} filter: {value!r}")
    return float(match.group())


def parse_risk_band(label: str) -> str:
    """``"Low"`` / ``"Low (0-3.5)"`` -> ``"low"``."""
    key = label.strip().split(" ")[0].lower()
    if key not in RISK_BANDS:
        raise BadRequestError(
            message=f"Invalid risk filter: {label!r}",
            details={"allowed": ["Low", "Medium", "High"]},
        )
    return key


def parse_rating(label: str) -> str:
    rating = RATING_LOOKUP.get(label.strip().lower())
    if rating is None:
        raise BadRequestError(message=f"Invalid aiRating filter: {label!r}")
    return rating


def _split(values: Optional[Iterable[str]]) -> list[str]:
    """Multi-value params arrive repeated or comma separated."""
    out: list[str] = []
    for value in values or []:
        out.extend(part.strip() for part in str(value).split(",") if part.strip())
    return out


@dataclass
class AnalyzerQuery:
    page: int = 1
    limit: int = 50
    sort_by: str = DEFAULT_SORT
    sort_dir: str = "DESC"
    search: Optional[str] = None
    risk: list[str] = field(default_factory=list)
    ai_rating: list[str] = field(default_factory=list)
    upside: Optional[float] = None
    overall_score: Optional[float] = None
    min_market_cap: Optional[float] = None
    profitable_only: bool = False
    sector: list[str] = field(default_factory=list)

    @classmethod
    def from_params(
        cls,
        page: int = 1,
        limit: int = 50,
        sort_by: Optional[str] = None,
        sort_dir: Optional[str] = None,
        search: Optional[str] = None,
        risk: Optional[Iterable[str]] = None,
        ai_rating: Optional[Iterable[str]] = None,
        upside: Any = None,
        overall_score: Any = None,
        min_market_cap: Any = None,
        profitable_only: bool = False,
        sector: Optional[Iterable[str]] = None,
    ) -> "AnalyzerQuery":
        """
        Validate raw query parameters.

        Raises:
            BadRequestError: Unknown sort field, direction, risk band or rating
        """
        if page < 1:
            raise BadRequestError(message="page must be >= 1")
        if not 1 <= limit <= MAX_LIMIT:
            raise BadRequestError(message=f"limit must be between 1 and {MAX_LIMIT}")

        sort_by = sort_by or DEFAULT_SORT
        if sort_by not in SORT_FIELDS:
            raise BadRequestError(
                message=f"Invalid sortBy: {sort_by!r}",
                details={"allowed": list(SORT_FIELDS)},
            )
        sort_dir = (sort_dir or "DESC").upper()
        if sort_dir not in ("ASC", "DESC"):
            raise BadRequestError(message=f"Invalid sortDir: {sort_dir!r}")

        return cls(
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_dir=sort_dir,
            search=(search or "").strip() or None,
            risk=sorted({parse_risk_band(r) for r in _split(risk)}),
            ai_rating=sorted({parse_rating(r) for r in _split(ai_rating)}),
            upside=parse_min(upside, "upside"),
            overall_score=parse_min(overall_score, "overallScore"),
            min_market_cap=parse_min(min_market_cap, "minMarketCap"),
            profitable_only=bool(profitable_only),
            sector=sorted(set(_split(sector))),
        )

    def cache_key(self) -> str:
        return hash_key(asdict(self))


# =============================================================================
# SQL
# =============================================================================


def ranked_subquery():
    """One row per listed ticker with raw inputs plus compiled verdict columns."""
    latest_analysis = (
        select(
            RiskAnalysis.id,
            RiskAnalysis.ticker_id,
            RiskAnalysis.overall_score,
            RiskAnalysis.financial_risk,
            RiskAnalysis.upside_percent,
            func.row_number()
            .over(
                partition_by=RiskAnalysis.ticker_id,
                order_by=(RiskAnalysis.created_at.desc(), RiskAnalysis.id.desc()),
            )
            .label("rn"),
        )
        .subquery("latest_analysis")
    )
    latest_candle = (
        select(
            PriceCandle.ticker_id,
            PriceCandle.close,
            func.row_number()
            .over(partition_by=PriceCandle.ticker_id, order_by=PriceCandle.ts.desc())
            .label("rn"),
        )
        .where(PriceCandle.timeframe == "1d")
        .subquery("latest_candle")
    )
    base = aliased(RiskScenario, name="base_scenario")
    bear = aliased(RiskScenario, name="bear_scenario")

    inputs = (
        select(
            Ticker.id.label("ticker_id"),
            Ticker.symbol.label("symbol"),
            Ticker.name.label("name"),
            Ticker.sector.label("sector"),
            Ticker.industry.label("industry"),
            Ticker.logo_url.label("logo_url"),
            Ticker.updated_at.label("updated_at"),
            Ticker.news_sentiment.label("news_sentiment"),
            Ticker.news_impact_score.label("news_impact"),
            func.coalesce(Fundamentals.market_cap, Ticker.market_cap).label("market_cap"),
            Fundamentals.pe_ratio.label("pe_ratio"),
            Fundamentals.revenue_ttm.label("revenue_ttm"),
            Fundamentals.profit_margin.label("profit_margin"),
            Fundamentals.consensus_rating.label("consensus"),
            Fundamentals.fifty_two_week_high.label("high_52w"),
            Fundamentals.fifty_two_week_low.label("low_52w"),
            func.coalesce(latest_candle.c.close, Fundamentals.current_price).label("price"),
            latest_analysis.c.financial_risk.label("risk"),
            latest_analysis.c.overall_score.label("overall_score"),
            latest_analysis.c.upside_percent.label("stored_upside"),
            base.price_mid.label("base_price"),
            bear.price_mid.label("bear_price"),
        )
        .select_from(Ticker)
        .join(
            latest_analysis,
            and_(latest_analysis.c.ticker_id == Ticker.id, latest_analysis.c.rn == 1),
        )
        .outerjoin(Fundamentals, Fundamentals.ticker_id == Ticker.id)
        .outerjoin(
            latest_candle,
            and_(latest_candle.c.ticker_id == Ticker.id, latest_candle.c.rn == 1),
        )
        .outerjoin(base, and_(base.analysis_id == latest_analysis.c.id, base.scenario_type == "base"))
        .outerjoin(bear, and_(bear.analysis_id == latest_analysis.c.id, bear.scenario_type == "bear"))
        .where(Ticker.is_hidden.is_(False))
        .subquery("verdict_inputs")
    )

    compiled = {name: compile_expr(expr, inputs.c) for name, expr in ranking_expressions().items()}

    return (
        select(
            inputs.c.ticker_id,
            inputs.c.symbol,
            inputs.c.name,
            inputs.c.sector,
            inputs.c.industry,
            inputs.c.logo_url,
            inputs.c.price,
            inputs.c.market_cap,
            inputs.c.pe_ratio,
            inputs.c.profit_margin,
            inputs.c.overall_score,
            inputs.c.risk.label("financial_risk"),
            inputs.c.consensus,
            inputs.c.updated_at,
            compiled["upside"].label("upside"),
            compiled["downside"].label("downside"),
            compiled["score"].label("ai_score"),
            compiled["rating"].label("ai_rating"),
            compiled["variant"].label("ai_variant"),
        )
        .subquery("ranked")
    )


def _filters(ranked, query: AnalyzerQuery) -> list:
    c = ranked.c
    conditions = []

    if query.search:
        needle = query.search.lower()
        conditions.append(
            or_(
                func.lower(c.symbol).contains(needle, autoescape=True),
                func.lower(c.name).contains(needle, autoescape=True),
            )
        )

    if query.risk:
        bands = []
        for key in query.risk:
            low, high = RISK_BANDS[key]
            band = [c.financial_risk.is_not(None)]
            if low is not None:
                band.append(c.financial_risk > low)
            if high is not None:
                band.append(c.financial_risk <= high)
            bands.append(and_(*band))
        conditions.append(or_(*bands))

    if query.ai_rating:
        conditions.append(c.ai_rating.in_(query.ai_rating))
    if query.upside is not None:
        conditions.append(c.upside >= query.upside)
    if query.overall_score is not None:
        conditions.append(c.overall_score >= query.overall_score)
    if query.min_market_cap is not None:
        conditions.append(c.market_cap >= query.min_market_cap)
    if query.profitable_only:
        conditions.append(c.profit_margin > 0)
    if query.sector:
        conditions.append(c.sector.in_(query.sector))

    return conditions


def _ordering(ranked, query: AnalyzerQuery) -> list:
    column = ranked.c[query.sort_by]
    primary = column.asc() if query.sort_dir == "ASC" else column.desc()
    return [primary.nullslast(), ranked.c.symbol.asc()]


# =============================================================================
# Service
# =============================================================================


class AnalyzerService:
    def __init__(self, cache: Cache | None = None, use_cache: bool = True):
        self._use_cache = use_cache
        self._cache = cache or Cache(prefix="analyzer", default_ttl=settings.analyzer_cache_ttl)

    async def search(self, query: AnalyzerQuery) -> AnalyzerResponse:
        """Ranked page for ``query``, served from Valkey when cached."""
        key = query.cache_key()
        if self._use_cache:
            cached = await self._cache.get(key)
            if cached is not None:
                return AnalyzerResponse.model_validate(cached)

        response = await self._query(query)

        if self._use_cache:
            await self._cache.set(key, response.model_dump(mode="json"))
        return response

    async def _query(self, query: AnalyzerQuery) -> AnalyzerResponse:
        ranked = ranked_subquery()
        conditions = _filters(ranked, query)

        count_stmt = select(func.count()).select_from(ranked)
        page_stmt = select(ranked)
        if conditions:
            count_stmt = count_stmt.where(*conditions)
            page_stmt = page_stmt.where(*conditions)
        page_stmt = (
            page_stmt
            .order_by(*_ordering(ranked, query))
            .limit(query.limit)
            .offset((query.page - 1) * query.limit)
        )

        async with get_session() as session:
            total = (await session.execute(count_stmt)).scalar_one()
            rows = (await session.execute(page_stmt)).mappings().all()

        items = [AnalyzerItem.model_validate(dict(row)) for row in rows]
        logger.debug(f"Analyzer page {query.page}: {len(items)}/{total} rows (sort {query.sort_by} {query.sort_dir})")
        return AnalyzerResponse(
            items=items,
            meta=AnalyzerMeta(
                total=total,
                page=query.page,
                limit=query.limit,
                total_pages=math.ceil(total / query.limit) if total else 0,
            ),
        )


_analyzer_service: AnalyzerService | None = None


def get_analyzer_service() -> AnalyzerService:
    """Get singleton AnalyzerService instance."""
    global _analyzer_service
    if _analyzer_service is None:
        _analyzer_service = AnalyzerService()
    return _analyzer_service
