"""Market data schemas (snapshot, history, news, analyzer).

Responses are serialized with camelCase aliases; constructors accept either
the field name or the alias.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.core.data_helpers import normalize_symbol
from app.core.exceptions import BadRequestError


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# =============================================================================
# Building blocks
# =============================================================================


class TickerInfo(CamelModel):
    id: int
    symbol: str
    name: Optional[str] = None
    exchange: Optional[str] = None
    currency: Optional[str] = None
    country: Optional[str] = None
    sector: Optional[str] = None
    industry: Optional[str] = None
    logo_url: Optional[str] = None
    web_url: Optional[str] = None
    ipo_date: Optional[date] = None
    market_cap: Optional[float] = None
    shares_outstanding: Optional[float] = None
    news_sentiment: Optional[str] = None
    news_impact_score: Optional[float] = None
    news_summary: Optional[str] = None
    is_hidden: bool = False


class CandleOut(CamelModel):
    ts: datetime
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: float
    volume: Optional[float] = None
    prev_close: Optional[float] = None
    source: Optional[str] = None


class QuoteOut(CamelModel):
    price: float
    change: Optional[float] = None
    percent_change: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    open: Optional[float] = None
    previous_close: Optional[float] = None
    volume: Optional[float] = None
    timestamp: Optional[datetime] = None


class FundamentalsOut(CamelModel):
    market_cap: Optional[float] = None
    pe_ratio: Optional[float] = None
    forward_pe: Optional[float] = None
    peg_ratio: Optional[float] = None
    price_to_book: Optional[float] = None
    price_to_sales: Optional[float] = None
    eps_ttm: Optional[float] = None
    revenue_ttm: Optional[float] = None
    revenue_per_share: Optional[float] = None
    free_cash_flow: Optional[float] = None
    revenue_growth: Optional[float] = None
    earnings_growth: Optional[float] = None
    dividend_yield: Optional[float] = None
    gross_margin: Optional[float] = None
    operating_margin: Optional[float] = None
    profit_margin: Optional[float] = None
    return_on_equity: Optional[float] = None
    return_on_assets: Optional[float] = None
    debt_to_equity: Optional[float] = None
    current_ratio: Optional[float] = None
    quick_ratio: Optional[float] = None
    total_cash: Optional[float] = None
    total_debt: Optional[float] = None
    shares_outstanding: Optional[float] = None
    beta: Optional[float] = None
    current_price: Optional[float] = None
    fifty_two_week_high: Optional[float] = None
    fifty_two_week_low: Optional[float] = None
    range_position: Optional[float] = None
    consensus_rating: Optional[str] = None
    consensus_derived: bool = False
    analyst_target_mean: Optional[float] = None
    analyst_target_low: Optional[float] = None
    analyst_target_high: Optional[float] = None
    num_analyst_opinions: Optional[int] = None
    source: Optional[str] = None
    updated_at: Optional[datetime] = None


class ScenarioOut(CamelModel):
    scenario_type: str
    probability: Optional[float] = None
    description: Optional[str] = None
    price_low: Optional[float] = None
    price_mid: Optional[float] = None
    price_high: Optional[float] = None
    expected_market_cap: Optional[float] = None
    key_drivers: Optional[List[Any]] = None


class VerdictOut(CamelModel):
    score: float
    rating: str
    variant: str
    upside: Optional[float] = None
    downside: Optional[float] = None


class AiAnalysisOut(CamelModel):
    id: int
    overall_score: Optional[float] = None
    financial_risk: Optional[float] = None
    execution_risk: Optional[float] = None
    dilution_risk: Optional[float] = None
    competitive_risk: Optional[float] = None
    regulatory_risk: Optional[float] = None
    time_horizon_years: Optional[float] = None
    price_target_weighted: Optional[float] = None
    upside_percent: Optional[float] = None
    analyst_target_avg: Optional[float] = None
    sentiment: Optional[str] = None
    summary: Optional[str] = None
    red_flags: Optional[List[Any]] = None
    created_at: Optional[datetime] = None
    scenarios: List[ScenarioOut] = Field(default_factory=list)
    verdict: Optional[VerdictOut] = None


class NewsOut(CamelModel):
    external_id: str
    published_at: datetime
    headline: str
    summary: Optional[str] = None
    source: Optional[str] = None
    url: Optional[str] = None
    image: Optional[str] = None
    related: Optional[str] = None


class SnapshotCounts(CamelModel):
    news: int = 0
    research: int = 0
    analysts: int = 0
    social: int = 0


# =============================================================================
# Snapshot
# =============================================================================


class Snapshot(CamelModel):
    ticker: TickerInfo
    latest_price: Optional[CandleOut] = None
    quote: Optional[QuoteOut] = None
    fundamentals: Optional[FundamentalsOut] = None
    ai_analysis: Optional[AiAnalysisOut] = None
    source: str = Field(..., description="cache, finnhub or yahoo")
    news: Optional[List[NewsOut]] = None
    counts: SnapshotCounts = Field(default_factory=SnapshotCounts)
    sparkline: List[float] = Field(default_factory=list)


class SnapshotError(CamelModel):
    symbol: str
    error: str


class BatchSnapshotRequest(CamelModel):
    symbols: List[str] = Field(..., min_length=1, max_length=50)

    @field_validator("symbols")
    @classmethod
    def validate_symbols(cls, v: List[str]) -> List[str]:
        seen: dict[str, None] = {}
        for raw in v:
            try:
                seen[normalize_symbol(raw)] = None
            except BadRequestError as e:
                raise ValueError(e.message) from e
        return list(seen)


BatchSnapshotItem = Union[Snapshot, SnapshotError]


# =============================================================================
# Verdict / sync
# =============================================================================


class VerdictResponse(CamelModel):
    symbol: str
    verdict: VerdictOut
    inputs: dict[str, Any] = Field(default_factory=dict)


class SyncAccepted(CamelModel):
    symbol: str
    status: str = "accepted"
    years: int


# =============================================================================
# Analyzer
# =============================================================================


class AnalyzerItem(CamelModel):
    symbol: str
    name: Optional[str] = None
    sector: Optional[str] = None
    industry: Optional[str] = None
    logo_url: Optional[str] = None
    price: Optional[float] = None
    market_cap: Optional[float] = None
    pe_ratio: Optional[float] = None
    overall_score: Optional[float] = None
    financial_risk: Optional[float] = None
    upside: Optional[float] = None
    downside: Optional[float] = None
    ai_score: Optional[float] = None
    ai_rating: Optional[str] = None
    ai_variant: Optional[str] = None
    consensus: Optional[str] = None
    updated_at: Optional[datetime] = None


class AnalyzerMeta(CamelModel):
    total: int
    page: int
    limit: int
    total_pages: int


class AnalyzerResponse(CamelModel):
    items: List[AnalyzerItem]
    meta: AnalyzerMeta
