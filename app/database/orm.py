"""SQLAlchemy ORM models for MarketLens.

This module defines all database tables using SQLAlchemy 2.0 ORM style.
Numeric market values use double precision so that values computed in SQL
(analyzer ranking) and in Python (per-ticker verdicts) agree exactly.

Usage:
    from app.database.orm import Ticker, PriceCandle
    from app.database.connection import get_session

    async with get_session() as session:
        ticker = await session.scalar(select(Ticker).where(Ticker.symbol == "AAPL"))
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Double,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


# Naming convention for constraints and indexes (deterministic names for Alembic)
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# JSONB on PostgreSQL, plain JSON elsewhere
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models with naming convention."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# =============================================================================
# TICKERS
# =============================================================================


class Ticker(Base):
    """A tradable symbol. Created lazily on first reference."""
    __tablename__ = "tickers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255))
    exchange: Mapped[str | None] = mapped_column(String(100))
    currency: Mapped[str | None] = mapped_column(String(10))
    country: Mapped[str | None] = mapped_column(String(50))
    ipo_date: Mapped[date | None] = mapped_column(Date)
    market_cap: Mapped[float | None] = mapped_column(Double)
    shares_outstanding: Mapped[float | None] = mapped_column(Double)
    web_url: Mapped[str | None] = mapped_column(String(500))
    logo_url: Mapped[str | None] = mapped_column(String(500))
    sector: Mapped[str | None] = mapped_column(String(100))
    industry: Mapped[str | None] = mapped_column(String(150))
    # Cached news sentiment, written by the research collaborator
    news_sentiment: Mapped[str | None] = mapped_column(String(20))
    news_impact_score: Mapped[float | None] = mapped_column(Double)
    news_summary: Mapped[str | None] = mapped_column(Text)
    news_analyzed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_hidden: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    fundamentals: Mapped[Fundamentals | None] = relationship(back_populates="ticker", uselist=False)

    __table_args__ = (
        Index("idx_tickers_sector", "sector"),
    )


# =============================================================================
# PRICES
# =============================================================================


class PriceCandle(Base):
    """OHLCV candle. Append-only; latest is max(ts) per ticker and timeframe."""
    __tablename__ = "price_candles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticker_id: Mapped[int] = mapped_column(ForeignKey("tickers.id", ondelete="CASCADE"), nullable=False)
    timeframe: Mapped[str] = mapped_column(String(10), nullable=False, default="1d")
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    open: Mapped[float | None] = mapped_column(Double)
    high: Mapped[float | None] = mapped_column(Double)
    low: Mapped[float | None] = mapped_column(Double)
    close: Mapped[float] = mapped_column(Double, nullable=False)
    prev_close: Mapped[float | None] = mapped_column(Double)
    volume: Mapped[float | None] = mapped_column(Double)
    source: Mapped[str | None] = mapped_column(String(40))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("ticker_id", "timeframe", "ts", name="uq_price_candles_key"),
        Index("idx_price_candles_lookup", "ticker_id", "timeframe", "ts"),
    )


# =============================================================================
# FUNDAMENTALS
# =============================================================================


class Fundamentals(Base):
    """Latest fundamentals per ticker. ``updated_at`` drives staleness."""
    __tablename__ = "fundamentals"

    ticker_id: Mapped[int] = mapped_column(ForeignKey("tickers.id", ondelete="CASCADE"), primary_key=True)

    # Valuation
    market_cap: Mapped[float | None] = mapped_column(Double)
    pe_ratio: Mapped[float | None] = mapped_column(Double)
    forward_pe: Mapped[float | None] = mapped_column(Double)
    peg_ratio: Mapped[float | None] = mapped_column(Double)
    price_to_book: Mapped[float | None] = mapped_column(Double)
    price_to_sales: Mapped[float | None] = mapped_column(Double)

    # Per share / income
    eps_ttm: Mapped[float | None] = mapped_column(Double)
    revenue_ttm: Mapped[float | None] = mapped_column(Double)
    revenue_per_share: Mapped[float | None] = mapped_column(Double)
    free_cash_flow: Mapped[float | None] = mapped_column(Double)
    revenue_growth: Mapped[float | None] = mapped_column(Double)
    earnings_growth: Mapped[float | None] = mapped_column(Double)
    dividend_yield: Mapped[float | None] = mapped_column(Double)

    # Profitability
    gross_margin: Mapped[float | None] = mapped_column(Double)
    operating_margin: Mapped[float | None] = mapped_column(Double)
    profit_margin: Mapped[float | None] = mapped_column(Double)
    return_on_equity: Mapped[float | None] = mapped_column(Double)
    return_on_assets: Mapped[float | None] = mapped_column(Double)

    # Financial health
    debt_to_equity: Mapped[float | None] = mapped_column(Double)
    current_ratio: Mapped[float | None] = mapped_column(Double)
    quick_ratio: Mapped[float | None] = mapped_column(Double)
    total_cash: Mapped[float | None] = mapped_column(Double)
    total_debt: Mapped[float | None] = mapped_column(Double)
    shares_outstanding: Mapped[float | None] = mapped_column(Double)
    beta: Mapped[float | None] = mapped_column(Double)

    # Price range
    current_price: Mapped[float | None] = mapped_column(Double)
    fifty_two_week_high: Mapped[float | None] = mapped_column(Double)
    fifty_two_week_low: Mapped[float | None] = mapped_column(Double)

    # Analysts
    consensus_rating: Mapped[str | None] = mapped_column(String(30))
    analyst_target_mean: Mapped[float | None] = mapped_column(Double)
    analyst_target_low: Mapped[float | None] = mapped_column(Double)
    analyst_target_high: Mapped[float | None] = mapped_column(Double)
    num_analyst_opinions: Mapped[int | None] = mapped_column(Integer)

    source: Mapped[str | None] = mapped_column(String(40))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    ticker: Mapped[Ticker] = relationship(back_populates="fundamentals")


# Columns a provider may populate via upsert_fundamentals
FUNDAMENTAL_FIELDS: tuple[str, ...] = tuple(
    column.name
    for column in Fundamentals.__table__.columns
    if column.name not in ("ticker_id", "updated_at", "source")
)


# =============================================================================
# ANALYSTS & NEWS
# =============================================================================


class AnalystRating(Base):
    """Analyst rating action. One row per (ticker, normalized firm, date)."""
    __tablename__ = "analyst_ratings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticker_id: Mapped[int] = mapped_column(ForeignKey("tickers.id", ondelete="CASCADE"), nullable=False)
    firm: Mapped[str] = mapped_column(String(150), nullable=False)
    firm_key: Mapped[str] = mapped_column(String(150), nullable=False)
    analyst_name: Mapped[str | None] = mapped_column(String(150))
    rating: Mapped[str] = mapped_column(String(50), nullable=False)
    price_target: Mapped[float | None] = mapped_column(Double)
    rating_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("ticker_id", "firm_key", "rating_date", name="uq_analyst_ratings_key"),
        Index("idx_analyst_ratings_recent", "ticker_id", "rating_date"),
    )


class CompanyNews(Base):
    """Cached company news item."""
    __tablename__ = "company_news"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticker_id: Mapped[int] = mapped_column(ForeignKey("tickers.id", ondelete="CASCADE"), nullable=False)
    external_id: Mapped[str] = mapped_column(String(100), nullable=False)
    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    headline: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str | None] = mapped_column(Text)
    source: Mapped[str | None] = mapped_column(String(100))
    url: Mapped[str | None] = mapped_column(Text)
    image: Mapped[str | None] = mapped_column(Text)
    related: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("ticker_id", "external_id", name="uq_company_news_key"),
        Index("idx_company_news_published", "ticker_id", "published_at"),
    )


# =============================================================================
# RISK ANALYSIS (written by the research pipeline, read here)
# =============================================================================


class RiskAnalysis(Base):
    """Point-in-time risk/reward analysis for a ticker."""
    __tablename__ = "risk_analyses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticker_id: Mapped[int] = mapped_column(ForeignKey("tickers.id", ondelete="CASCADE"), nullable=False)
    overall_score: Mapped[float | None] = mapped_column(Double)
    financial_risk: Mapped[float | None] = mapped_column(Double)
    execution_risk: Mapped[float | None] = mapped_column(Double)
    dilution_risk: Mapped[float | None] = mapped_column(Double)
    competitive_risk: Mapped[float | None] = mapped_column(Double)
    regulatory_risk: Mapped[float | None] = mapped_column(Double)
    time_horizon_years: Mapped[float | None] = mapped_column(Double)
    price_target_weighted: Mapped[float | None] = mapped_column(Double)
    upside_percent: Mapped[float | None] = mapped_column(Double)
    analyst_target_avg: Mapped[float | None] = mapped_column(Double)
    sentiment: Mapped[str | None] = mapped_column(String(20))
    summary: Mapped[str | None] = mapped_column(Text)
    red_flags: Mapped[list[Any] | None] = mapped_column(JsonType)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    scenarios: Mapped[list[RiskScenario]] = relationship(
        back_populates="analysis",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_risk_analyses_latest", "ticker_id", "created_at"),
    )


class RiskScenario(Base):
    """Bull/base/bear price scenario of a risk analysis."""
    __tablename__ = "risk_scenarios"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    analysis_id: Mapped[int] = mapped_column(ForeignKey("risk_analyses.id", ondelete="CASCADE"), nullable=False)
    scenario_type: Mapped[str] = mapped_column(String(10), nullable=False)  # bull | base | bear
    probability: Mapped[float | None] = mapped_column(Double)
    description: Mapped[str | None] = mapped_column(Text)
    price_low: Mapped[float | None] = mapped_column(Double)
    price_mid: Mapped[float | None] = mapped_column(Double)
    price_high: Mapped[float | None] = mapped_column(Double)
    expected_market_cap: Mapped[float | None] = mapped_column(Double)
    key_drivers: Mapped[list[Any] | None] = mapped_column(JsonType)

    analysis: Mapped[RiskAnalysis] = relationship(back_populates="scenarios")

    __table_args__ = (
        UniqueConstraint("analysis_id", "scenario_type", name="uq_risk_scenarios_type"),
    )


# =============================================================================
# COLLABORATOR TABLES (counted / read only)
# =============================================================================


class ResearchNote(Base):
    """Research note produced by the research pipeline."""
    __tablename__ = "research_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticker_id: Mapped[int] = mapped_column(ForeignKey("tickers.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default="completed")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_research_notes_ticker", "ticker_id"),
    )


class SocialPost(Base):
    """User discussion post attached to a ticker."""
    __tablename__ = "social_posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticker_id: Mapped[int] = mapped_column(ForeignKey("tickers.id", ondelete="CASCADE"), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_social_posts_ticker", "ticker_id"),
    )


class Portfolio(Base):
    """User-managed investment portfolio."""
    __tablename__ = "portfolios"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    positions: Mapped[list[PortfolioPosition]] = relationship(back_populates="portfolio")

    __table_args__ = (
        Index("idx_portfolios_user", "user_id"),
    )


class PortfolioPosition(Base):
    """Open position held in a portfolio."""
    __tablename__ = "portfolio_positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[float] = mapped_column(Double, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    portfolio: Mapped[Portfolio] = relationship(back_populates="positions")

    __table_args__ = (
        UniqueConstraint("portfolio_id", "symbol", name="uq_portfolio_positions_symbol"),
        Index("idx_portfolio_positions_symbol", "symbol"),
    )
