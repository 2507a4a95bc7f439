"""Baseline market data schema.

Revision ID: 001_baseline
Revises:
Create Date: 2026-10-18

Creates the ticker registry, candle store, fundamentals, analyst ratings,
company news, risk analyses and the collaborator tables read by snapshots.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_baseline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ==========================================================================
    # TICKERS
    # ==========================================================================

    op.create_table(
        "tickers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("symbol", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255)),
        sa.Column("exchange", sa.String(100)),
        sa.Column("currency", sa.String(10)),
        sa.Column("country", sa.String(50)),
        sa.Column("ipo_date", sa.Date()),
        sa.Column("market_cap", sa.Double()),
        sa.Column("shares_outstanding", sa.Double()),
        sa.Column("web_url", sa.String(500)),
        sa.Column("logo_url", sa.String(500)),
        sa.Column("sector", sa.String(100)),
        sa.Column("industry", sa.String(150)),
        sa.Column("news_sentiment", sa.String(20)),
        sa.Column("news_impact_score", sa.Double()),
        sa.Column("news_summary", sa.Text()),
        sa.Column("news_analyzed_at", sa.DateTime(timezone=True)),
        sa.Column("is_hidden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("symbol", name="uq_tickers_symbol"),
    )
    op.create_index("idx_tickers_sector", "tickers", ["sector"])

    # ==========================================================================
    # PRICES
    # ==========================================================================

    op.create_table(
        "price_candles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ticker_id", sa.Integer(), sa.ForeignKey("tickers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("timeframe", sa.String(10), nullable=False, server_default="1d"),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("open", sa.Double()),
        sa.Column("high", sa.Double()),
        sa.Column("low", sa.Double()),
        sa.Column("close", sa.Double(), nullable=False),
        sa.Column("prev_close", sa.Double()),
        sa.Column("volume", sa.Double()),
        sa.Column("source", sa.String(40)),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("ticker_id", "timeframe", "ts", name="uq_price_candles_key"),
    )
    op.create_index("idx_price_candles_lookup", "price_candles", ["ticker_id", "timeframe", "ts"])

    # ==========================================================================
    # FUNDAMENTALS
    # ==========================================================================

    op.create_table(
        "fundamentals",
        sa.Column("ticker_id", sa.Integer(), sa.ForeignKey("tickers.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("market_cap", sa.Double()),
        sa.Column("pe_ratio", sa.Double()),
        sa.Column("forward_pe", sa.Double()),
        sa.Column("peg_ratio", sa.Double()),
        sa.Column("price_to_book", sa.Double()),
        sa.Column("price_to_sales", sa.Double()),
        sa.Column("eps_ttm", sa.Double()),
        sa.Column("revenue_ttm", sa.Double()),
        sa.Column("revenue_per_share", sa.Double()),
        sa.Column("free_cash_flow", sa.Double()),
        sa.Column("revenue_growth", sa.Double()),
        sa.Column("earnings_growth", sa.Double()),
        sa.Column("dividend_yield", sa.Double()),
        sa.Column("gross_margin", sa.Double()),
        sa.Column("operating_margin", sa.Double()),
        sa.Column("profit_margin", sa.Double()),
        sa.Column("return_on_equity", sa.Double()),
        sa.Column("return_on_assets", sa.Double()),
        sa.Column("debt_to_equity", sa.Double()),
        sa.Column("current_ratio", sa.Double()),
        sa.Column("quick_ratio", sa.Double()),
        sa.Column("total_cash", sa.Double()),
        sa.Column("total_debt", sa.Double()),
        sa.Column("shares_outstanding", sa.Double()),
        sa.Column("beta", sa.Double()),
        sa.Column("current_price", sa.Double()),
        sa.Column("fifty_two_week_high", sa.Double()),
        sa.Column("fifty_two_week_low", sa.Double()),
        sa.Column("consensus_rating", sa.String(30)),
        sa.Column("analyst_target_mean", sa.Double()),
        sa.Column("analyst_target_low", sa.Double()),
        sa.Column("analyst_target_high", sa.Double()),
        sa.Column("num_analyst_opinions", sa.Integer()),
        sa.Column("source", sa.String(40)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )

    # ==========================================================================
    # ANALYSTS & NEWS
    # ==========================================================================

    op.create_table(
        "analyst_ratings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ticker_id", sa.Integer(), sa.ForeignKey("tickers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("firm", sa.String(150), nullable=False),
        sa.Column("firm_key", sa.String(150), nullable=False),
        sa.Column("analyst_name", sa.String(150)),
        sa.Column("rating", sa.String(50), nullable=False),
        sa.Column("price_target", sa.Double()),
        sa.Column("rating_date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("ticker_id", "firm_key", "rating_date", name="uq_analyst_ratings_key"),
    )
    op.create_index("idx_analyst_ratings_recent", "analyst_ratings", ["ticker_id", "rating_date"])

    op.create_table(
        "company_news",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ticker_id", sa.Integer(), sa.ForeignKey("tickers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("external_id", sa.String(100), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("headline", sa.Text(), nullable=False),
        sa.Column("summary", sa.Text()),
        sa.Column("source", sa.String(100)),
        sa.Column("url", sa.Text()),
        sa.Column("image", sa.Text()),
        sa.Column("related", sa.String(255)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("ticker_id", "external_id", name="uq_company_news_key"),
    )
    op.create_index("idx_company_news_published", "company_news", ["ticker_id", "published_at"])

    # ==========================================================================
    # RISK ANALYSIS
    # ==========================================================================

    op.create_table(
        "risk_analyses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ticker_id", sa.Integer(), sa.ForeignKey("tickers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("overall_score", sa.Double()),
        sa.Column("financial_risk", sa.Double()),
        sa.Column("execution_risk", sa.Double()),
        sa.Column("dilution_risk", sa.Double()),
        sa.Column("competitive_risk", sa.Double()),
        sa.Column("regulatory_risk", sa.Double()),
        sa.Column("time_horizon_years", sa.Double()),
        sa.Column("price_target_weighted", sa.Double()),
        sa.Column("upside_percent", sa.Double()),
        sa.Column("analyst_target_avg", sa.Double()),
        sa.Column("sentiment", sa.String(20)),
        sa.Column("summary", sa.Text()),
        sa.Column("red_flags", postgresql.JSONB()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_risk_analyses_latest", "risk_analyses", ["ticker_id", "created_at"])

    op.create_table(
        "risk_scenarios",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("analysis_id", sa.Integer(), sa.ForeignKey("risk_analyses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("scenario_type", sa.String(10), nullable=False),
        sa.Column("probability", sa.Double()),
        sa.Column("description", sa.Text()),
        sa.Column("price_low", sa.Double()),
        sa.Column("price_mid", sa.Double()),
        sa.Column("price_high", sa.Double()),
        sa.Column("expected_market_cap", sa.Double()),
        sa.Column("key_drivers", postgresql.JSONB()),
        sa.UniqueConstraint("analysis_id", "scenario_type", name="uq_risk_scenarios_type"),
    )

    # ==========================================================================
    # COLLABORATOR TABLES
    # ==========================================================================

    op.create_table(
        "research_notes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ticker_id", sa.Integer(), sa.ForeignKey("tickers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(255)),
        sa.Column("status", sa.String(20), server_default="completed"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_research_notes_ticker", "research_notes", ["ticker_id"])

    op.create_table(
        "social_posts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ticker_id", sa.Integer(), sa.ForeignKey("tickers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_social_posts_ticker", "social_posts", ["ticker_id"])

    op.create_table(
        "portfolios",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_portfolios_user", "portfolios", ["user_id"])

    op.create_table(
        "portfolio_positions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("portfolio_id", sa.Integer(), sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column("symbol", sa.String(20), nullable=False),
        sa.Column("quantity", sa.Double(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("portfolio_id", "symbol", name="uq_portfolio_positions_symbol"),
    )
    op.create_index("idx_portfolio_positions_symbol", "portfolio_positions", ["symbol"])


def downgrade() -> None:
    for table in (
        "portfolio_positions",
        "portfolios",
        "social_posts",
        "research_notes",
        "risk_scenarios",
        "risk_analyses",
        "company_news",
        "analyst_ratings",
        "fundamentals",
        "price_candles",
        "tickers",
    ):
        op.drop_table(table)
