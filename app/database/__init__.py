"""Database module: SQLAlchemy async engine, sessions and ORM models.

Use ``get_session()`` for all store access.
"""

from .connection import (
    close_database,
    close_sqlalchemy_engine,
    db_healthcheck,
    dialect_insert,
    get_async_database_url,
    get_engine,
    get_session,
    init_database,
    init_sqlalchemy_engine,
)
from .orm import (
    FUNDAMENTAL_FIELDS,
    AnalystRating,
    Base,
    CompanyNews,
    Fundamentals,
    Portfolio,
    PortfolioPosition,
    PriceCandle,
    ResearchNote,
    RiskAnalysis,
    RiskScenario,
    SocialPost,
    Ticker,
)


__all__ = [
    "FUNDAMENTAL_FIELDS",
    "AnalystRating",
    "Base",
    "CompanyNews",
    "Fundamentals",
    "Portfolio",
    "PortfolioPosition",
    "PriceCandle",
    "ResearchNote",
    "RiskAnalysis",
    "RiskScenario",
    "SocialPost",
    "Ticker",
    "close_database",
    "close_sqlalchemy_engine",
    "db_healthcheck",
    "dialect_insert",
    "get_async_database_url",
    "get_engine",
    "get_session",
    "init_database",
    "init_sqlalchemy_engine",
]
