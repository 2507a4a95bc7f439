"""Data access layer repositories.

Each repository module provides async functions for database operations.
All code uses SQLAlchemy ORM models from `app.database.orm` with the
`get_session()` context manager.

- analyst_ratings_orm: analyst rating actions (deduplicated per firm and day)
- company_news_orm: cached company news
- fundamentals_orm: per-ticker fundamentals with non-destructive merge
- portfolios_orm: symbols held in active portfolios
- price_candles_orm: OHLCV candles with idempotent bulk upsert
- risk_analysis_orm: latest risk analysis and collaborator counts
- tickers_orm: ticker registry
"""

from . import analyst_ratings_orm
from . import company_news_orm
from . import fundamentals_orm
from . import portfolios_orm
from . import price_candles_orm
from . import risk_analysis_orm
from . import tickers_orm

__all__ = [
    "analyst_ratings_orm",
    "company_news_orm",
    "fundamentals_orm",
    "portfolios_orm",
    "price_candles_orm",
    "risk_analysis_orm",
    "tickers_orm",
]
