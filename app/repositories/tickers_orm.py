"""Ticker repository using SQLAlchemy ORM.

Usage:
    from app.repositories import tickers_orm as tickers_repo

    ticker = await tickers_repo.get_ticker("AAPL")
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import PersistenceFailure
from app.core.logging import get_logger
from app.database.connection import dialect_insert, get_session
from app.database.orm import Ticker


logger = get_logger("repositories.tickers_orm")

PROFILE_FIELDS = (
    "name",
    "exchange",
    "currency",
    "country",
    "ipo_date",
    "market_cap",
    "shares_outstanding",
    "web_url",
    "logo_url",
    "sector",
    "industry",
)


async def get_ticker(symbol: str) -> Ticker | None:
    async with get_session() as session:
        result = await session.execute(select(Ticker).where(Ticker.symbol == symbol.upper()))
        return result.scalar_one_or_none()


async def get_tickers(symbols: list[str]) -> dict[str, Ticker]:
    """Fetch several tickers keyed by symbol."""
    normalized = [s.upper() for s in symbols]
    if not normalized:
        return {}
    async with get_session() as session:
        result = await session.execute(select(Ticker).where(Ticker.symbol.in_(normalized)))
        return {t.symbol: t for t in result.scalars().all()}


async def create_ticker(symbol: str, profile: dict[str, Any] | None = None) -> Ticker:
    """Insert a ticker, tolerating a concurrent insert of the same symbol.

    Returns:
        The stored row (ours or the one that won the race)
    """
    values = {"symbol": symbol.upper(), "is_hidden": False}
    for key in PROFILE_FIELDS:
        value = (profile or {}).get(key)
        if value is not None:
            values[key] = value

    try:
        async with get_session() as session:
            stmt = dialect_insert(session, Ticker).values(**values)
            stmt = stmt.on_conflict_do_nothing(index_elements=["symbol"])
            await session.execute(stmt)
            await session.commit()

            result = await session.execute(select(Ticker).where(Ticker.symbol == values["symbol"]))
            ticker = result.scalar_one()
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Failed to create ticker {symbol}: {e}") from e

    logger.info(f"Ensured ticker {ticker.symbol} (id={ticker.id})")
    return ticker


async def update_profile(ticker_id: int, profile: dict[str, Any]) -> bool:
    """Fill profile columns. Only non-null values are written."""
    values = {k: v for k, v in profile.items() if k in PROFILE_FIELDS and v is not None}
    if not values:
        return False
    try:
        async with get_session() as session:
            await session.execute(update(Ticker).where(Ticker.id == ticker_id).values(**values))
            await session.commit()
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Failed to update ticker {ticker_id}: {e}") from e
    return True
