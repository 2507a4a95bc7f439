"""Analyst rating repository using SQLAlchemy ORM.

Ratings are deduplicated on (ticker, normalized firm, rating date), so
"Morgan Stanley", "morgan-stanley" and "MORGAN STANLEY." are one firm.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import date
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import PersistenceFailure
from app.core.logging import get_logger
from app.database.connection import dialect_insert, get_session
from app.database.orm import AnalystRating


logger = get_logger("repositories.analyst_ratings_orm")

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_firm(firm: str) -> str:
    """Lower-case a firm name and strip everything but letters and digits."""
    return _NON_ALNUM.sub("", firm.lower())


async def insert_ratings(ticker_id: int, ratings: Sequence[dict[str, Any]]) -> int:
    """Insert ratings whose key has not been seen before.

    Each rating dict needs ``firm``, ``rating`` and ``rating_date`` (a date).

    Returns:
        Number of newly inserted rows
    """
    rows: dict[tuple[str, date], dict[str, Any]] = {}
    for rating in ratings:
        firm_key = normalize_firm(rating["firm"])
        if not firm_key:
            continue
        key = (firm_key, rating["rating_date"])
        rows.setdefault(key, {
            "ticker_id": ticker_id,
            "firm": rating["firm"].strip(),
            "firm_key": firm_key,
            "analyst_name": rating.get("analyst_name"),
            "rating": str(rating["rating"]).strip(),
            "price_target": rating.get("price_target"),
            "rating_date": rating["rating_date"],
        })

    if not rows:
        return 0

    try:
        async with get_session() as session:
            stmt = dialect_insert(session, AnalystRating).values(list(rows.values()))
            stmt = stmt.on_conflict_do_nothing(
                index_elements=["ticker_id", "firm_key", "rating_date"]
            ).returning(AnalystRating.id)
            result = await session.execute(stmt)
            inserted = len(result.all())
            await session.commit()
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Failed to save analyst ratings for ticker {ticker_id}: {e}") from e

    logger.debug(f"Inserted {inserted}/{len(rows)} analyst ratings for ticker {ticker_id}")
    return inserted


async def get_recent_ratings(ticker_id: int, limit: int = 20) -> Sequence[AnalystRating]:
    """Most recent ratings, newest first."""
    async with get_session() as session:
        result = await session.execute(
            select(AnalystRating)
            .where(AnalystRating.ticker_id == ticker_id)
            .order_by(AnalystRating.rating_date.desc(), AnalystRating.id.desc())
            .limit(limit)
        )
        return result.scalars().all()


async def count_ratings(ticker_id: int) -> int:
    async with get_session() as session:
        result = await session.execute(
            select(func.count(AnalystRating.id)).where(AnalystRating.ticker_id == ticker_id)
        )
        return result.scalar_one()
