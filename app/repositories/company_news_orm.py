"""Company news cache repository using SQLAlchemy ORM."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import PersistenceFailure
from app.core.logging import get_logger
from app.database.connection import dialect_insert, get_session
from app.database.orm import CompanyNews


logger = get_logger("repositories.company_news_orm")

NEWS_COLUMNS = ("published_at", "headline", "summary", "source", "url", "image", "related")


async def insert_news(ticker_id: int, items: Sequence[dict[str, Any]]) -> int:
    """Insert news items not yet cached for the ticker.

    Returns:
        Number of newly inserted rows
    """
    rows: dict[str, dict[str, Any]] = {}
    for item in items:
        external_id = str(item.get("external_id") or "").strip()
        if not external_id or not item.get("headline") or item.get("published_at") is None:
            continue
        rows.setdefault(external_id, {
            "ticker_id": ticker_id,
            "external_id": external_id,
            **{col: item.get(col) for col in NEWS_COLUMNS},
        })

    if not rows:
        return 0

    try:
        async with get_session() as session:
            stmt = dialect_insert(session, CompanyNews).values(list(rows.values()))
            stmt = stmt.on_conflict_do_nothing(
                index_elements=["ticker_id", "external_id"]
            ).returning(CompanyNews.id)
            result = await session.execute(stmt)
            inserted = len(result.all())
            await session.commit()
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Failed to save news for ticker {ticker_id}: {e}") from e

    logger.debug(f"Cached {inserted} new news items for ticker {ticker_id}")
    return inserted


async def get_news(
    ticker_id: int,
    start: datetime,
    end: datetime,
    limit: int = 50,
) -> Sequence[CompanyNews]:
    """Cached news inside [start, end], newest first."""
    async with get_session() as session:
        result = await session.execute(
            select(CompanyNews)
            .where(
                CompanyNews.ticker_id == ticker_id,
                CompanyNews.published_at >= start,
                CompanyNews.published_at <= end,
            )
            .order_by(CompanyNews.published_at.desc())
            .limit(limit)
        )
        return result.scalars().all()


async def count_news(ticker_id: int) -> int:
    async with get_session() as session:
        result = await session.execute(
            select(func.count(CompanyNews.id)).where(CompanyNews.ticker_id == ticker_id)
        )
        return result.scalar_one()
