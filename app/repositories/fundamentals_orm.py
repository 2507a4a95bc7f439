"""Fundamentals repository using SQLAlchemy ORM.

One row per ticker. Writes merge non-destructively: a ``None`` in the incoming
payload never overwrites a stored value.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from app.core.data_helpers import utcnow
from app.core.exceptions import PersistenceFailure
from app.core.logging import get_logger
from app.database.connection import dialect_insert, get_session
from app.database.orm import FUNDAMENTAL_FIELDS, Fundamentals


logger = get_logger("repositories.fundamentals_orm")


async def get_fundamentals(ticker_id: int) -> Fundamentals | None:
    async with get_session() as session:
        return await session.get(Fundamentals, ticker_id)


async def merge_fundamentals(
    ticker_id: int,
    partial: dict[str, Any],
    source: str | None = None,
) -> Fundamentals:
    """Upsert fundamentals, keeping stored values where ``partial`` has none.

    Unknown keys are ignored. ``updated_at`` is always bumped, so an empty
    payload still marks the row as freshly checked.

    Raises:
        PersistenceFailure: If the write fails
    """
    values = {k: v for k, v in partial.items() if k in FUNDAMENTAL_FIELDS and v is not None}
    now = utcnow()
    table = Fundamentals.__table__

    try:
        async with get_session() as session:
            stmt = dialect_insert(session, Fundamentals).values(
                ticker_id=ticker_id,
                updated_at=now,
                source=source,
                **values,
            )
            set_ = {
                name: func.coalesce(stmt.excluded[name], table.c[name])
                for name in values
            }
            set_["updated_at"] = stmt.excluded.updated_at
            set_["source"] = func.coalesce(stmt.excluded.source, table.c.source)
            stmt = stmt.on_conflict_do_update(index_elements=["ticker_id"], set_=set_)
            await session.execute(stmt)
            await session.commit()

            result = await session.execute(
                select(Fundamentals)
                .where(Fundamentals.ticker_id == ticker_id)
                .execution_options(populate_existing=True)
            )
            row = result.scalar_one()
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Failed to merge fundamentals for ticker {ticker_id}: {e}") from e

    logger.debug(f"Merged {len(values)} fundamentals fields for ticker {ticker_id}")
    return row
