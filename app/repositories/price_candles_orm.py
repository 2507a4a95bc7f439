"""Price candle repository using SQLAlchemy ORM.

Candles are keyed on (ticker_id, timeframe, ts); saving the same range twice
updates rows in place.

Usage:
    from app.repositories import price_candles_orm as candles_repo

    latest = await candles_repo.get_latest_candle(ticker.id)
    await candles_repo.save_candles(ticker.id, "1d", rows, source="yahoo_history")
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError

from app.core.data_helpers import safe_datetime, safe_float, utcnow
from app.core.exceptions import PersistenceFailure
from app.core.logging import get_logger
from app.database.connection import dialect_insert, get_session
from app.database.orm import PriceCandle


logger = get_logger("repositories.price_candles_orm")

# Rows per INSERT statement (keeps SQLite under its bound-parameter limit)
SAVE_CHUNK_SIZE = 500


async def get_latest_candle(ticker_id: int, timeframe: str = "1d") -> PriceCandle | None:
    """Most recent candle for a ticker and timeframe."""
    async with get_session() as session:
        result = await session.execute(
            select(PriceCandle)
            .where(PriceCandle.ticker_id == ticker_id, PriceCandle.timeframe == timeframe)
            .order_by(PriceCandle.ts.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


async def get_candles(
    ticker_id: int,
    timeframe: str,
    start: datetime,
    end: datetime,
) -> Sequence[PriceCandle]:
    """Candles within [start, end], oldest first."""
    async with get_session() as session:
        result = await session.execute(
            select(PriceCandle)
            .where(
                and_(
                    PriceCandle.ticker_id == ticker_id,
                    PriceCandle.timeframe == timeframe,
                    PriceCandle.ts >= start,
                    PriceCandle.ts <= end,
                )
            )
            .order_by(PriceCandle.ts.asc())
        )
        return result.scalars().all()


async def count_candles(
    ticker_id: int,
    timeframe: str,
    start: datetime,
    end: datetime,
) -> int:
    async with get_session() as session:
        result = await session.execute(
            select(func.count(PriceCandle.id)).where(
                and_(
                    PriceCandle.ticker_id == ticker_id,
                    PriceCandle.timeframe == timeframe,
                    PriceCandle.ts >= start,
                    PriceCandle.ts <= end,
                )
            )
        )
        return result.scalar_one()


async def get_recent_closes(ticker_id: int, limit: int = 14, timeframe: str = "1d") -> list[float]:
    """Last ``limit`` closes, oldest first (sparkline order)."""
    async with get_session() as session:
        result = await session.execute(
            select(PriceCandle.close)
            .where(PriceCandle.ticker_id == ticker_id, PriceCandle.timeframe == timeframe)
            .order_by(PriceCandle.ts.desc())
            .limit(limit)
        )
        closes = [float(c) for c in result.scalars().all() if c is not None]
    closes.reverse()
    return closes


def price_watermark(ts: datetime | None, updated_at: datetime | None, source: str | None) -> datetime | None:
    """When a candle's price was last observed.

    Live quote candles count from their last write. Backfilled candles count
    from their own timestamp, so a history sync never makes an old close look fresh.
    """
    if source and source.endswith("_quote"):
        return safe_datetime(updated_at or ts)
    return safe_datetime(ts)


async def get_latest_candle_times(ticker_ids: Sequence[int], timeframe: str = "1d") -> dict[int, datetime]:
    """Price watermark of the newest candle per ticker."""
    if not ticker_ids:
        return {}
    newest = (
        select(PriceCandle.ticker_id, func.max(PriceCandle.ts).label("ts"))
        .where(PriceCandle.ticker_id.in_(list(ticker_ids)), PriceCandle.timeframe == timeframe)
        .group_by(PriceCandle.ticker_id)
        .subquery()
    )
    async with get_session() as session:
        result = await session.execute(
            select(PriceCandle.ticker_id, PriceCandle.ts, PriceCandle.updated_at, PriceCandle.source)
            .join(newest, and_(PriceCandle.ticker_id == newest.c.ticker_id, PriceCandle.ts == newest.c.ts))
            .where(PriceCandle.timeframe == timeframe)
        )
        times = {}
        for ticker_id, ts, updated_at, source in result.all():
            watermark = price_watermark(ts, updated_at, source)
            if watermark is not None:
                times[ticker_id] = watermark
        return times


def _candle_values(ticker_id: int, timeframe: str, row: dict[str, Any], source: str | None, now: datetime) -> dict[str, Any] | None:
    close = safe_float(row.get("close"))
    ts = safe_datetime(row.get("ts"))
    if close is None or ts is None:
        return None
    return {
        "ticker_id": ticker_id,
        "timeframe": timeframe,
        "ts": ts,
        "open": safe_float(row.get("open")),
        "high": safe_float(row.get("high")),
        "low": safe_float(row.get("low")),
        "close": close,
        "prev_close": safe_float(row.get("prev_close")),
        "volume": safe_float(row.get("volume")),
        "source": row.get("source") or source,
        "updated_at": now,
    }


async def save_candles(
    ticker_id: int,
    timeframe: str,
    rows: Sequence[dict[str, Any]],
    source: str | None = None,
) -> int:
    """Bulk upsert candles. Rows without a close or timestamp are skipped.

    Returns:
        Number of rows written

    Raises:
        PersistenceFailure: If the write fails
    """
    now = utcnow()
    by_key: dict[datetime, dict[str, Any]] = {}
    skipped = 0
    for row in rows:
        values = _candle_values(ticker_id, timeframe, row, source, now)
        if values is None:
            skipped += 1
            continue
        # Last row wins for duplicate timestamps in one batch
        by_key[values["ts"]] = values

    if skipped:
        logger.debug(f"Skipped {skipped} candles with null price for ticker {ticker_id}")
    if not by_key:
        return 0

    payload = list(by_key.values())
    try:
        async with get_session() as session:
            for i in range(0, len(payload), SAVE_CHUNK_SIZE):
                chunk = payload[i:i + SAVE_CHUNK_SIZE]
                stmt = dialect_insert(session, PriceCandle).values(chunk)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["ticker_id", "timeframe", "ts"],
                    set_={
                        "open": stmt.excluded.open,
                        "high": stmt.excluded.high,
                        "low": stmt.excluded.low,
                        "close": stmt.excluded.close,
                        "prev_close": func.coalesce(stmt.excluded.prev_close, PriceCandle.prev_close),
                        "volume": stmt.excluded.volume,
                        "source": stmt.excluded.source,
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                await session.execute(stmt)
            await session.commit()
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Failed to save {len(payload)} candles for ticker {ticker_id}: {e}") from e

    logger.debug(f"Saved {len(payload)} {timeframe} candles for ticker {ticker_id}")
    return len(payload)
