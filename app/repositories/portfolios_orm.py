"""Portfolio repository - read side used by the background refresh loop.

Portfolio CRUD lives with the portfolio service; market data only needs to
know which symbols are currently held.
"""

from __future__ import annotations

from sqlalchemy import select

from app.database.connection import get_session
from app.database.orm import Portfolio, PortfolioPosition


async def list_active_symbols() -> list[str]:
    """Distinct symbols with a non-zero position in any active portfolio."""
    async with get_session() as session:
        result = await session.execute(
            select(PortfolioPosition.symbol)
            .join(Portfolio, Portfolio.id == PortfolioPosition.portfolio_id)
            .where(Portfolio.is_active.is_(True), PortfolioPosition.quantity != 0)
            .distinct()
            .order_by(PortfolioPosition.symbol)
        )
        return list(dict.fromkeys(s.upper() for s in result.scalars().all()))
