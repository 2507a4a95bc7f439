"""Read access to risk analyses and the collaborator tables counted in snapshots."""

from __future__ import annotations

from sqlalchemy import func, select

from app.database.connection import get_session
from app.database.orm import ResearchNote, RiskAnalysis, SocialPost


async def get_latest_analysis(ticker_id: int) -> RiskAnalysis | None:
    """Newest risk analysis with its scenarios loaded."""
    async with get_session() as session:
        result = await session.execute(
            select(RiskAnalysis)
            .where(RiskAnalysis.ticker_id == ticker_id)
            .order_by(RiskAnalysis.created_at.desc(), RiskAnalysis.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


async def count_research_notes(ticker_id: int) -> int:
    async with get_session() as session:
        result = await session.execute(
            select(func.count(ResearchNote.id)).where(ResearchNote.ticker_id == ticker_id)
        )
        return result.scalar_one()


async def count_social_posts(ticker_id: int) -> int:
    async with get_session() as session:
        result = await session.execute(
            select(func.count(SocialPost.id)).where(SocialPost.ticker_id == ticker_id)
        )
        return result.scalar_one()
