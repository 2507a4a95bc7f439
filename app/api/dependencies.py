"""API dependencies for admin access and service injection."""

from __future__ import annotations

import secrets

from fastapi import Header

from app.core.config import settings
from app.core.exceptions import AuthorizationError
from app.services.analyzer import AnalyzerService, get_analyzer_service
from app.services.history import HistoryService, get_history_service
from app.services.news import NewsService, get_news_service
from app.services.snapshot import SnapshotService, get_snapshot_service
from app.services.verdict import VerdictService, get_verdict_service


__all__ = [
    "analyzer_service",
    "history_service",
    "news_service",
    "require_admin_key",
    "snapshot_service",
    "verdict_service",
]


async def require_admin_key(
    x_admin_key: str | None = Header(default=None),
) -> None:
    """
    Require the shared admin key in ``X-Admin-Key``.

    An empty ``ADMIN_API_KEY`` disables the check (local development).

    Raises:
        AuthorizationError: Missing or wrong key
    """
    expected = settings.admin_api_key
    if not expected:
        return
    if not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        raise AuthorizationError(message="Admin key required")


def snapshot_service() -> SnapshotService:
    return get_snapshot_service()


def history_service() -> HistoryService:
    return get_history_service()


def news_service() -> NewsService:
    return get_news_service()


def analyzer_service() -> AnalyzerService:
    return get_analyzer_service()


def verdict_service() -> VerdictService:
    return get_verdict_service()
