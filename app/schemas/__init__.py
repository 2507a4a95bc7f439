"""Pydantic schemas for API request/response validation."""

from .common import (
    ErrorResponse,
    HealthResponse,
)
from .market_data import (
    AiAnalysisOut,
    AnalyzerItem,
    AnalyzerMeta,
    AnalyzerResponse,
    BatchSnapshotItem,
    BatchSnapshotRequest,
    CandleOut,
    FundamentalsOut,
    NewsOut,
    QuoteOut,
    ScenarioOut,
    Snapshot,
    SnapshotCounts,
    SnapshotError,
    SyncAccepted,
    TickerInfo,
    VerdictOut,
    VerdictResponse,
)


__all__ = [
    # Market data
    "AiAnalysisOut",
    "AnalyzerItem",
    "AnalyzerMeta",
    "AnalyzerResponse",
    "BatchSnapshotItem",
    "BatchSnapshotRequest",
    "CandleOut",
    "FundamentalsOut",
    "NewsOut",
    "QuoteOut",
    "ScenarioOut",
    "Snapshot",
    "SnapshotCounts",
    "SnapshotError",
    "SyncAccepted",
    "TickerInfo",
    "VerdictOut",
    "VerdictResponse",
    # Common
    "ErrorResponse",
    "HealthResponse",
]
