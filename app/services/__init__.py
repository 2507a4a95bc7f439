"""Business logic services."""

from . import analyzer, consensus, history, news, snapshot, staleness, tickers, verdict


__all__ = [
    "analyzer",
    "consensus",
    "history",
    "news",
    "snapshot",
    "staleness",
    "tickers",
    "verdict",
]
