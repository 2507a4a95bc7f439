"""API routes package."""

from . import health, market_data


__all__ = [
    "health",
    "market_data",
]
