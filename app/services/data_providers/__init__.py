"""Data providers - centralized external API access."""

from .base import (
    AnalystRatingItem,
    Candle,
    Financials,
    NewsItem,
    Profile,
    ProviderClient,
    Quote,
)
from .fallback import (
    MarketDataBundle,
    ProviderChain,
    chain_for,
    fetch_market_data,
    fetch_with_fallback,
    get_provider_chain,
    set_provider_chain,
)
from .finnhub_service import FinnhubService, get_finnhub_service
from .resilience import CircuitBreaker, RequestCoalescer
from .yfinance_service import YFinanceService, get_yfinance_service


__all__ = [
    "AnalystRatingItem",
    "Candle",
    "CircuitBreaker",
    "Financials",
    "FinnhubService",
    "MarketDataBundle",
    "NewsItem",
    "Profile",
    "ProviderChain",
    "ProviderClient",
    "Quote",
    "RequestCoalescer",
    "YFinanceService",
    "chain_for",
    "fetch_market_data",
    "fetch_with_fallback",
    "get_finnhub_service",
    "get_provider_chain",
    "get_yfinance_service",
    "set_provider_chain",
]
