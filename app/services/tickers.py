"""
Ticker registry service.

Collaborator-facing entry points of the market data core:
- ``ensure_ticker``: lazy-create a ticker after validating it with a provider
- ``upsert_fundamentals``: non-destructive fundamentals merge
- ``upsert_analyst_ratings``: insert-if-unseen analyst ratings

Usage:
    from app.services.tickers import get_ticker_service

    tickers = get_ticker_service()
    ticker = await tickers.ensure_ticker("nvo.co")
"""

from __future__ import annotations

from dataclasses import asdict, is_dataclass
from typing import Any, Iterable

from app.core.data_helpers import normalize_symbol, safe_date, safe_float
from app.core.exceptions import ProviderError, SymbolNotFound
from app.core.logging import get_logger
from app.database.orm import Fundamentals, Ticker
from app.repositories import analyst_ratings_orm as ratings_repo
from app.repositories import fundamentals_orm as fundamentals_repo
from app.repositories import tickers_orm as tickers_repo
from app.services.data_providers.fallback import (
    ProviderChain,
    fetch_with_fallback,
    get_provider_chain,
    is_profile_acceptable,
)
from app.services.data_providers.resilience import RequestCoalescer


logger = get_logger("services.tickers")


class TickerService:
    """Lazy ticker creation plus the collaborator upsert interfaces."""

    def __init__(
        self,
        chain: ProviderChain | None = None,
        coalescer: RequestCoalescer | None = None,
    ):
        self._chain = chain
        self._coalescer = coalescer or RequestCoalescer("tickers")

    @property
    def chain(self) -> ProviderChain:
        return self._chain or get_provider_chain()

    # =========================================================================
    # ensureTicker
    # =========================================================================

    async def ensure_ticker(self, symbol: str) -> Ticker:
        """
        Return the stored ticker, creating it on first reference.

        Raises:
            BadRequestError: Malformed symbol
            SymbolNotFound: No provider could resolve the symbol
            PersistenceFailure: The ticker row could not be written
        """
        symbol = normalize_symbol(symbol)
        ticker = await tickers_repo.get_ticker(symbol)
        if ticker is not None:
            return ticker
        return await self._coalescer.execute(f"ensure:{symbol}", lambda: self._create(symbol))

    async def _create(self, symbol: str) -> Ticker:
        ticker = await tickers_repo.get_ticker(symbol)
        if ticker is not None:
            return ticker

        try:
            profile, provider = await fetch_with_fallback(
                self.chain.chain_for(symbol),
                lambda p: p.get_profile(symbol),
                is_profile_acceptable,
                label=f"profile {symbol}",
            )
        except ProviderError as e:
            logger.info(f"No provider resolved {symbol}: {e.message}", extra={"symbol": symbol})
            raise SymbolNotFound(symbol) from e

        logger.info(f"Resolved new ticker {symbol} via {provider}", extra={"symbol": symbol, "provider": provider})
        return await tickers_repo.create_ticker(symbol, profile.to_ticker_fields())

    # =========================================================================
    # Collaborator upserts
    # =========================================================================

    async def upsert_fundamentals(
        self,
        symbol: str,
        partial: dict[str, Any],
        source: str | None = None,
    ) -> Fundamentals:
        """Merge ``partial`` into the ticker's fundamentals; ``None`` never overwrites."""
        ticker = await self.ensure_ticker(symbol)
        return await fundamentals_repo.merge_fundamentals(ticker.id, partial, source)

    async def upsert_analyst_ratings(self, symbol: str, ratings: Iterable[Any]) -> int:
        """
        Store analyst ratings not seen before.

        Rows without a firm, without a parseable ``rating_date`` or without a
        rating are skipped.

        Returns:
            Number of inserted rows
        """
        ticker = await self.ensure_ticker(symbol)
        rows = clean_ratings(ratings)
        if not rows:
            return 0
        inserted = await ratings_repo.insert_ratings(ticker.id, rows)
        logger.debug(f"Stored {inserted} new analyst ratings for {ticker.symbol}", extra={"symbol": ticker.symbol})
        return inserted


def clean_ratings(ratings: Iterable[Any]) -> list[dict[str, Any]]:
    """Validate raw rating rows (dicts or ``AnalystRatingItem``)."""
    rows = []
    skipped = 0
    for raw in ratings or []:
        data = asdict(raw) if is_dataclass(raw) else dict(raw)
        firm = (data.get("firm") or "").strip()
        rating = data.get("rating")
        rating_date = safe_date(data.get("rating_date"))
        if not firm or rating is None or not str(rating).strip() or rating_date is None:
            skipped += 1
            continue
        rows.append({
            "firm": firm,
            "rating": str(rating).strip(),
            "rating_date": rating_date,
            "price_target": safe_float(data.get("price_target")),
            "analyst_name": data.get("analyst_name"),
        })
    if skipped:
        logger.debug(f"Skipped {skipped} invalid analyst ratings")
    return rows


_ticker_service: TickerService | None = None


def get_ticker_service() -> TickerService:
    """Get singleton TickerService instance."""
    global _ticker_service
    if _ticker_service is None:
        from app.services.registry import get_request_coalescer

        _ticker_service = TickerService(coalescer=get_request_coalescer())
    return _ticker_service
