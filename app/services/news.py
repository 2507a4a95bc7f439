"""Company news cache: fetch through the provider chain, serve from the store."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from app.core.config import settings
from app.core.data_helpers import normalize_symbol, safe_date, utcnow
from app.core.exceptions import BadRequestError, PersistenceFailure, ProviderError
from app.core.logging import get_logger
from app.repositories import company_news_orm as news_repo
from app.schemas.market_data import NewsOut
from app.services.data_providers.fallback import ProviderChain, fetch_with_fallback, get_provider_chain
from app.services.tickers import TickerService


logger = get_logger("services.news")

NEWS_LIMIT = 50


class NewsService:
    def __init__(self, tickers: TickerService | None = None, chain: ProviderChain | None = None):
        self._chain = chain
        self._tickers = tickers or TickerService(chain=chain)

    @property
    def chain(self) -> ProviderChain:
        return self._chain or get_provider_chain()

    async def get_company_news(
        self,
        symbol: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[NewsOut]:
        """
        News for ``symbol`` between ``start`` and ``end`` (inclusive days),
        newest first.

        Defaults to the last ``news_lookback_days``. Provider failures fall
        back to whatever is cached.
        """
        symbol = normalize_symbol(symbol)
        end = safe_date(end) or utcnow().date()
        start = safe_date(start) or end - timedelta(days=settings.news_lookback_days)
        if start > end:
            raise BadRequestError(message="'from' must not be after 'to'")

        ticker = await self._tickers.ensure_ticker(symbol)

        try:
            items, provider = await fetch_with_fallback(
                self.chain.chain_for(symbol),
                lambda p: p.get_news(symbol, start, end),
                bool,
                label=f"news {symbol}",
            )
        except ProviderError as e:
            logger.info(f"No fresh news for {symbol}: {e.message}", extra={"symbol": symbol})
        else:
            try:
                inserted = await news_repo.insert_news(ticker.id, [item.to_row() for item in items])
                logger.debug(f"Cached {inserted}/{len(items)} news items for {symbol} from {provider}")
            except PersistenceFailure as e:
                logger.warning(f"Persisting news for {symbol} failed: {e.message}", extra={"symbol": symbol})

        rows = await news_repo.get_news(
            ticker.id,
            datetime.combine(start, time.min, tzinfo=timezone.utc),
            datetime.combine(end, time.max, tzinfo=timezone.utc),
            limit=NEWS_LIMIT,
        )
        return [NewsOut.model_validate(row) for row in rows]


_news_service: NewsService | None = None


def get_news_service() -> NewsService:
    """Get singleton NewsService instance."""
    global _news_service
    if _news_service is None:
        from app.services.tickers import get_ticker_service

        _news_service = NewsService(tickers=get_ticker_service())
    return _news_service
