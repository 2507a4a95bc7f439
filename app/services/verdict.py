"""
Per-ticker verdict from stored inputs.

Builds the verdict input mapping from the ticker row, its latest risk
analysis, its fundamentals and its latest candle. The analyzer builds the
same mapping in SQL (see ``app.services.analyzer``), so both use the stored
consensus rating, never a derived one.
"""

from __future__ import annotations

from typing import Any, Optional, Union

from app.core.data_helpers import normalize_symbol
from app.core.exceptions import SymbolNotFound
from app.core.logging import get_logger
from app.database.orm import Fundamentals, PriceCandle, RiskAnalysis, Ticker
from app.repositories import fundamentals_orm as fundamentals_repo
from app.repositories import price_candles_orm as candles_repo
from app.repositories import risk_analysis_orm as risk_repo
from app.repositories import tickers_orm as tickers_repo
from app.schemas.market_data import CandleOut, FundamentalsOut, VerdictOut, VerdictResponse
from app.scoring import VerdictResult, compute_verdict


logger = get_logger("services.verdict")


def scenario_price(analysis: Optional[RiskAnalysis], scenario_type: str) -> Optional[float]:
    """Mid price of the analysis' ``scenario_type`` scenario."""
    if analysis is None:
        return None
    for scenario in analysis.scenarios:
        if scenario.scenario_type == scenario_type:
            return scenario.price_mid
    return None


def current_price(candle: Any, fundamentals: Any) -> Optional[float]:
    if candle is not None and candle.close is not None:
        return candle.close
    if fundamentals is not None:
        return fundamentals.current_price
    return None


def build_verdict_inputs(
    ticker: Ticker,
    analysis: Optional[RiskAnalysis],
    fundamentals: Optional[Union[Fundamentals, FundamentalsOut]],
    candle: Optional[Union[PriceCandle, CandleOut]],
) -> dict[str, Any]:
    """Raw scoring inputs; upside/downside are derived by ``compute_verdict``."""
    return {
        "risk": analysis.financial_risk if analysis else None,
        "overall_score": analysis.overall_score if analysis else None,
        "stored_upside": analysis.upside_percent if analysis else None,
        "base_price": scenario_price(analysis, "base"),
        "bear_price": scenario_price(analysis, "bear"),
        "pe_ratio": fundamentals.pe_ratio if fundamentals else None,
        "consensus": fundamentals.consensus_rating if fundamentals else None,
        "revenue_ttm": fundamentals.revenue_ttm if fundamentals else None,
        "high_52w": fundamentals.fifty_two_week_high if fundamentals else None,
        "low_52w": fundamentals.fifty_two_week_low if fundamentals else None,
        "news_sentiment": ticker.news_sentiment,
        "news_impact": ticker.news_impact_score,
        "price": current_price(candle, fundamentals),
    }


def verdict_out(result: VerdictResult) -> VerdictOut:
    return VerdictOut(**result.to_dict())


class VerdictService:
    """Scalar verdict for a stored ticker."""

    async def get_verdict(self, symbol: str) -> VerdictResponse:
        """
        Score ``symbol`` from stored data only; no provider calls.

        Raises:
            SymbolNotFound: The ticker has never been stored
        """
        symbol = normalize_symbol(symbol)
        ticker = await tickers_repo.get_ticker(symbol)
        if ticker is None:
            raise SymbolNotFound(symbol)

        analysis = await risk_repo.get_latest_analysis(ticker.id)
        fundamentals = await fundamentals_repo.get_fundamentals(ticker.id)
        candle = await candles_repo.get_latest_candle(ticker.id)

        inputs = build_verdict_inputs(ticker, analysis, fundamentals, candle)
        result = compute_verdict(inputs)
        logger.debug(f"Verdict for {symbol}: {result.score:.1f} {result.rating}", extra={"symbol": symbol})
        return VerdictResponse(symbol=symbol, verdict=verdict_out(result), inputs=inputs)


_verdict_service: VerdictService | None = None


def get_verdict_service() -> VerdictService:
    """Get singleton VerdictService instance."""
    global _verdict_service
    if _verdict_service is None:
        _verdict_service = VerdictService()
    return _verdict_service
