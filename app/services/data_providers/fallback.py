"""
Provider fallback chain.

Routing rules:
- Exchange-qualified symbols (``NVO.CO``) go straight to the secondary
  provider; the primary provider's plan does not cover foreign listings.
- Everything else tries the primary provider first and falls back to the
  secondary provider when it raises or answers with a zero-priced quote.

``fetch_market_data`` fetches quote, profile and financials concurrently and
settles each one independently, so one failing call never blocks the other
two. The secondary provider is then used to fill fields the primary does not
expose, without overwriting anything already populated.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from app.core.exceptions import ProviderError, ProviderRestricted, ProviderUnavailable
from app.core.data_helpers import has_exchange_suffix
from app.core.logging import get_logger

from .base import Financials, Profile, ProviderClient, Quote

logger = get_logger("data_providers.fallback")

T = TypeVar("T")

# Accept 52-week values only when the price sits in [low * 0.8, high * 1.2]
RANGE_LOW_TOLERANCE = 0.8
RANGE_HIGH_TOLERANCE = 1.2


# =============================================================================
# Acceptability predicates
# =============================================================================


def is_present(result: Any) -> bool:
    return result is not None


def is_quote_acceptable(quote: Optional[Quote]) -> bool:
    """A quote must exist and carry a non-zero price."""
    return quote is not None and bool(quote.price)


def is_profile_acceptable(profile: Optional[Profile]) -> bool:
    return profile is not None and not profile.is_empty()


def is_financials_acceptable(financials: Optional[Financials]) -> bool:
    return financials is not None and bool(financials.non_null())


# =============================================================================
# Generic fallback
# =============================================================================


async def fetch_with_fallback(
    chain: Sequence[ProviderClient],
    op: Callable[[ProviderClient], Awaitable[T]],
    is_acceptable: Callable[[Any], bool] = is_present,
    label: str = "fetch",
) -> tuple[T, str]:
    """
    Try each provider in order and return ``(result, provider_name)`` for the
    first acceptable result.

    Raises:
        ProviderError: The last provider error, or ``ProviderUnavailable``
            when every provider answered with an unacceptable result.
    """
    last_error: ProviderError | None = None

    for provider in chain:
        try:
            result = await op(provider)
        except ProviderError as e:
            logger.warning(f"{label} via {provider.name} failed: {e.message}", extra={"provider": provider.name})
            last_error = e
            continue
        except Exception as e:
            logger.warning(f"{label} via {provider.name} raised {type(e).__name__}: {e}", extra={"provider": provider.name})
            last_error = ProviderUnavailable(provider.name, str(e))
            continue

        if is_acceptable(result):
            return result, provider.name

        if isinstance(result, Quote) and not result.price:
            last_error = ProviderRestricted(provider.name, f"{label} returned a zero price")
        logger.info(f"{label} via {provider.name} returned no usable data, trying next provider")

    if last_error is not None:
        raise last_error
    raise ProviderUnavailable("chain", f"No provider returned usable data for {label}")


# =============================================================================
# Provider chain
# =============================================================================


@dataclass
class ProviderChain:
    """Primary and secondary provider pair."""

    primary: ProviderClient
    secondary: ProviderClient

    def chain_for(self, symbol: str) -> list[ProviderClient]:
        if has_exchange_suffix(symbol):
            return [self.secondary]
        return [self.primary, self.secondary]

    def all(self) -> list[ProviderClient]:
        return [self.primary, self.secondary]


@dataclass
class MarketDataBundle:
    """Whatever subset of market data the chain could fetch for a symbol."""

    symbol: str
    quote: Optional[Quote] = None
    profile: Optional[Profile] = None
    financials: dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.quote is None and self.profile is None and not self.financials


_chain: ProviderChain | None = None


def get_provider_chain() -> ProviderChain:
    """Get the process-wide provider chain (Finnhub -> Yahoo)."""
    global _chain
    if _chain is None:
        from .finnhub_service import get_finnhub_service
        from .yfinance_service import get_yfinance_service

        _chain = ProviderChain(primary=get_finnhub_service(), secondary=get_yfinance_service())
    return _chain


def set_provider_chain(chain: ProviderChain | None) -> None:
    """Replace the provider chain (``None`` restores the default on next use)."""
    global _chain
    _chain = chain


def chain_for(symbol: str) -> list[ProviderClient]:
    return get_provider_chain().chain_for(symbol)


# =============================================================================
# 52-week range validation
# =============================================================================


def is_range_plausible(price: float | None, low: float | None, high: float | None) -> bool:
    """False when the price is far outside the 52-week band (currency mismatch)."""
    if not price:
        return True
    if low is not None and price < low * RANGE_LOW_TOLERANCE:
        return False
    if high is not None and price > high * RANGE_HIGH_TOLERANCE:
        return False
    return True


def range_position(price: float | None, low: float | None, high: float | None) -> float | None:
    """
    Where ``price`` sits inside the 52-week band, in percent.

    0 at the low, 100 at the high, clamped to [0, 100]. None when any input is
    missing or the band is empty.
    """
    if price is None or low is None or high is None or high <= low:
        return None
    position = (price - low) / (high - low) * 100
    return round(min(max(position, 0.0), 100.0), 2)


def validate_52_week_range(values: dict[str, Any], price: float | None, symbol: str = "") -> dict[str, Any]:
    """Drop 52-week high/low when they are implausible for ``price``."""
    low = values.get("fifty_two_week_low")
    high = values.get("fifty_two_week_high")
    if (low is None and high is None) or is_range_plausible(price, low, high):
        return values

    logger.warning(
        f"Discarding 52-week range for {symbol}: price {price} outside [{low}, {high}]",
        extra={"symbol": symbol},
    )
    cleaned = dict(values)
    cleaned.pop("fifty_two_week_low", None)
    cleaned.pop("fifty_two_week_high", None)
    return cleaned


def _fill_missing(target: dict[str, Any], extra: dict[str, Any]) -> int:
    filled = 0
    for key, value in extra.items():
        if value is not None and target.get(key) is None:
            target[key] = value
            filled += 1
    return filled


# =============================================================================
# Market data fetch
# =============================================================================


async def _settle(
    symbol: str,
    first: Any,
    rest: Sequence[ProviderClient],
    first_name: str,
    op: Callable[[ProviderClient], Awaitable[Any]],
    is_acceptable: Callable[[Any], bool],
    label: str,
    errors: dict[str, str],
) -> tuple[Any, Optional[str]]:
    """Resolve one concurrently fetched field, falling back for that field only."""
    if not isinstance(first, BaseException) and is_acceptable(first):
        return first, first_name

    if isinstance(first, BaseException):
        logger.warning(f"{label} for {symbol} via {first_name} failed: {first}", extra={"symbol": symbol, "provider": first_name})
    if not rest:
        errors[label] = str(first) if isinstance(first, BaseException) else "no data"
        return None, None

    try:
        return await fetch_with_fallback(rest, op, is_acceptable, label=f"{label} {symbol}")
    except ProviderError as e:
        errors[label] = e.message
        return None, None


async def fetch_market_data(symbol: str, chain: ProviderChain | None = None) -> MarketDataBundle:
    """
    Fetch quote, profile and financials for ``symbol`` through the chain.

    Never raises for provider failures; missing pieces are simply absent from
    the bundle (see ``bundle.errors``).
    """
    chain = chain or get_provider_chain()
    providers = chain.chain_for(symbol)
    first, rest = providers[0], providers[1:]
    bundle = MarketDataBundle(symbol=symbol)

    quote_r, profile_r, financials_r = await asyncio.gather(
        first.get_quote(symbol),
        first.get_profile(symbol),
        first.get_financials(symbol),
        return_exceptions=True,
    )

    (quote, quote_src), (profile, profile_src), (financials, fin_src) = await asyncio.gather(
        _settle(symbol, quote_r, rest, first.name, lambda p: p.get_quote(symbol), is_quote_acceptable, "quote", bundle.errors),
        _settle(symbol, profile_r, rest, first.name, lambda p: p.get_profile(symbol), is_profile_acceptable, "profile", bundle.errors),
        _settle(symbol, financials_r, rest, first.name, lambda p: p.get_financials(symbol), is_financials_acceptable, "financials", bundle.errors),
    )

    bundle.quote = quote
    bundle.profile = profile
    bundle.source = quote_src

    price = quote.price if quote else None
    values: dict[str, Any] = {}
    if financials is not None:
        values = financials.non_null()
        price = price or values.get("current_price")
        values = validate_52_week_range(values, price, symbol)

    # Enrichment from the secondary provider for fields the primary does not expose
    if chain.secondary in rest:
        await _enrich_from_secondary(
            symbol,
            chain.secondary,
            bundle,
            values,
            price,
            need_financials=fin_src != chain.secondary.name,
            need_profile=profile_src != chain.secondary.name,
        )

    if quote and quote.price and values.get("current_price") is None:
        values["current_price"] = quote.price
    bundle.financials = values
    return bundle


async def _enrich_from_secondary(
    symbol: str,
    secondary: ProviderClient,
    bundle: MarketDataBundle,
    values: dict[str, Any],
    price: float | None,
    need_financials: bool = True,
    need_profile: bool = True,
) -> None:
    """Fill gaps from ``secondary``, skipping parts it already supplied."""
    if not (need_financials or need_profile):
        return

    extra_fin, extra_profile = await asyncio.gather(
        secondary.get_financials(symbol) if need_financials else _none(),
        secondary.get_profile(symbol) if need_profile else _none(),
        return_exceptions=True,
    )
    for label, result in (("financials", extra_fin), ("profile", extra_profile)):
        if isinstance(result, BaseException):
            logger.info(f"Enrichment {label} via {secondary.name} failed for {symbol}: {result}", extra={"symbol": symbol})
    if isinstance(extra_fin, BaseException):
        extra_fin = None
    if isinstance(extra_profile, BaseException):
        extra_profile = None

    if extra_fin is not None:
        extra_values = validate_52_week_range(extra_fin.non_null(), price, symbol)
        filled = _fill_missing(values, extra_values)
        logger.debug(f"Enriched {filled} fundamentals fields for {symbol} from {secondary.name}")

    if extra_profile is not None:
        if bundle.profile is None:
            bundle.profile = extra_profile
        else:
            for key, value in extra_profile.to_ticker_fields().items():
                if getattr(bundle.profile, key) is None:
                    setattr(bundle.profile, key, value)


async def _none() -> None:
    return None
