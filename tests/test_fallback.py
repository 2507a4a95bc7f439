"""Tests for the provider fallback chain and market data fetch."""

from __future__ import annotations

import pytest

from app.core.exceptions import ProviderError, ProviderRestricted, ProviderUnavailable
from app.services.data_providers.base import Financials, Profile, Quote
from app.services.data_providers.fallback import (
    ProviderChain,
    fetch_market_data,
    fetch_with_fallback,
    is_financials_acceptable,
    is_profile_acceptable,
    is_quote_acceptable,
    is_range_plausible,
    range_position,
    validate_52_week_range,
)


class TestAcceptability:
    """Tests for the result predicates."""

    def test_quote(self):
        assert is_quote_acceptable(Quote(price=10.0))
        assert not is_quote_acceptable(Quote(price=0.0))
        assert not is_quote_acceptable(None)

    def test_profile(self):
        assert is_profile_acceptable(Profile(name="Apple"))
        assert is_profile_acceptable(Profile(exchange="NASDAQ"))
        assert not is_profile_acceptable(Profile(currency="USD"))
        assert not is_profile_acceptable(None)

    def test_financials(self):
        assert is_financials_acceptable(Financials(values={"pe_ratio": 10.0}))
        assert not is_financials_acceptable(Financials(values={"pe_ratio": None}))
        assert not is_financials_acceptable(None)


class TestFetchWithFallback:
    """Tests for fetch_with_fallback()."""

    @pytest.mark.asyncio
    async def test_primary_wins(self, chain, primary, secondary):
        quote, provider = await fetch_with_fallback(
            chain.chain_for("AAPL"), lambda p: p.get_quote("AAPL"), is_quote_acceptable
        )
        assert provider == "finnhub"
        assert quote.price == 190.5
        assert secondary.calls["quote"] == 0

    @pytest.mark.asyncio
    async def test_falls_back_on_error(self, chain, primary):
        primary.fail.add("quote")
        quote, provider = await fetch_with_fallback(
            chain.chain_for("AAPL"), lambda p: p.get_quote("AAPL"), is_quote_acceptable
        )
        assert provider == "yahoo"
        assert quote.price == 190.0

    @pytest.mark.asyncio
    async def test_zero_price_quote_falls_back(self, chain, primary):
        primary.quote = Quote(price=0.0)
        _, provider = await fetch_with_fallback(
            chain.chain_for("AAPL"), lambda p: p.get_quote("AAPL"), is_quote_acceptable
        )
        assert provider == "yahoo"

    @pytest.mark.asyncio
    async def test_zero_price_everywhere_is_restricted(self, chain, primary, secondary):
        primary.quote = Quote(price=0.0)
        secondary.quote = Quote(price=0.0)
        with pytest.raises(ProviderRestricted):
            await fetch_with_fallback(
                chain.chain_for("AAPL"), lambda p: p.get_quote("AAPL"), is_quote_acceptable
            )

    @pytest.mark.asyncio
    async def test_all_failing_raises_last_error(self, chain, primary, secondary):
        primary.fail.add("quote")
        secondary.fail.add("quote")
        with pytest.raises(ProviderUnavailable) as exc_info:
            await fetch_with_fallback(
                chain.chain_for("AAPL"), lambda p: p.get_quote("AAPL"), is_quote_acceptable
            )
        assert exc_info.value.provider == "yahoo"

    @pytest.mark.asyncio
    async def test_nothing_usable_raises_unavailable(self, chain, primary, secondary):
        primary.profile = None
        secondary.profile = None
        with pytest.raises(ProviderError):
            await fetch_with_fallback(
                chain.chain_for("AAPL"), lambda p: p.get_profile("AAPL"), is_profile_acceptable
            )

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_wrapped(self, fake_provider):
        class Exploding(fake_provider):
            async def get_quote(self, symbol):
                raise RuntimeError("parser bug")

        with pytest.raises(ProviderUnavailable):
            await fetch_with_fallback([Exploding("broken")], lambda p: p.get_quote("AAPL"), is_quote_acceptable)


class TestProviderChain:
    """Tests for ProviderChain routing."""

    def test_plain_symbol_uses_both(self, chain, primary, secondary):
        assert chain.chain_for("AAPL") == [primary, secondary]

    def test_exchange_suffix_skips_primary(self, chain, secondary):
        assert chain.chain_for("NVO.CO") == [secondary]


class TestRangeValidation:
    """Tests for 52-week range plausibility."""

    def test_plausible_range_kept(self):
        values = {"fifty_two_week_low": 80.0, "fifty_two_week_high": 120.0, "pe_ratio": 10.0}
        assert validate_52_week_range(values, 100.0, "X") == values

    def test_implausible_range_dropped(self):
        values = {"fifty_two_week_low": 500.0, "fifty_two_week_high": 800.0, "pe_ratio": 10.0}
        cleaned = validate_52_week_range(values, 100.0, "X")
        assert cleaned == {"pe_ratio": 10.0}

    def test_tolerance(self):
        assert is_range_plausible(85.0, 100.0, 200.0)
        assert not is_range_plausible(75.0, 100.0, 200.0)
        assert is_range_plausible(230.0, 100.0, 200.0)
        assert not is_range_plausible(250.0, 100.0, 200.0)
        assert is_range_plausible(None, 100.0, 200.0)

    @pytest.mark.parametrize(
        "price, expected",
        [(150.0, 50.0), (100.0, 0.0), (200.0, 100.0), (90.0, 0.0), (210.0, 100.0)],
    )
    def test_range_position(self, price, expected):
        assert range_position(price, 100.0, 200.0) == expected

    def test_range_position_undefined(self):
        assert range_position(150.0, 150.0, 150.0) is None
        assert range_position(None, 100.0, 200.0) is None
        assert range_position(150.0, None, 200.0) is None


class TestFetchMarketData:
    """Tests for fetch_market_data()."""

    @pytest.mark.asyncio
    async def test_primary_bundle_with_enrichment(self, chain, secondary):
        bundle = await fetch_market_data("AAPL", chain)

        assert bundle.source == "finnhub"
        assert bundle.quote.price == 190.5
        assert bundle.profile.name == "Apple Inc"
        # Primary values win, gaps come from the secondary
        assert bundle.financials["pe_ratio"] == 29.5
        assert bundle.financials["beta"] == 1.28
        assert bundle.financials["current_price"] == 190.5
        assert bundle.profile.logo_url == "https://logo.example/aapl.png"
        assert secondary.calls["financials"] == 1

    @pytest.mark.asyncio
    async def test_quote_falls_back_per_field(self, chain, primary, secondary):
        primary.fail.add("quote")
        bundle = await fetch_market_data("AAPL", chain)

        assert bundle.source == "yahoo"
        assert bundle.quote.price == 190.0
        assert bundle.profile.name == "Apple Inc"
        assert bundle.financials["pe_ratio"] == 29.5
        # Fields the primary lacks still come from the secondary
        assert bundle.financials["beta"] == 1.28
        assert bundle.profile.logo_url == "https://logo.example/aapl.png"
        assert secondary.calls["financials"] == 1

    @pytest.mark.asyncio
    async def test_restricted_quote_still_enriches_fundamentals(self, fake_provider):
        primary = fake_provider(
            "finnhub",
            quote=Quote(price=0.0),
            profile=Profile(name="Acme"),
            financials=Financials(values={"pe_ratio": 12.0}),
        )
        secondary = fake_provider(
            "yahoo",
            quote=Quote(price=50.0),
            financials=Financials(values={"pe_ratio": 13.0, "revenue_ttm": 1e9, "consensus_rating": "Buy"}),
        )

        bundle = await fetch_market_data("ACME", ProviderChain(primary=primary, secondary=secondary))

        assert bundle.source == "yahoo"
        assert bundle.financials["pe_ratio"] == 12.0
        assert bundle.financials["revenue_ttm"] == 1e9
        assert bundle.financials["consensus_rating"] == "Buy"
        assert bundle.financials["current_price"] == 50.0

    @pytest.mark.asyncio
    async def test_secondary_financials_fetched_once(self, chain, primary, secondary):
        primary.fail.add("financials")
        bundle = await fetch_market_data("AAPL", chain)

        assert bundle.financials["beta"] == 1.28
        assert secondary.calls["financials"] == 1
        assert secondary.calls["profile"] == 1

    @pytest.mark.asyncio
    async def test_enrichment_failure_keeps_primary_data(self, chain, secondary):
        secondary.fail.update({"financials", "profile"})
        bundle = await fetch_market_data("AAPL", chain)

        assert bundle.source == "finnhub"
        assert bundle.financials["pe_ratio"] == 29.5
        assert "beta" not in bundle.financials
        assert bundle.profile.name == "Apple Inc"

    @pytest.mark.asyncio
    async def test_exchange_symbol_never_touches_primary(self, chain, primary):
        bundle = await fetch_market_data("NVO.CO", chain)

        assert bundle.source == "yahoo"
        assert sum(primary.calls.values()) == 0

    @pytest.mark.asyncio
    async def test_everything_failing_is_empty_not_raising(self, chain, primary, secondary):
        for provider in (primary, secondary):
            provider.fail.update({"quote", "profile", "financials"})

        bundle = await fetch_market_data("AAPL", chain)

        assert bundle.is_empty
        assert set(bundle.errors) == {"quote", "profile", "financials"}

    @pytest.mark.asyncio
    async def test_implausible_range_is_dropped(self, fake_provider):
        primary = fake_provider(
            "finnhub",
            quote=Quote(price=100.0),
            profile=Profile(name="Novo"),
            financials=Financials(values={"fifty_two_week_low": 600.0, "fifty_two_week_high": 900.0}),
        )
        secondary = fake_provider("yahoo")
        bundle = await fetch_market_data("NOVO", ProviderChain(primary=primary, secondary=secondary))

        assert "fifty_two_week_low" not in bundle.financials
        assert "fifty_two_week_high" not in bundle.financials
