"""
Unit tests for quote caching and fee-tier selection
"""

import pytest

from dexarb.config import QuoteConfig
from dexarb.quote_engine import QuoteEngine


@pytest.fixture
def cached_quotes(gateway, logger, clock):
    return QuoteEngine(gateway, QuoteConfig(cache_ttl_seconds=30), logger, clock)


class TestQuoteCache:

    @pytest.mark.asyncio
    async def test_repeat_quote_served_from_cache(self, cached_quotes, gateway):
        gateway.set_quote("GALA", "GUSDC", 0.5)

        first = await cached_quotes.quote("GALA", "GUSDC", 5, 3000)
        second = await cached_quotes.quote("GALA", "GUSDC", 5, 3000)

        assert not first.from_cache
        assert second.from_cache
        assert second.out_amount == 0.5
        assert gateway.quote_calls == 1

    @pytest.mark.asyncio
    async def test_cache_expires(self, cached_quotes, gateway, clock):
        gateway.set_quote("GALA", "GUSDC", 0.5)
        await cached_quotes.quote("GALA", "GUSDC", 5, 3000)

        clock.advance(30)
        refreshed = await cached_quotes.quote("GALA", "GUSDC", 5, 3000)

        assert not refreshed.from_cache
        assert gateway.quote_calls == 2

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, cached_quotes, gateway):
        assert await cached_quotes.quote("GALA", "GUSDC", 5, 3000) is None
        await cached_quotes.quote("GALA", "GUSDC", 5, 3000)

        assert gateway.quote_calls == 2


class TestBestQuote:

    @pytest.mark.asyncio
    async def test_picks_largest_output(self, quotes, gateway):
        gateway.set_quote("GALA", "GUSDC", 0.49, tiers=(500,))
        gateway.set_quote("GALA", "GUSDC", 0.51, tiers=(3000,))
        gateway.set_quote("GALA", "GUSDC", RuntimeError("pool error"), tiers=(10000,))

        best = await quotes.best_quote("GALA", "GUSDC", 5)

        assert best.fee_tier == 3000
        assert best.out_amount == 0.51

    @pytest.mark.asyncio
    async def test_zero_output_is_no_quote(self, quotes, gateway):
        gateway.set_quote("GALA", "GUSDC", 0.0)

        assert await quotes.best_quote("GALA", "GUSDC", 5) is None

    @pytest.mark.asyncio
    async def test_shutdown_closes_gateway(self, quotes, gateway):
        await quotes.shutdown()

        assert gateway.closed
