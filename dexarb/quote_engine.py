# dexarb/quote_engine.py
import asyncio
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import QuoteConfig
from .gateway import SwapGateway
from .models import Quote

CacheKey = Tuple[str, str, float, int]


class QuoteEngine:
    """
    Single entry point for pricing.
    Wraps the gateway with a short-lived quote cache and concurrent fee-tier
    probing. Every method reports a failed quote as None instead of raising,
    so one dead pool never breaks a caller's fan-out.
    """
    def __init__(self, gateway: SwapGateway, config: QuoteConfig, logger, clock: Callable[[], float] = time.time):
        self.gateway = gateway
        self.cfg = config
        self.logger = logger
        self.clock = clock
        self._cache: Dict[CacheKey, Tuple[float, Quote]] = {}

    async def quote(self, token_in: str, token_out: str, amount_in: float, fee_tier: int) -> Optional[Quote]:
        key = (token_in, token_out, amount_in, fee_tier)
        now = self.clock()

        cached = self._cache.get(key)
        if cached and now - cached[0] < self.cfg.cache_ttl_seconds:
            q = cached[1]
            return Quote(q.token_in, q.token_out, q.amount_in, q.out_amount, q.fee_tier, from_cache=True)

        try:
            quote = await self.gateway.quote(token_in, token_out, amount_in, fee_tier)
        except Exception as e:
            self.logger.debug(f"Quote {token_in}->{token_out} @{fee_tier} raised: {e}")
            return None

        if quote is None or quote.out_amount <= 0:
            return None

        if self.cfg.cache_ttl_seconds > 0:
            self._cache[key] = (now, quote)
            self._evict(now)
        return quote

    async def best_quote(self, token_in: str, token_out: str, amount_in: float,
                         fee_tiers: Optional[Sequence[int]] = None) -> Optional[Quote]:
        """
        Probes every fee tier concurrently and returns the quote with the largest output.
        """
        tiers = list(fee_tiers or self.cfg.fee_tiers)
        results = await asyncio.gather(
            *(self.quote(token_in, token_out, amount_in, tier) for tier in tiers),
            return_exceptions=True,
        )
        quotes: List[Quote] = [r for r in results if isinstance(r, Quote)]
        if not quotes:
            return None
        return max(quotes, key=lambda q: q.out_amount)

    def _evict(self, now: float):
        ttl = self.cfg.cache_ttl_seconds
        stale = [k for k, (ts, _) in self._cache.items() if now - ts >= ttl]
        for k in stale:
            del self._cache[k]

    async def shutdown(self):
        """
        Gracefully closes the underlying gateway session.
        """
        await self.gateway.close()
