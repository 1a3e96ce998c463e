# dexarb/scanner.py
import asyncio
from typing import List, Optional, Sequence, Tuple

from .config import QuoteConfig, SpiderConfig
from .models import PoolOpportunity
from .quote_engine import QuoteEngine
from .scheduler import IntervalGate


class OpportunityScanner:
    """
    Probes each configured pool in both directions and ranks the pools by a
    risk-adjusted score built from round-trip profit, price imbalance and depth.
    Scans are rate-limited by the gate the owning strategy hands in.
    """
    def __init__(self, quotes: QuoteEngine, gate: IntervalGate, config: SpiderConfig,
                 quote_config: QuoteConfig, logger):
        self.quotes = quotes
        self.gate = gate
        self.cfg = config
        self.quote_cfg = quote_config
        self.logger = logger

    async def scan(self, pools: Sequence[Tuple[str, str]]) -> List[PoolOpportunity]:
        if not self.gate.ready():
            return []

        now = self.gate.clock()
        elapsed = self.gate.since_last()
        # Minutes since the previous scan; a first scan carries no staleness
        penalty = max(0.0, elapsed / 60.0) if elapsed is not None else 0.0

        self.logger.info(f"🔍 Scanning {len(pools)} pools for liquidity imbalances...")
        results = await asyncio.gather(
            *(self.analyze_pool(a, b, penalty, now) for a, b in pools),
            return_exceptions=True,
        )
        self.gate.mark(now)

        opportunities = []
        for (a, b), res in zip(pools, results):
            if isinstance(res, BaseException):
                self.logger.debug(f"Pool {a}/{b} skipped: {res}")
                continue
            if res is not None and res.risk_adjusted_score >= self.cfg.min_score:
                opportunities.append(res)

        opportunities.sort(key=lambda o: o.risk_adjusted_score, reverse=True)
        self.logger.info(f"🎯 Found {len(opportunities)} potential opportunities")
        return opportunities[:self.cfg.top_k]

    async def analyze_pool(self, token_a: str, token_b: str, penalty: float, now: float) -> Optional[PoolOpportunity]:
        amount = self.cfg.position_size

        forward, reverse = await asyncio.gather(
            self.quotes.best_quote(token_a, token_b, amount),
            self.quotes.best_quote(token_b, token_a, amount),
            return_exceptions=True,
        )
        if forward is None or reverse is None or isinstance(forward, BaseException) or isinstance(reverse, BaseException):
            return None

        forward_out = forward.out_amount
        reverse_out = reverse.out_amount

        forward_price = forward_out / amount
        reverse_price = amount / reverse_out
        imbalance_bps = abs(forward_price - reverse_price) / forward_price * 10000

        profit = reverse_out - amount
        profit_bps = profit / amount * 10000
        depth = min(forward_out, reverse_out)

        score = score_opportunity(profit_bps, imbalance_bps, depth, penalty)
        if score < self.cfg.min_score:
            return None

        return PoolOpportunity(
            token_a=token_a,
            token_b=token_b,
            fee_tier=forward.fee_tier or self.quote_cfg.default_fee_tier,
            imbalance_bps=imbalance_bps,
            expected_profit=profit,
            liquidity_depth=depth,
            discovered_at=now,
            risk_adjusted_score=score,
        )


def score_opportunity(profit_bps: float, imbalance_bps: float, depth: float, staleness_penalty: float) -> float:
    score = 0.0
    score += min(20, profit_bps / 5)        # profit, max 20 points
    score += min(15, imbalance_bps / 10)    # imbalance, max 15 points
    score += min(10, depth / 100)           # liquidity, max 10 points
    score -= max(0.0, staleness_penalty)
    return score
