# dexarb/guidance.py
import math
from dataclasses import replace
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .config import GuidanceConfig, SpiderConfig
from .models import PoolOpportunity, Position, Regime

ProfitFn = Callable[[Position], Awaitable[float]]

ARBITRAGE_BOOST = 1.3
TREND_BOOST = 1.2
TRIANGULAR_BOOST = 1.4


class GuidanceFilter:
    """
    Re-ranks and prunes scanner output.

    1. Drops pairs whose open position is currently losing (both orderings).
    2. Blocks all new entries when the regime says avoid/hold.
    3. Boosts opportunities that suit the current regime.
    4. Keeps the top share of what is left.
    """
    def __init__(self, config: GuidanceConfig, spider_config: SpiderConfig,
                 pools: Sequence[Tuple[str, str]], position_profit: ProfitFn, logger):
        self.cfg = config
        self.spider_cfg = spider_config
        self.pools = list(pools)
        self.position_profit = position_profit
        self.logger = logger

    async def filter(self, opportunities: List[PoolOpportunity], positions: Dict[str, Position],
                     label: Optional[str]) -> List[PoolOpportunity]:
        excluded = await self.losing_pairs(positions)
        survivors = [
            o for o in opportunities
            if (o.token_a, o.token_b) not in excluded and (o.token_b, o.token_a) not in excluded
        ]

        if not label:
            return survivors

        regime = Regime.parse(label)
        if regime in (Regime.AVOID, Regime.HOLD):
            self.logger.info(f"⏸️ Guidance {label.upper()}: no new positions this cycle")
            return []

        adjusted = [replace(o, risk_adjusted_score=o.risk_adjusted_score * self.boost(o, regime)) for o in survivors]
        adjusted.sort(key=lambda o: o.risk_adjusted_score, reverse=True)
        keep = math.ceil(len(survivors) * self.cfg.keep_ratio)

        self.logger.info(f"🧠 Guidance filtering: {len(survivors)} -> {keep} opportunities (guidance: {label})")
        return adjusted[:keep]

    async def losing_pairs(self, positions: Dict[str, Position]) -> Set[Tuple[str, str]]:
        excluded: Set[Tuple[str, str]] = set()
        for position in list(positions.values()):
            try:
                profit = await self.position_profit(position)
                loss_pct = profit / position.invested * 100 if position.invested else 0.0
                losing = loss_pct < -self.spider_cfg.loss_exclusion_pct
            except Exception as e:
                self.logger.info(f"🚫 Avoiding {position.pool_key}: valuation error {e}")
                losing = True
                loss_pct = None

            if losing:
                if loss_pct is not None:
                    self.logger.info(f"🚫 Avoiding {position.pool_key} due to {loss_pct:.2f}% loss")
                excluded.add((position.token_in, position.token_out))
                excluded.add((position.token_out, position.token_in))
        return excluded

    def boost(self, opp: PoolOpportunity, regime: Optional[Regime]) -> float:
        if regime is Regime.ARBITRAGE and opp.imbalance_bps > 50:
            return ARBITRAGE_BOOST
        if regime is Regime.TREND and opp.liquidity_depth > 20 and opp.imbalance_bps < 30:
            return TREND_BOOST
        if regime is Regime.TRIANGULAR and self.has_triangular_potential(opp):
            return TRIANGULAR_BOOST
        return 1.0

    def has_triangular_potential(self, opp: PoolOpportunity) -> bool:
        """True when some bridge token has pools on both legs of a triangle through this pair."""
        for bridge in self.cfg.bridge_tokens:
            if bridge in (opp.token_a, opp.token_b):
                continue
            if self._has_pool(opp.token_a, bridge) and self._has_pool(bridge, opp.token_b):
                return True
        return False

    def _has_pool(self, x: str, y: str) -> bool:
        return (x, y) in self.pools or (y, x) in self.pools
