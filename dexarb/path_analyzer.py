# dexarb/path_analyzer.py
from typing import List, Optional, Sequence

from .config import QuoteConfig, TriangularConfig
from .execution import ExecutionService, min_amount_out
from .models import ArbitragePath, PathExecution, PathHop
from .quote_engine import QuoteEngine


class PathStepError(RuntimeError):
    """No fee tier could quote one hop; the whole path is unusable for now."""


class IncompletePathError(RuntimeError):
    """A path reached execution without full per-hop quote data."""


class HopExecutionError(RuntimeError):
    """A hop swap failed mid-path. completed holds the hops that did go through."""
    def __init__(self, message: str, completed: List[PathHop], transaction_ids: List[str]):
        super().__init__(message)
        self.completed = completed
        self.transaction_ids = transaction_ids


class PathAnalyzer:
    """
    Prices fixed token cycles hop by hop and executes the best one.
    Each hop takes the previous hop's quoted output as its exact input.
    """
    def __init__(self, quotes: QuoteEngine, execution: ExecutionService, config: TriangularConfig,
                 quote_config: QuoteConfig, logger):
        self.quotes = quotes
        self.execution = execution
        self.cfg = config
        self.quote_cfg = quote_config
        self.logger = logger

    async def analyze(self, tokens: Sequence[str], trade_size: Optional[float] = None) -> ArbitragePath:
        tokens = list(tokens)
        if len(tokens) < 3 or tokens[0] != tokens[-1]:
            raise ValueError(f"{tokens} is not a closed token cycle")

        base = self.cfg.base_amount if trade_size is None else trade_size
        current = base
        total_fees = 0.0
        hops: List[PathHop] = []

        self.logger.debug(f"🔍 Analyzing path: {' → '.join(tokens)}")
        for i, (token_in, token_out) in enumerate(zip(tokens, tokens[1:]), start=1):
            quote = await self.quotes.best_quote(token_in, token_out, current, self.quote_cfg.fee_tiers)
            if quote is None:
                raise PathStepError(f"Path step {i} failed: no pools for {token_in} → {token_out}")

            # Quoted outputs are already net of pool fees; this total is for reporting
            total_fees += current * quote.fee_tier / 1_000_000
            hops.append(PathHop(token_in, token_out, current, quote.fee_tier, quote.out_amount))
            current = quote.out_amount

        expected_profit = current - base
        confidence = min(0.9, 0.5 + (expected_profit / base) * 10)

        return ArbitragePath(
            tokens=tokens,
            hops=hops,
            expected_profit=expected_profit,
            total_fees=total_fees,
            trade_size=base,
            confidence=confidence,
        )

    async def find_best_path(self) -> Optional[ArbitragePath]:
        best: Optional[ArbitragePath] = None

        for tokens in self.cfg.paths:
            try:
                path = await self.analyze(tokens)
            except Exception as e:
                self.logger.info(f"Path {'→'.join(tokens)} unusable: {e}")
                continue

            self.logger.info(
                f"   📊 {path.label}: profit {path.expected_profit:.4f} ({path.profit_bps:.1f}bps)"
            )
            if path.profit_bps < self.cfg.min_profit_bps:
                continue
            if best is None or path.expected_profit > best.expected_profit:
                best = path

        return best

    def check_executable(self, path: ArbitragePath):
        expected_hops = len(path.tokens) - 1
        if not path.hops or len(path.hops) != expected_hops:
            raise IncompletePathError(f"{path.label}: {len(path.hops or [])}/{expected_hops} hops analyzed")
        for hop in path.hops:
            if not hop.fee_tier or hop.quoted_out is None or hop.quoted_out <= 0:
                raise IncompletePathError(f"{path.label}: hop {hop.token_in}→{hop.token_out} lacks quote data")

    async def execute_path(self, path: ArbitragePath) -> PathExecution:
        """
        Swaps through every hop in order. Hops are not atomic: a failure part
        way leaves the intermediate token held and raises HopExecutionError.
        """
        self.check_executable(path)

        if path.profit_bps < self.cfg.min_profit_bps:
            self.logger.info(
                f"   ❌ Skipping {path.label}: {path.profit_bps:.1f}bps < min {self.cfg.min_profit_bps}bps"
            )
            return PathExecution(path=path, executed=False, profit=0.0, volume=path.trade_size)

        self.logger.info(f"🔄 Executing {path.label} | size {path.trade_size} | expected {path.expected_profit:.4f}")

        current = path.trade_size
        done: List[PathHop] = []
        tx_ids: List[str] = []
        for i, hop in enumerate(path.hops, start=1):
            floor = min_amount_out(hop.quoted_out, self.cfg.slippage_bps)
            result = await self.execution.swap(
                hop.token_in, hop.token_out, current, hop.quoted_out,
                hop.fee_tier, self.cfg.slippage_bps, min_out=floor,
            )
            if not result.success:
                self.logger.error(f"     ❌ Hop {i} {hop.token_in}→{hop.token_out} failed: {result.error}")
                raise HopExecutionError(
                    f"Triangular path {path.label} failed at hop {i}: {result.error}", done, tx_ids
                )

            if result.transaction_id:
                tx_ids.append(result.transaction_id)
            done.append(hop)
            current = result.actual_amount_out if result.actual_amount_out is not None else hop.quoted_out

        profit = current - path.trade_size
        self.logger.info(f"   ✅ {path.label} complete: profit {profit:.4f} ({profit / path.trade_size * 100:.2f}%)")
        return PathExecution(path=path, executed=True, profit=profit, volume=path.trade_size, transaction_ids=tx_ids)
