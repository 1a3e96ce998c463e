# dexarb/strategy.py
import logging
import time
from typing import Callable, Dict, List, Optional

from .advisor import GuidanceSource
from .config import EngineConfig
from .cross_venue import CrossVenueMonitor
from .execution import ExecutionService
from .guidance import GuidanceFilter
from .logger import AsyncAuditLogger
from .models import CrossVenueOpportunity, TradeResult
from .path_analyzer import HopExecutionError, PathAnalyzer
from .positions import PositionManager
from .quote_engine import QuoteEngine
from .risk_engine import RiskEngine, RiskNotifier
from .scanner import OpportunityScanner
from .scheduler import IntervalGate


class BaseStrategy:
    name = "base"

    def __init__(self, logger: logging.Logger, audit_logger: Optional[AsyncAuditLogger] = None,
                 clock: Callable[[], float] = time.time):
        self.logger = logger
        self.audit_logger = audit_logger
        self.clock = clock
        self.last_result: Optional[TradeResult] = None

    def should_activate(self, market_volume: float, market_volatility: float) -> bool:
        raise NotImplementedError

    async def run_cycle(self) -> TradeResult:
        raise NotImplementedError

    async def execute(self) -> TradeResult:
        """
        Runs one cycle. Never raises: unexpected errors become a failed result.
        """
        try:
            result = await self.run_cycle()
        except Exception as e:
            self.logger.exception(f"❌ {self.name} cycle failed: {e}")
            result = self._failure("error", str(e) or type(e).__name__)

        self.last_result = result
        if self.audit_logger is not None:
            await self.audit_logger.log_result(result)
        return result

    def _failure(self, descriptor: str, error: str, volume: float = 0.0) -> TradeResult:
        return TradeResult(
            success=False, profit=0.0, volume=volume, strategy=self.name,
            descriptor=descriptor, timestamp=self.clock(), error=error,
        )


class SpiderStrategy(BaseStrategy):
    """
    Spreads small positions across many pools.
    Each cycle: guidance -> cross-venue -> scan -> filter -> manage open
    positions -> open new ones -> aggregate PnL.
    """
    name = "liquidity-spider"

    def __init__(self, config: EngineConfig, quotes: QuoteEngine, execution: ExecutionService,
                 risk: RiskEngine, notifier: RiskNotifier, logger: logging.Logger,
                 guidance_source: Optional[GuidanceSource] = None,
                 cross_venue: Optional[CrossVenueMonitor] = None,
                 audit_logger: Optional[AsyncAuditLogger] = None,
                 clock: Callable[[], float] = time.time):
        super().__init__(logger, audit_logger, clock)
        self.config = config
        self.cfg = config.spider
        self.quotes = quotes
        self.pools = list(self.cfg.pools)

        self.scan_gate = IntervalGate(self.cfg.scan_interval_seconds, clock)
        self.guidance_gate = IntervalGate(config.guidance.interval_seconds, clock)
        self.cross_venue_gate = IntervalGate(config.cross_venue.interval_seconds, clock)

        self.guidance_source = guidance_source
        self.cross_venue = cross_venue
        self.regime_label: Optional[str] = None
        self.cross_venue_opportunities: List[CrossVenueOpportunity] = []

        self.scanner = OpportunityScanner(quotes, self.scan_gate, self.cfg, config.quotes, logger)
        self.positions = PositionManager(self.name, quotes, execution, risk, notifier, self.cfg, logger, clock)
        self.guidance = GuidanceFilter(config.guidance, self.cfg, self.pools, self.positions.position_profit, logger)

    def should_activate(self, market_volume: float, market_volatility: float) -> bool:
        # Imbalances are easiest to read in calm markets
        return market_volume > self.cfg.min_volume and market_volatility < self.cfg.max_volatility

    async def poll_guidance(self) -> Optional[str]:
        """
        Consults the guidance source when its gate is open. The label is held
        across cycles: between polls the last answer keeps applying, and a
        poll that returns nothing clears it.
        """
        if self.guidance_source is None or not self.guidance_gate.try_acquire():
            return self.regime_label

        try:
            label = await self.guidance_source.advise(self.pools, self.config.guidance.slippage_bps)
        except Exception as e:
            self.logger.warning(f"⚠️ Guidance consultation failed: {e}")
            label = None

        if label:
            self.logger.info(f"🎯 Guidance recommends: {label.upper()}")
        self.regime_label = label
        return label

    async def poll_cross_venue(self) -> List[CrossVenueOpportunity]:
        if self.cross_venue is None or not self.cross_venue_gate.try_acquire():
            return self.cross_venue_opportunities

        price_map: Dict[str, float] = {}
        for token_a, token_b in self.config.cross_venue.reference_pairs:
            quote = await self.quotes.best_quote(token_a, token_b, 1.0)
            if quote is not None:
                price_map[token_a] = quote.out_amount

        try:
            found = await self.cross_venue.find(price_map, self.config.cross_venue.min_profit_bps)
        except Exception as e:
            self.logger.warning(f"⚠️ Cross-venue check failed: {e}")
            found = []

        for opp in found[:3]:
            self.logger.info(
                f"🌐 {opp.token}: {opp.profit_bps:.0f}bps via {opp.exchange} (~${opp.estimated_profit:.2f})"
            )
        self.cross_venue_opportunities = found
        return found

    async def run_cycle(self) -> TradeResult:
        label = await self.poll_guidance()
        cross = await self.poll_cross_venue()

        opportunities = await self.scanner.scan(self.pools)
        filtered = await self.guidance.filter(opportunities, self.positions.positions, label)

        # Exits first so capacity is measured against the current book
        closed = await self.positions.monitor()
        realized = sum(c.profit for c in closed if c.success)

        opened_volume = 0.0
        executed = False
        if self.positions.capacity > 0 and filtered:
            opened = await self.positions.open_positions(filtered)
            opened_volume = opened.volume
            executed = opened.executed

        unrealized = await self.positions.unrealized_pnl()
        open_count = len(self.positions.positions)
        stuck = len(self.positions.stuck_positions())

        descriptor = f"{open_count} positions | {len(filtered)} pool | {len(cross)} cross-venue"
        if stuck:
            descriptor += f" | {stuck} unreconciled"

        return TradeResult(
            success=executed or open_count > 0,
            profit=realized + unrealized,
            volume=opened_volume,
            strategy=self.name,
            descriptor=descriptor,
            timestamp=self.clock(),
        )


class TriangularStrategy(BaseStrategy):
    """
    Runs the fixed-cycle pipeline: analyze every configured path, execute the best one.
    """
    name = "triangular"

    def __init__(self, config: EngineConfig, quotes: QuoteEngine, execution: ExecutionService,
                 logger: logging.Logger, audit_logger: Optional[AsyncAuditLogger] = None,
                 clock: Callable[[], float] = time.time):
        super().__init__(logger, audit_logger, clock)
        self.cfg = config.triangular
        self.analyzer = PathAnalyzer(quotes, execution, self.cfg, config.quotes, logger)

    def should_activate(self, market_volume: float, market_volatility: float) -> bool:
        # Cycles only drift out of line when prices move
        return market_volatility > self.cfg.min_volatility and market_volume > self.cfg.min_volume

    async def run_cycle(self) -> TradeResult:
        path = await self.analyzer.find_best_path()
        if path is None:
            return self._failure("no-opportunity", "No profitable triangular path found")

        try:
            outcome = await self.analyzer.execute_path(path)
        except HopExecutionError as e:
            return self._failure(path.label, str(e), volume=path.trade_size)

        if not outcome.executed:
            return self._failure(path.label, "Path no longer clears the profit floor", volume=outcome.volume)

        return TradeResult(
            success=True,
            profit=outcome.profit,
            volume=outcome.volume,
            strategy=self.name,
            descriptor=path.label,
            timestamp=self.clock(),
        )
