# dexarb/positions.py
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .config import SpiderConfig
from .execution import ExecutionService, min_amount_out
from .models import ClosedPosition, CloseReason, PoolOpportunity, Position, PositionState
from .quote_engine import QuoteEngine
from .risk_engine import RiskEngine, RiskNotifier


class ValuationError(RuntimeError):
    """The held quantity of a position could not be priced."""


@dataclass
class OpenPassResult:
    opened: List[Position]
    volume: float

    @property
    def executed(self) -> bool:
        return bool(self.opened)


class PositionManager:
    """
    Owns the open positions of one strategy instance.

    Positions move OPEN -> MONITORING -> CLOSED. At most one position exists
    per pool key; closing removes it from the live map even when the close
    swap fails. Failed closes are parked as UNRECONCILED and retried on later
    cycles; once retries run out they move to the abandoned list. Both lists
    hold positions by identity, since a pool key can be reused by a newer
    position while an older one is still stuck.
    """
    def __init__(self, strategy_name: str, quotes: QuoteEngine, execution: ExecutionService,
                 risk: RiskEngine, notifier: RiskNotifier, config: SpiderConfig, logger,
                 clock: Callable[[], float] = time.time):
        self.strategy_name = strategy_name
        self.quotes = quotes
        self.execution = execution
        self.risk = risk
        self.notifier = notifier
        self.cfg = config
        self.logger = logger
        self.clock = clock

        self.positions: Dict[str, Position] = {}
        self.unreconciled: List[Position] = []
        self.abandoned: List[Position] = []

    @property
    def capacity(self) -> int:
        return max(0, self.cfg.max_positions - len(self.positions))

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    async def current_value(self, position: Position) -> float:
        """
        Prices the exact held token_out quantity back into token_in.
        """
        quote = await self.quotes.best_quote(position.token_out, position.token_in, position.received)
        if quote is None:
            raise ValuationError(f"No quote for {position.received} {position.token_out} -> {position.token_in}")
        return quote.out_amount

    async def valuate(self, position: Position) -> Tuple[Optional[float], float]:
        """
        Returns (current value or None, unrealized profit) in token_in units.
        An unpriceable position is assumed to be losing a fixed small
        fraction of what was invested.
        """
        try:
            value = await self.current_value(position)
        except Exception as e:
            self.logger.warning(f"❌ Valuation failed for {position.pool_key}: {e}")
            return None, -position.invested * self.cfg.valuation_fallback_loss_pct / 100
        return value, value - position.invested

    async def position_profit(self, position: Position) -> float:
        _, profit = await self.valuate(position)
        return profit

    async def unrealized_pnl(self) -> float:
        total = 0.0
        for position in list(self.positions.values()):
            total += await self.position_profit(position)
        return total

    # ------------------------------------------------------------------
    # Exit evaluation
    # ------------------------------------------------------------------

    def close_reason(self, position: Position, profit: float, now: float) -> Optional[CloseReason]:
        profit_bps = profit / position.invested * 10000 if position.invested else 0.0

        # Favourable exit wins when several conditions hold at once
        if profit_bps >= position.target_profit_bps:
            return CloseReason.PROFIT_TARGET
        if profit_bps <= -position.stop_loss_bps:
            return CloseReason.STOP_LOSS
        if now - position.opened_at > self.cfg.max_hold_seconds:
            return CloseReason.MAX_HOLD
        return None

    async def monitor(self) -> List[ClosedPosition]:
        """
        Re-evaluates every open position and closes those meeting an exit
        condition. Also retries closes that previously failed.
        """
        # Closes that failed on an earlier cycle go first, before new failures are parked
        closed: List[ClosedPosition] = await self.retry_unreconciled()

        for key, position in list(self.positions.items()):
            try:
                value, profit = await self.valuate(position)
                reason = self.close_reason(position, profit, self.clock())
                if reason is None:
                    position.state = PositionState.MONITORING
                    continue

                closed.append(await self.close(key, position, reason, value))
            except Exception as e:
                self.logger.error(f"❌ Error managing position {key}: {e}")

        return closed

    # ------------------------------------------------------------------
    # Open / close
    # ------------------------------------------------------------------

    async def open_positions(self, opportunities: List[PoolOpportunity]) -> OpenPassResult:
        opened: List[Position] = []
        volume = 0.0

        for opp in opportunities[:self.capacity]:
            try:
                position = await self.open_position(opp)
            except Exception as e:
                self.logger.error(f"❌ Spider position {opp.pair} failed: {e}")
                continue
            if position is not None:
                opened.append(position)
                volume += position.invested

        return OpenPassResult(opened=opened, volume=volume)

    async def open_position(self, opp: PoolOpportunity) -> Optional[Position]:
        decision = await self.risk.check_trade_allowed(
            self.strategy_name, opp.token_a, opp.token_b,
            self.cfg.position_size, self.cfg.entry_slippage_bps,
        )
        if not decision.allowed:
            self.logger.info(f"🛑 Spider position {opp.pair} blocked: {decision.reason}")
            return None

        size = decision.adjusted_amount or self.cfg.position_size

        quote = await self.quotes.quote(opp.token_a, opp.token_b, size, opp.fee_tier)
        if quote is None:
            self.logger.info(f"Skipping {opp.pair}: no entry quote for {size}")
            return None

        result = await self.execution.swap(
            opp.token_a, opp.token_b, size, quote.out_amount, quote.fee_tier, self.cfg.entry_slippage_bps,
        )
        self.risk.record_execution_result(result.success)
        if not result.success:
            self.logger.warning(f"❌ Spider position {opp.pair} not opened: {result.error}")
            return None

        received = result.actual_amount_out or quote.out_amount
        key = opp.pair
        if key in self.positions:
            self.logger.warning(f"Position {key} already open; replacing it")

        position = Position(
            pool_key=key,
            token_in=opp.token_a,
            token_out=opp.token_b,
            invested=size,
            received=received,
            entry_price=size / received,
            opened_at=self.clock(),
            target_profit_bps=self.cfg.profit_target_bps,
            stop_loss=size * self.cfg.stop_loss_bps / 10000,
            stop_loss_bps=self.cfg.stop_loss_bps,
            fee_tier=quote.fee_tier,
        )
        self.positions[key] = position
        self.notifier.notify(opp.token_b, received, position.entry_price, True)

        self.logger.info(
            f"🕷️ Opened {key}: {size} {opp.token_a} -> {received:.6f} {opp.token_b} "
            f"(score {opp.risk_adjusted_score:.1f}, tx {result.transaction_id})"
        )
        return position

    async def close(self, key: str, position: Position, reason: CloseReason,
                    current_value: Optional[float]) -> ClosedPosition:
        """
        Sells the held quantity back with the wider exit tolerance.
        The position leaves the live map whatever the outcome.
        """
        self.logger.info(f"🕷️ Closing {key}: {reason.value}")
        if self.positions.get(key) is position:
            del self.positions[key]
        position.close_reason = reason

        if current_value is not None:
            expected = current_value
            floor = min_amount_out(current_value, self.cfg.exit_slippage_bps)
        else:
            # Unpriceable: accept the stop-loss floor rather than refuse to exit
            expected = position.invested
            floor = min_amount_out(position.invested - position.stop_loss, self.cfg.exit_slippage_bps)

        try:
            result = await self.execution.swap(
                position.token_out, position.token_in, position.received, expected,
                position.fee_tier, self.cfg.exit_slippage_bps, min_out=floor,
            )
        except Exception as e:
            result = None
            error = str(e)
        else:
            error = result.error

        if result is not None and result.success:
            received = result.actual_amount_out if result.actual_amount_out is not None else expected
            profit = received - position.invested
            position.state = PositionState.CLOSED
            self._unpark(position)
            self.risk.record_execution_result(True, profit)
            self.notifier.notify(position.token_out, position.received, position.entry_price, False)
            self.logger.info(f"✅ Closed {key}: profit {profit:.4f} {position.token_in}")
            return ClosedPosition(position, reason, profit, True, transaction_id=result.transaction_id)

        position.state = PositionState.UNRECONCILED
        position.close_attempts += 1
        self.risk.record_execution_result(False)
        self.logger.error(
            f"🚨 UNRECONCILED: close of {key} failed ({error}); "
            f"{position.received:.6f} {position.token_out} still held, attempt {position.close_attempts}"
        )

        if position.close_attempts > self.cfg.max_close_retries:
            self._unpark(position)
            self.abandoned.append(position)
            self.logger.critical(
                f"💀 Giving up on closing {key} after {position.close_attempts} attempts; operator action needed"
            )
        elif not any(p is position for p in self.unreconciled):
            self.unreconciled.append(position)
        return ClosedPosition(position, reason, 0.0, False, error=error)

    def _unpark(self, position: Position):
        # Identity, not equality: two stuck positions on one pool can compare equal
        self.unreconciled = [p for p in self.unreconciled if p is not position]

    async def retry_unreconciled(self) -> List[ClosedPosition]:
        results: List[ClosedPosition] = []
        for position in list(self.unreconciled):
            value, _ = await self.valuate(position)
            reason = position.close_reason or CloseReason.STOP_LOSS
            outcome = await self.close(position.pool_key, position, reason, value)
            if outcome.success:
                results.append(outcome)
        return results

    def stuck_positions(self) -> List[Position]:
        """Every position whose tokens are still held after a failed close."""
        return self.unreconciled + self.abandoned
