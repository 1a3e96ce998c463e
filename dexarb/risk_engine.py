# dexarb/risk_engine.py
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Dict, Optional

from .config import RiskConfig
from .models import RiskDecision


@dataclass
class ExposureEntry:
    token: str
    amount: float
    avg_price: float


class RiskEngine:
    """
    Portfolio-level risk overlay shared by all strategies.
    Decides 'Can we trade this size?' and tracks exposure per token.
    """
    def __init__(self, config: RiskConfig, logger: logging.Logger, clock: Callable[[], float] = time.time):
        self.cfg = config
        self.logger = logger
        self.clock = clock
        self.daily_pnl = 0.0
        self.consecutive_fails = 0
        self.kill_switch = False
        self.exposure: Dict[str, ExposureEntry] = {}
        self.trading_day = self._today()

    @property
    def total_exposure(self) -> float:
        return sum(e.amount * e.avg_price for e in self.exposure.values())

    async def check_trade_allowed(self, strategy: str, token_in: str, token_out: str,
                                  amount: float, slippage_bps: float) -> RiskDecision:
        self.roll_day()
        if self.kill_switch:
            return RiskDecision(False, reason="Kill switch active")

        # 1. Daily drawdown
        if self.daily_pnl <= -self.cfg.max_daily_loss:
            self.logger.critical(f"⛔ REJECTED: Max daily loss hit (${self.daily_pnl:.2f})")
            self.kill_switch = True
            return RiskDecision(False, reason=f"Daily loss limit exceeded: ${abs(self.daily_pnl):.2f}")

        # 2. Slippage budget
        if slippage_bps > self.cfg.max_slippage_bps:
            return RiskDecision(False, reason=f"Slippage too high: {slippage_bps}bps > {self.cfg.max_slippage_bps}bps")

        # 3. Concurrency
        if len(self.exposure) >= self.cfg.max_concurrent and token_out not in self.exposure:
            return RiskDecision(False, reason=f"Too many concurrent positions: {len(self.exposure)}")

        # 4. Sizing
        size = min(amount, self.cfg.max_position_size)
        size = min(size, self.cfg.max_portfolio_exposure - self.total_exposure)
        existing = self.exposure.get(token_out)
        if existing:
            size = min(size, self.cfg.max_position_size - existing.amount * existing.avg_price)

        if size <= 0:
            return RiskDecision(False, reason="Position size would exceed limits")

        self.logger.debug(f"RISK ALLOWED | {strategy} | {amount} {token_in} -> {token_out} | size {size}")
        return RiskDecision(True, adjusted_amount=size if size != amount else None)

    def update_position(self, token: str, amount: float, price: float, is_add: bool):
        """
        Applies a position delta. amount is in token units, price in quote units per token.
        """
        existing = self.exposure.get(token)
        if is_add:
            if existing:
                total = existing.amount + amount
                avg = (existing.avg_price * existing.amount + price * amount) / total if total else price
                self.exposure[token] = ExposureEntry(token, total, avg)
            else:
                self.exposure[token] = ExposureEntry(token, amount, price)
        elif existing:
            remaining = max(0.0, existing.amount - amount)
            if remaining == 0:
                del self.exposure[token]
            else:
                self.exposure[token] = ExposureEntry(token, remaining, existing.avg_price)

    def record_execution_result(self, success: bool, pnl_impact: float = 0.0):
        """
        Updates the internal state based on the result of an attempted trade.
        """
        self.daily_pnl += pnl_impact

        if success:
            self.consecutive_fails = 0
        else:
            self.consecutive_fails += 1
            if self.consecutive_fails >= self.cfg.max_consecutive_failures:
                self.logger.critical(f"⛔ KILL SWITCH ACTIVATED: {self.consecutive_fails} consecutive execution failures.")
                self.kill_switch = True

    def _today(self) -> date:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc).date()

    def roll_day(self):
        """Starts a fresh daily budget when the UTC date has changed."""
        today = self._today()
        if today == self.trading_day:
            return
        self.logger.info(f"📅 New trading day {today}: daily PnL {self.daily_pnl:.4f} reset")
        self.trading_day = today
        self.reset_daily()

    def reset_daily(self):
        self.daily_pnl = 0.0
        self.consecutive_fails = 0
        self.kill_switch = False


class RiskNotifier:
    """
    Fire-and-forget channel for position deltas.
    Delivery is at-most-once: a full queue or a failing update drops the
    notification, which only makes the overlay's exposure view less accurate.
    """
    def __init__(self, risk: RiskEngine, logger: logging.Logger, maxsize: int = 256):
        self.risk = risk
        self.logger = logger
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._worker_task: Optional[asyncio.Task] = None
        self.dropped = 0

    def start(self):
        if self._worker_task is None:
            self._worker_task = asyncio.create_task(self._worker())

    def notify(self, token: str, amount: float, price: float, is_add: bool):
        try:
            self._queue.put_nowait((token, amount, price, is_add))
        except asyncio.QueueFull:
            self.dropped += 1
            self.logger.warning(f"Risk notification dropped for {token} (queue full)")

    async def _worker(self):
        while True:
            token, amount, price, is_add = await self._queue.get()
            try:
                self.risk.update_position(token, amount, price, is_add)
            except Exception as e:
                self.dropped += 1
                self.logger.warning(f"Risk notification for {token} failed: {e}")
            finally:
                self._queue.task_done()

    async def drain(self):
        """Waits until every queued notification has been handled."""
        await self._queue.join()

    async def stop(self):
        if self._worker_task is None:
            return
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None
