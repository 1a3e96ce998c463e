"""
Unit tests for the risk overlay and its notification channel
"""

import pytest
from unittest.mock import Mock

from dexarb.config import RiskConfig
from dexarb.risk_engine import RiskEngine, RiskNotifier


class TestCheckTradeAllowed:

    @pytest.mark.asyncio
    async def test_allows_within_limits(self, risk):
        decision = await risk.check_trade_allowed("s", "GALA", "GUSDC", 5, 100)

        assert decision.allowed
        assert decision.adjusted_amount is None

    @pytest.mark.asyncio
    async def test_daily_loss_trips_kill_switch(self, risk):
        risk.record_execution_result(True, -60)

        decision = await risk.check_trade_allowed("s", "GALA", "GUSDC", 5, 100)

        assert not decision.allowed
        assert risk.kill_switch
        assert not (await risk.check_trade_allowed("s", "GALA", "GUSDC", 5, 100)).allowed

    @pytest.mark.asyncio
    async def test_slippage_budget(self, risk):
        decision = await risk.check_trade_allowed("s", "GALA", "GUSDC", 5, 500)

        assert not decision.allowed
        assert "Slippage" in decision.reason

    @pytest.mark.asyncio
    async def test_size_is_clamped(self, logger):
        risk = RiskEngine(RiskConfig(max_position_size=3), logger)

        decision = await risk.check_trade_allowed("s", "GALA", "GUSDC", 5, 100)

        assert decision.allowed
        assert decision.adjusted_amount == 3

    @pytest.mark.asyncio
    async def test_full_token_exposure_blocks(self, risk):
        risk.update_position("GUSDC", 1.0, 100.0, True)

        decision = await risk.check_trade_allowed("s", "GALA", "GUSDC", 5, 100)

        assert not decision.allowed

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, logger):
        risk = RiskEngine(RiskConfig(max_concurrent=1), logger)
        risk.update_position("GUSDT", 1.0, 1.0, True)

        assert not (await risk.check_trade_allowed("s", "GALA", "GUSDC", 5, 100)).allowed
        assert (await risk.check_trade_allowed("s", "GALA", "GUSDT", 5, 100)).allowed


class TestBookkeeping:

    def test_consecutive_failures_trip_kill_switch(self, risk):
        for _ in range(4):
            risk.record_execution_result(False)
        assert not risk.kill_switch

        risk.record_execution_result(False)
        assert risk.kill_switch

        risk.reset_daily()
        assert not risk.kill_switch

    def test_success_resets_failure_streak(self, risk):
        risk.record_execution_result(False)
        risk.record_execution_result(True, 0.5)

        assert risk.consecutive_fails == 0
        assert risk.daily_pnl == 0.5

    def test_exposure_add_and_remove(self, risk):
        risk.update_position("GUSDC", 2.0, 1.0, True)
        risk.update_position("GUSDC", 2.0, 2.0, True)
        assert risk.exposure["GUSDC"].avg_price == pytest.approx(1.5)

        risk.update_position("GUSDC", 4.0, 2.0, False)
        assert "GUSDC" not in risk.exposure


class TestRiskNotifier:

    @pytest.mark.asyncio
    async def test_full_queue_drops_notification(self, risk, logger):
        notifier = RiskNotifier(risk, logger, maxsize=1)

        notifier.notify("GUSDC", 1.0, 1.0, True)
        notifier.notify("GUSDT", 1.0, 1.0, True)

        assert notifier.dropped == 1

    @pytest.mark.asyncio
    async def test_failing_update_is_dropped(self, risk, logger):
        notifier = RiskNotifier(risk, logger)
        notifier.start()
        risk.update_position = Mock(side_effect=RuntimeError("bad"))

        notifier.notify("GUSDC", 1.0, 1.0, True)
        await notifier.drain()
        await notifier.stop()

        assert notifier.dropped == 1


class TestDailyRollover:

    @pytest.mark.asyncio
    async def test_new_utc_day_clears_daily_budget(self, logger, clock):
        risk = RiskEngine(RiskConfig(), logger, clock)
        risk.record_execution_result(True, -60)
        assert not (await risk.check_trade_allowed("s", "GALA", "GUSDC", 5, 100)).allowed

        clock.advance(3600)
        assert not (await risk.check_trade_allowed("s", "GALA", "GUSDC", 5, 100)).allowed

        clock.advance(86400)
        decision = await risk.check_trade_allowed("s", "GALA", "GUSDC", 5, 100)

        assert decision.allowed
        assert risk.daily_pnl == 0.0
        assert not risk.kill_switch

    def test_roll_day_is_idempotent_within_a_day(self, logger, clock):
        risk = RiskEngine(RiskConfig(), logger, clock)
        risk.record_execution_result(True, -10)

        risk.roll_day()

        assert risk.daily_pnl == -10
