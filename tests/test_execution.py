"""
Unit tests for swap execution and the interval gate
"""

import pytest
from unittest.mock import AsyncMock

from dexarb.execution import ExecutionService, min_amount_out
from dexarb.scheduler import IntervalGate


def test_min_amount_out():
    assert min_amount_out(100, 100) == pytest.approx(99)
    assert min_amount_out(100, 0) == 100


class TestExecutionService:

    @pytest.mark.asyncio
    async def test_dry_run_never_touches_gateway(self, gateway, logger):
        service = ExecutionService(gateway, logger, dry_run=True)

        result = await service.swap("GALA", "GUSDC", 5, 0.5, 3000, 100)

        assert result.success
        assert result.actual_amount_out == 0.5
        assert result.transaction_id.startswith("dry-run-")
        assert gateway.swaps == []

    @pytest.mark.asyncio
    async def test_live_swap_builds_request(self, execution, gateway):
        await execution.swap("GALA", "GUSDC", 5, 0.5, 3000, 100)

        request = gateway.swaps[0]
        assert request.amount_in == 5
        assert request.min_amount_out == pytest.approx(0.495)
        assert request.fee_tier == 3000
        assert request.slippage_bps == 100

    @pytest.mark.asyncio
    async def test_explicit_floor_wins(self, execution, gateway):
        await execution.swap("GALA", "GUSDC", 5, 0.5, 3000, 100, min_out=0.4)

        assert gateway.swaps[0].min_amount_out == 0.4

    @pytest.mark.asyncio
    async def test_gateway_exception_becomes_failed_result(self, execution, gateway):
        gateway.swap = AsyncMock(side_effect=RuntimeError("connection reset"))

        result = await execution.swap("GALA", "GUSDC", 5, 0.5, 3000, 100)

        assert not result.success
        assert result.error == "connection reset"


class TestIntervalGate:

    def test_first_acquire_always_succeeds(self, clock):
        gate = IntervalGate(30, clock)

        assert gate.since_last() is None
        assert gate.try_acquire()
        assert not gate.try_acquire()

    def test_reopens_after_interval(self, clock):
        gate = IntervalGate(30, clock)
        gate.try_acquire()

        clock.advance(29)
        assert not gate.ready()
        clock.advance(1)
        assert gate.ready()
        assert gate.since_last() == 30
