"""
Unit tests for triangular path analysis and execution
"""

import pytest

from dexarb.config import TriangularConfig
from dexarb.models import ArbitragePath, SwapResult
from dexarb.path_analyzer import (
    HopExecutionError,
    IncompletePathError,
    PathAnalyzer,
    PathStepError,
)

CYCLE = ["GUSDC", "GALA", "GUSDT", "GUSDC"]


def script_cycle(gateway, last_leg_rate=1.01):
    gateway.set_quote("GUSDC", "GALA", lambda x: x * 50)
    gateway.set_quote("GALA", "GUSDT", lambda x: x * 0.02)
    gateway.set_quote("GUSDT", "GUSDC", lambda x: x * last_leg_rate)


@pytest.fixture
def analyzer(quotes, execution, quote_config, logger):
    config = TriangularConfig(paths=[CYCLE, ["GUSDT", "GALA", "GUSDC", "GUSDT"]])
    return PathAnalyzer(quotes, execution, config, quote_config, logger)


class TestAnalyze:

    @pytest.mark.asyncio
    async def test_hops_chain_exact_outputs(self, analyzer, gateway):
        script_cycle(gateway)

        path = await analyzer.analyze(CYCLE)

        assert len(path.hops) == 3
        for prev, nxt in zip(path.hops, path.hops[1:]):
            assert nxt.amount_in == prev.quoted_out
        assert path.hops[0].amount_in == 15
        assert path.expected_profit == pytest.approx(0.15)
        assert path.profit_bps == pytest.approx(100)
        assert path.confidence == pytest.approx(0.6)
        assert path.label == "GUSDC→GALA→GUSDT→GUSDC"

    @pytest.mark.asyncio
    async def test_confidence_is_capped(self, analyzer, gateway):
        script_cycle(gateway, last_leg_rate=1.2)

        path = await analyzer.analyze(CYCLE)

        assert path.confidence == 0.9

    @pytest.mark.asyncio
    async def test_missing_pool_fails_the_step(self, analyzer, gateway):
        gateway.set_quote("GUSDC", "GALA", lambda x: x * 50)

        with pytest.raises(PathStepError, match="Path step 2"):
            await analyzer.analyze(CYCLE)

    @pytest.mark.asyncio
    async def test_open_cycle_is_rejected(self, analyzer):
        with pytest.raises(ValueError):
            await analyzer.analyze(["GUSDC", "GALA", "GUSDT"])


class TestFindBestPath:

    @pytest.mark.asyncio
    async def test_failing_path_is_skipped(self, analyzer, gateway):
        # Second configured path has no GUSDT->GALA pool
        script_cycle(gateway)

        best = await analyzer.find_best_path()

        assert best is not None
        assert best.tokens == CYCLE

    @pytest.mark.asyncio
    async def test_profit_below_floor_is_rejected(self, analyzer, gateway):
        """0.03 on 15 is 20bps: positive but under the 30bps floor"""
        script_cycle(gateway, last_leg_rate=1.002)

        assert await analyzer.find_best_path() is None

    @pytest.mark.asyncio
    async def test_losing_path_is_rejected(self, analyzer, gateway):
        script_cycle(gateway, last_leg_rate=0.99)

        assert await analyzer.find_best_path() is None


class TestExecutePath:

    @pytest.mark.asyncio
    async def test_executes_every_hop_in_order(self, analyzer, gateway):
        script_cycle(gateway)
        path = await analyzer.analyze(CYCLE)

        outcome = await analyzer.execute_path(path)

        assert outcome.executed
        assert outcome.profit == pytest.approx(0.15)
        assert outcome.volume == 15
        assert [(s.token_in, s.token_out) for s in gateway.swaps] == list(zip(CYCLE, CYCLE[1:]))
        assert gateway.swaps[1].amount_in == pytest.approx(750)
        assert gateway.swaps[2].min_amount_out == pytest.approx(15.15 * (1 - 40 / 10000))
        assert len(outcome.transaction_ids) == 3

    @pytest.mark.asyncio
    async def test_hop_failure_aborts_remaining_hops(self, analyzer, gateway):
        script_cycle(gateway)
        path = await analyzer.analyze(CYCLE)
        gateway.swap_results = [
            SwapResult(success=True, transaction_id="tx-a"),
            SwapResult(success=False, error="slippage exceeded"),
        ]

        with pytest.raises(HopExecutionError, match="hop 2") as exc_info:
            await analyzer.execute_path(path)

        assert len(gateway.swaps) == 2
        assert len(exc_info.value.completed) == 1
        assert exc_info.value.transaction_ids == ["tx-a"]

    @pytest.mark.asyncio
    async def test_floor_is_rechecked_before_swapping(self, analyzer, gateway):
        script_cycle(gateway)
        path = await analyzer.analyze(CYCLE)
        analyzer.cfg.min_profit_bps = 200

        outcome = await analyzer.execute_path(path)

        assert not outcome.executed
        assert gateway.swaps == []

    @pytest.mark.asyncio
    async def test_incomplete_path_is_refused(self, analyzer, gateway):
        path = ArbitragePath(tokens=CYCLE, hops=[], expected_profit=1.0, total_fees=0.0,
                             trade_size=15, confidence=0.9)

        with pytest.raises(IncompletePathError):
            await analyzer.execute_path(path)
        assert gateway.swaps == []
