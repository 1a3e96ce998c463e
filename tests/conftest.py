"""
Shared fixtures: a scripted in-memory gateway and a controllable clock.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest

from dexarb.config import QuoteConfig, RiskConfig, SpiderConfig, TriangularConfig
from dexarb.execution import ExecutionService
from dexarb.gateway import SwapGateway
from dexarb.models import Quote, SwapRequest, SwapResult
from dexarb.quote_engine import QuoteEngine
from dexarb.risk_engine import RiskEngine, RiskNotifier

QuoteRule = Union[float, Callable[[float], float], Exception, None]


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeGateway(SwapGateway):
    """
    Quotes come from a table keyed by (token_in, token_out, fee_tier).
    A rule is a fixed output, a function of amount_in, an exception to raise,
    or None for "no pool". Missing keys behave like None.
    """
    def __init__(self):
        self.quotes: Dict[Tuple[str, str, int], QuoteRule] = {}
        self.swap_results: List[SwapResult] = []
        self.swaps: List[SwapRequest] = []
        self.quote_calls = 0
        self.closed = False

    def set_quote(self, token_in: str, token_out: str, rule: QuoteRule, tiers=(500, 3000, 10000)):
        for tier in tiers:
            self.quotes[(token_in, token_out, tier)] = rule

    async def quote(self, token_in, token_out, amount_in, fee_tier) -> Optional[Quote]:
        self.quote_calls += 1
        rule = self.quotes.get((token_in, token_out, fee_tier))
        if rule is None:
            return None
        if isinstance(rule, Exception):
            raise rule
        out = rule(amount_in) if callable(rule) else rule
        return Quote(token_in, token_out, amount_in, out, fee_tier)

    async def swap(self, request: SwapRequest) -> SwapResult:
        self.swaps.append(request)
        if self.swap_results:
            return self.swap_results.pop(0)
        return SwapResult(success=True, transaction_id=f"tx-{len(self.swaps)}")

    async def close(self):
        self.closed = True


@pytest.fixture
def logger():
    return logging.getLogger("dexarb-tests")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def quote_config():
    """Caching off so tests can re-script quotes mid-test."""
    return QuoteConfig(cache_ttl_seconds=0)


@pytest.fixture
def quotes(gateway, quote_config, logger, clock):
    return QuoteEngine(gateway, quote_config, logger, clock)


@pytest.fixture
def execution(gateway, logger):
    return ExecutionService(gateway, logger, dry_run=False, wallet_address="client|test")


@pytest.fixture
def risk(logger):
    return RiskEngine(RiskConfig(), logger)


@pytest.fixture
def notifier(risk, logger):
    return RiskNotifier(risk, logger)


@pytest.fixture
def spider_config():
    return SpiderConfig()


@pytest.fixture
def triangular_config():
    return TriangularConfig()
