"""
Shared fixtures for the signal engine test suite.
"""

from typing import List

import pytest

from services.signal_engine.src.ai_advisory import AdvisoryAdjuster, AdvisoryChain
from services.signal_engine.src.signal_persistence import SignalPersistenceService
from shared.config import Config
from shared.models import PriceSample
from tests.fixtures.stubs import StubProvider, make_series


@pytest.fixture
def rising_series() -> List[PriceSample]:
    """Twenty samples rising linearly from 100 to 140."""
    return make_series([100.0 + 40.0 * i / 19 for i in range(20)])


@pytest.fixture
def falling_series() -> List[PriceSample]:
    """Twenty samples falling linearly from 140 to 100."""
    return make_series([140.0 - 40.0 * i / 19 for i in range(20)])


@pytest.fixture
def flat_series() -> List[PriceSample]:
    return make_series([100.0] * 20)


@pytest.fixture
def failing_chain() -> AdvisoryChain:
    """Chain in which every provider fails."""
    return AdvisoryChain(
        [
            StubProvider("openai", error=RuntimeError("rate limited")),
            StubProvider("anthropic", error=RuntimeError("overloaded")),
            StubProvider("local", error=ConnectionError("connection refused")),
        ],
        call_timeout=1.0,
        overall_timeout=5.0,
    )


@pytest.fixture
def json_provider() -> StubProvider:
    return StubProvider(
        "openai",
        response=(
            '{"adjustment": 0.1, "reasoning": "momentum confirmed by volume", '
            '"confidence": 0.8, "risk_factors": ["thin liquidity"], '
            '"opportunity_factors": ["breakout"]}'
        ),
    )


@pytest.fixture
def test_config() -> Config:
    return Config()


@pytest.fixture
def make_service(test_config):
    """Factory building a service around a given advisory chain."""

    def _make(chain: AdvisoryChain, **kwargs) -> SignalPersistenceService:
        return SignalPersistenceService(
            config=test_config, adjuster=AdvisoryAdjuster(chain), **kwargs
        )

    return _make
