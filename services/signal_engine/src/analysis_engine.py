"""
Technical analysis engine.

Fetches an asset's price history from a market-data collaborator and runs
the indicator calculator and score aggregator over it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from shared.config import Config
from shared.models import MarketSnapshot, PriceSample, SignalStrength
from shared.utils import utc_now

from .signal_scoring import (
    TechnicalScoreAggregator,
    TechnicalSignal,
    categorize_signal_strength,
)
from .technical_analysis import NEUTRAL_INDICATORS, IndicatorCalculator, IndicatorSet

logger = logging.getLogger(__name__)


class HistoricalSeriesProvider(Protocol):
    """Market-data collaborator supplying chronological price history."""

    async def get_price_history(self, symbol: str, days: int) -> Sequence[PriceSample]:
        ...


@dataclass(frozen=True)
class TechnicalAnalysis:
    """Technical analysis of one asset."""

    symbol: str
    indicators: IndicatorSet
    score: float
    signals: List[TechnicalSignal]
    strength_category: SignalStrength
    simplified: bool
    timestamp: datetime = field(default_factory=utc_now)


class TechnicalAnalysisEngine:
    """Orchestrates history retrieval, indicator calculation and scoring."""

    def __init__(
        self,
        provider: HistoricalSeriesProvider,
        history_days: int = 30,
        fetch_attempts: int = 3,
        retry_wait: float = 1.0,
        calculator: Optional[IndicatorCalculator] = None,
        aggregator: Optional[TechnicalScoreAggregator] = None,
    ):
        self.provider = provider
        self.history_days = history_days
        self.fetch_attempts = fetch_attempts
        self.retry_wait = retry_wait
        self.calculator = calculator or IndicatorCalculator()
        self.aggregator = aggregator or TechnicalScoreAggregator()

    @classmethod
    def from_config(
        cls, provider: HistoricalSeriesProvider, config: Config
    ) -> "TechnicalAnalysisEngine":
        technical_config = config.technical
        return cls(
            provider,
            history_days=technical_config.history_days,
            fetch_attempts=technical_config.fetch_attempts,
        )

    async def analyze(
        self, symbol: str, snapshot: Optional[MarketSnapshot] = None
    ) -> TechnicalAnalysis:
        """
        Perform technical analysis for a symbol.

        When the history cannot be fetched the analysis degrades to the
        simplified estimate from ``snapshot``, or to neutral readings when
        there is no snapshot either.

        Args:
            symbol: Asset symbol
            snapshot: Current market snapshot

        Returns:
            TechnicalAnalysis result

        Raises:
            InsufficientDataError: If the provider returns fewer than two samples
        """
        logger.info(f"Starting technical analysis for {symbol}")

        try:
            samples = await self._fetch_history(symbol)
        except Exception as e:
            logger.error(f"Failed to get historical data for {symbol}: {e}")
            if snapshot is not None and snapshot.current_price is not None:
                indicators = self.calculator.simplified_estimator.estimate(snapshot)
            else:
                indicators = NEUTRAL_INDICATORS
            return self._build(symbol, indicators)

        return self.analyze_series(symbol, samples, snapshot)

    def analyze_series(
        self,
        symbol: str,
        samples: Sequence[PriceSample],
        snapshot: Optional[MarketSnapshot] = None,
    ) -> TechnicalAnalysis:
        """Run the calculator and aggregator over an already fetched series."""
        indicators = self.calculator.calculate(samples, snapshot, symbol=symbol)
        analysis = self._build(symbol, indicators)
        logger.info(
            f"Technical analysis completed for {symbol}: score {analysis.score:.2f}"
            f"{' (simplified)' if analysis.simplified else ''}"
        )
        return analysis

    def _build(self, symbol: str, indicators: IndicatorSet) -> TechnicalAnalysis:
        technical_score = self.aggregator.score(indicators)
        return TechnicalAnalysis(
            symbol=symbol,
            indicators=indicators,
            score=technical_score.score,
            signals=technical_score.signals,
            strength_category=categorize_signal_strength(technical_score.score),
            simplified=indicators.simplified,
        )

    async def _fetch_history(self, symbol: str) -> Sequence[PriceSample]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.fetch_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=30),
            reraise=True,
        ):
            with attempt:
                return await self.provider.get_price_history(symbol, self.history_days)
        return []
