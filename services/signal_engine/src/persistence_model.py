"""
Signal persistence model.

Estimates, for the short, medium and long horizons, the probability that a
trading signal keeps holding, from the signal's technical and fundamental
readings and the surrounding market context.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from shared.models import (
    HorizonPrediction,
    HorizonPredictions,
    MarketData,
    PersistenceFactor,
    SignalData,
)
from shared.utils import clamp

from .signal_scoring import map_macd_reading, map_rsi_reading

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HorizonDefinition:
    """Duration label and weighted factor families of a horizon."""

    duration: str
    factors: Tuple[Tuple[str, float], ...]


HORIZONS: Dict[str, HorizonDefinition] = {
    "short_term": HorizonDefinition(
        duration="1-4시간",
        factors=(("technical", 0.4), ("volume", 0.2), ("volatility", 0.15)),
    ),
    "medium_term": HorizonDefinition(
        duration="4-24시간",
        factors=(("technical", 0.4), ("fundamental", 0.35), ("market", 0.25)),
    ),
    "long_term": HorizonDefinition(
        duration="1-7일",
        factors=(("fundamental", 0.35), ("market", 0.25), ("correlation", 0.1)),
    ),
}

# Confidence gained by each factor family that is present
CONFIDENCE_INCREMENTS = {
    "technical": 0.3,
    "fundamental": 0.3,
    "market": 0.2,
    "volume": 0.1,
    "volatility": 0.1,
    "correlation": 0.1,
}


def _mean(values: List[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


class PersistencePredictor:
    """Rule-based multi-horizon persistence predictor."""

    def __init__(self, horizons: Optional[Dict[str, HorizonDefinition]] = None):
        self.horizons = horizons or HORIZONS
        self._factor_scorers: Dict[
            str, Callable[[SignalData, MarketData], Optional[float]]
        ] = {
            "technical": self.technical_factor,
            "fundamental": self.fundamental_factor,
            "market": self.market_factor,
            "volume": self.volume_factor,
            "volatility": self.volatility_factor,
            "correlation": self.correlation_factor,
        }

    def predict(
        self, signal: SignalData, market: Optional[MarketData] = None
    ) -> HorizonPredictions:
        """
        Predict persistence for every horizon.

        Args:
            signal: Signal descriptor
            market: Market context (absent fields are skipped)

        Returns:
            HorizonPredictions with probability, confidence and factor breakdown
        """
        market = market or MarketData()
        predictions = {
            name: self.predict_horizon(horizon, signal, market)
            for name, horizon in self.horizons.items()
        }
        logger.debug(
            "Raw persistence probabilities: "
            + ", ".join(f"{name}={p.probability:.3f}" for name, p in predictions.items())
        )
        return HorizonPredictions(**predictions)

    def predict_horizon(
        self, horizon: HorizonDefinition, signal: SignalData, market: MarketData
    ) -> HorizonPrediction:
        probability = 0.0
        confidence = 0.0
        factors: List[PersistenceFactor] = []

        for factor_type, weight in horizon.factors:
            score = self._factor_scorers[factor_type](signal, market)
            if score is None:
                continue
            score = clamp(score)
            probability += score * weight
            confidence += CONFIDENCE_INCREMENTS[factor_type]
            factors.append(PersistenceFactor(type=factor_type, score=score, weight=weight))

        return HorizonPrediction(
            probability=clamp(probability),
            confidence=clamp(confidence),
            duration=horizon.duration,
            factors=factors,
        )

    @staticmethod
    def technical_factor(signal: SignalData, market: MarketData) -> Optional[float]:
        technical = signal.technical
        if technical is None:
            return None
        return _mean(
            [
                None if technical.rsi is None else map_rsi_reading(technical.rsi),
                None if technical.macd is None else map_macd_reading(technical.macd),
                None if technical.bollinger is None else clamp(technical.bollinger),
                (
                    None
                    if technical.support_resistance is None
                    else clamp(technical.support_resistance)
                ),
            ]
        )

    @staticmethod
    def fundamental_factor(signal: SignalData, market: MarketData) -> Optional[float]:
        fundamental = signal.fundamental
        if fundamental is None:
            return None
        return _mean(
            [
                fundamental.news_sentiment,
                fundamental.social_sentiment,
                fundamental.whale_activity,
                fundamental.defi_activity,
            ]
        )

    @staticmethod
    def market_factor(signal: SignalData, market: MarketData) -> Optional[float]:
        return _mean([market.trend_strength, market.liquidity, market.time_of_day])

    @staticmethod
    def volume_factor(signal: SignalData, market: MarketData) -> Optional[float]:
        if signal.technical is None:
            return None
        return signal.technical.volume

    @staticmethod
    def volatility_factor(signal: SignalData, market: MarketData) -> Optional[float]:
        if market.volatility is None:
            return None
        return 1.0 - market.volatility

    @staticmethod
    def correlation_factor(signal: SignalData, market: MarketData) -> Optional[float]:
        return market.correlation
