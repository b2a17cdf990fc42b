"""
Signal scoring.

Turns indicator readings into a composite technical score with discrete
BUY/SELL signals, classifies scalar strengths into ordinal categories and
computes the overall strength of a caller-supplied signal descriptor.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from shared.models import MarketData, SignalData, SignalStrength, SignalType
from shared.utils import clamp, weighted_mean

from .technical_analysis import (
    BandPosition,
    BollingerResult,
    IndicatorSet,
    MACDResult,
    MovingAverageResult,
    RSIResult,
    RSISignal,
    SupportResistanceResult,
    TrendDirection,
    VolumeResult,
    VolumeTrend,
)

logger = logging.getLogger(__name__)

INDICATOR_WEIGHTS = {
    "rsi": 0.25,
    "macd": 0.25,
    "bollinger": 0.20,
    "moving_averages": 0.15,
    "support_resistance": 0.10,
    "volume": 0.05,
}

TECHNICAL_WEIGHTS = {
    "rsi": 0.15,
    "macd": 0.20,
    "bollinger": 0.15,
    "volume": 0.25,
    "support_resistance": 0.25,
}

FUNDAMENTAL_WEIGHTS = {
    "news_sentiment": 0.30,
    "social_sentiment": 0.25,
    "whale_activity": 0.20,
    "defi_activity": 0.15,
    "market_cap": 0.10,
}

MARKET_WEIGHTS = {
    "volatility": 0.20,
    "trend_strength": 0.25,
    "correlation": 0.15,
    "liquidity": 0.20,
    "time_of_day": 0.20,
}

# Share of each component in a descriptor's overall strength
STRENGTH_COMPONENT_WEIGHTS = {
    "declared": 0.50,
    "technical": 0.20,
    "fundamental": 0.15,
    "market": 0.15,
}


@dataclass(frozen=True)
class TechnicalSignal:
    """Discrete signal emitted by a single indicator."""

    type: SignalType
    indicator: str
    strength: float


@dataclass(frozen=True)
class TechnicalScore:
    """Composite technical score in [0, 1] with the signals behind it."""

    score: float
    signals: List[TechnicalSignal] = field(default_factory=list)


def categorize_signal_strength(strength: float) -> SignalStrength:
    """
    Classify a scalar strength into an ordinal category.

    Args:
        strength: Strength value, nominally in [0, 1]

    Returns:
        weak (< 0.3), moderate (< 0.6), strong (< 0.8) or very_strong
    """
    if strength < 0.3:
        return SignalStrength.WEAK
    if strength < 0.6:
        return SignalStrength.MODERATE
    if strength < 0.8:
        return SignalStrength.STRONG
    return SignalStrength.VERY_STRONG


class TechnicalScoreAggregator:
    """Weighted aggregation of indicator readings into a technical score."""

    def __init__(self, weights: Optional[Dict[str, float]] = None):
        self.weights = weights or dict(INDICATOR_WEIGHTS)

    def score(self, indicators: IndicatorSet) -> TechnicalScore:
        """Composite score plus the BUY/SELL signals implied by the indicators."""
        price = indicators.current_price
        components = [
            (self._optional(indicators.rsi, self.rsi_score), self.weights["rsi"]),
            (self._optional(indicators.macd, self.macd_score), self.weights["macd"]),
            (
                self._optional(indicators.bollinger, self.bollinger_score),
                self.weights["bollinger"],
            ),
            (
                self._optional(
                    indicators.moving_averages, lambda ma: self.moving_average_score(ma, price)
                ),
                self.weights["moving_averages"],
            ),
            (
                self._optional(
                    indicators.support_resistance,
                    lambda sr: self.support_resistance_score(sr, price),
                ),
                self.weights["support_resistance"],
            ),
            (
                self._optional(indicators.volume_analysis, self.volume_score),
                self.weights["volume"],
            ),
        ]

        composite = weighted_mean(components)
        if composite is None:
            composite = 0.5

        return TechnicalScore(score=clamp(composite), signals=self.generate_signals(indicators))

    @staticmethod
    def _optional(reading, scorer) -> Optional[float]:
        return None if reading is None else scorer(reading)

    @staticmethod
    def rsi_score(rsi: RSIResult) -> float:
        if rsi.signal is RSISignal.OVERSOLD:
            return 0.8
        if rsi.signal is RSISignal.OVERBOUGHT:
            return 0.2
        if rsi.signal is RSISignal.BULLISH:
            return 0.6 + rsi.strength * 0.2
        if rsi.signal is RSISignal.BEARISH:
            return 0.4 - rsi.strength * 0.2
        return 0.5

    @staticmethod
    def macd_score(macd: MACDResult) -> float:
        if macd.trend is TrendDirection.BULLISH:
            return 0.6 + macd.strength * 0.3
        if macd.trend is TrendDirection.BEARISH:
            return 0.4 - macd.strength * 0.3
        return 0.5

    @staticmethod
    def bollinger_score(bollinger: BollingerResult) -> float:
        return {
            BandPosition.BELOW_LOWER: 0.8,
            BandPosition.ABOVE_UPPER: 0.2,
            BandPosition.UPPER_HALF: 0.6,
            BandPosition.LOWER_HALF: 0.4,
        }.get(bollinger.position, 0.5)

    @staticmethod
    def moving_average_score(ma: MovingAverageResult, current_price: float) -> float:
        if ma.trend is TrendDirection.BULLISH and current_price > ma.sma20:
            return 0.7 + ma.strength * 0.2
        if ma.trend is TrendDirection.BEARISH and current_price < ma.sma20:
            return 0.3 - ma.strength * 0.2
        return 0.5

    @staticmethod
    def support_resistance_score(sr: SupportResistanceResult, current_price: float) -> float:
        price_range = sr.resistance - sr.support
        if price_range <= 0:
            return 0.5
        position = (current_price - sr.support) / price_range
        if position < 0.2:
            return 0.8
        if position > 0.8:
            return 0.2
        return 0.5

    @staticmethod
    def volume_score(volume: VolumeResult) -> float:
        if volume.trend is VolumeTrend.HIGH:
            return 0.7 + volume.strength * 0.2
        if volume.trend is VolumeTrend.LOW:
            return 0.3 - volume.strength * 0.2
        return 0.5

    @staticmethod
    def generate_signals(indicators: IndicatorSet) -> List[TechnicalSignal]:
        signals: List[TechnicalSignal] = []

        rsi = indicators.rsi
        if rsi is not None:
            if rsi.signal is RSISignal.OVERSOLD:
                signals.append(TechnicalSignal(SignalType.BUY, "RSI", rsi.strength))
            elif rsi.signal is RSISignal.OVERBOUGHT:
                signals.append(TechnicalSignal(SignalType.SELL, "RSI", rsi.strength))

        macd = indicators.macd
        if macd is not None:
            if macd.trend is TrendDirection.BULLISH and macd.histogram > 0:
                signals.append(TechnicalSignal(SignalType.BUY, "MACD", macd.strength))
            elif macd.trend is TrendDirection.BEARISH and macd.histogram < 0:
                signals.append(TechnicalSignal(SignalType.SELL, "MACD", macd.strength))

        bollinger = indicators.bollinger
        if bollinger is not None:
            if bollinger.position is BandPosition.BELOW_LOWER:
                signals.append(TechnicalSignal(SignalType.BUY, "BOLLINGER", bollinger.strength))
            elif bollinger.position is BandPosition.ABOVE_UPPER:
                signals.append(TechnicalSignal(SignalType.SELL, "BOLLINGER", bollinger.strength))

        return signals


def map_rsi_reading(rsi: float) -> float:
    """Persistence reading of a raw RSI value."""
    if rsi < 30:
        return 0.8
    if rsi > 70:
        return 0.2
    return 0.5


def map_macd_reading(macd: float) -> float:
    """Persistence reading of a raw MACD value."""
    return 0.7 if macd > 0 else 0.3


@dataclass(frozen=True)
class StrengthBreakdown:
    """Components of a signal descriptor's overall strength."""

    declared: float
    technical: Optional[float]
    fundamental: Optional[float]
    market: Optional[float]
    overall: float
    category: SignalStrength

    def to_dict(self) -> Dict[str, object]:
        return {
            "declared": self.declared,
            "technical": self.technical,
            "fundamental": self.fundamental,
            "market": self.market,
            "overall": self.overall,
            "category": self.category.value,
        }


class SignalStrengthCalculator:
    """Overall strength of a signal descriptor in its market context.

    Each component is a mean over the sub-fields that are present; absent
    sub-fields and absent components drop out of the denominators.
    """

    def technical_strength(self, signal: SignalData) -> Optional[float]:
        technical = signal.technical
        if technical is None:
            return None

        readings = {
            "rsi": None if technical.rsi is None else map_rsi_reading(technical.rsi),
            "macd": None if technical.macd is None else map_macd_reading(technical.macd),
            "bollinger": None if technical.bollinger is None else clamp(technical.bollinger),
            "volume": None if technical.volume is None else clamp(technical.volume),
            "support_resistance": (
                None
                if technical.support_resistance is None
                else clamp(technical.support_resistance)
            ),
        }
        return weighted_mean(
            (readings[name], weight) for name, weight in TECHNICAL_WEIGHTS.items()
        )

    def fundamental_strength(self, signal: SignalData) -> Optional[float]:
        fundamental = signal.fundamental
        if fundamental is None:
            return None

        return weighted_mean(
            (
                None
                if getattr(fundamental, name) is None
                else clamp(getattr(fundamental, name)),
                weight,
            )
            for name, weight in FUNDAMENTAL_WEIGHTS.items()
        )

    def market_strength(self, market: Optional[MarketData]) -> Optional[float]:
        if market is None:
            return None

        readings = {
            "volatility": None if market.volatility is None else 1.0 - market.volatility,
            "trend_strength": market.trend_strength,
            "correlation": market.correlation,
            "liquidity": market.liquidity,
            "time_of_day": market.time_of_day,
        }
        return weighted_mean(
            (readings[name], weight) for name, weight in MARKET_WEIGHTS.items()
        )

    def calculate(
        self, signal: SignalData, market: Optional[MarketData] = None
    ) -> StrengthBreakdown:
        """
        Compute the strength breakdown of a signal.

        Args:
            signal: Signal descriptor
            market: Market context, if any

        Returns:
            StrengthBreakdown with the overall strength and its category
        """
        technical = self.technical_strength(signal)
        fundamental = self.fundamental_strength(signal)
        market_score = self.market_strength(market)

        overall = weighted_mean(
            [
                (signal.strength, STRENGTH_COMPONENT_WEIGHTS["declared"]),
                (technical, STRENGTH_COMPONENT_WEIGHTS["technical"]),
                (fundamental, STRENGTH_COMPONENT_WEIGHTS["fundamental"]),
                (market_score, STRENGTH_COMPONENT_WEIGHTS["market"]),
            ]
        )
        overall = clamp(overall if overall is not None else signal.strength)

        logger.debug(
            f"Signal strength: declared={signal.strength:.3f} technical={technical} "
            f"fundamental={fundamental} market={market_score} overall={overall:.3f}"
        )

        return StrengthBreakdown(
            declared=signal.strength,
            technical=technical,
            fundamental=fundamental,
            market=market_score,
            overall=overall,
            category=categorize_signal_strength(overall),
        )
