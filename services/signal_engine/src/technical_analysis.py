"""
Technical Analysis Module

This module implements the technical indicators used by the signal engine
using Polars and NumPy: RSI, MACD, Bollinger Bands, moving averages,
support/resistance and volume analysis. Short series fall back to a
simplified estimator driven by the current market snapshot.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np
import polars as pl

from shared.models import MarketSnapshot, PriceSample
from shared.utils import clamp, safe_divide

from .exceptions import InsufficientDataError

logger = logging.getLogger(__name__)

MIN_SAMPLES = 2
FULL_ANALYSIS_SAMPLES = 14


class RSISignal(str, Enum):
    """RSI reading category."""

    OVERBOUGHT = "OVERBOUGHT"
    OVERSOLD = "OVERSOLD"
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class TrendDirection(str, Enum):
    """Trend direction enumeration."""

    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class BandPosition(str, Enum):
    """Price position relative to the Bollinger Bands."""

    ABOVE_UPPER = "ABOVE_UPPER"
    BELOW_LOWER = "BELOW_LOWER"
    UPPER_HALF = "UPPER_HALF"
    LOWER_HALF = "LOWER_HALF"
    MIDDLE = "MIDDLE"


class VolumeTrend(str, Enum):
    """Current volume relative to recent average."""

    HIGH = "HIGH"
    LOW = "LOW"
    NORMAL = "NORMAL"
    NEUTRAL = "NEUTRAL"


@dataclass(frozen=True)
class RSIResult:
    value: float
    signal: RSISignal
    strength: float


@dataclass(frozen=True)
class MACDResult:
    macd: float
    signal: float
    histogram: float
    trend: TrendDirection
    strength: float


@dataclass(frozen=True)
class BollingerResult:
    upper: float
    middle: float
    lower: float
    position: BandPosition
    strength: float


@dataclass(frozen=True)
class MovingAverageResult:
    sma20: float
    sma50: float
    ema12: float
    ema26: float
    trend: TrendDirection
    strength: float


@dataclass(frozen=True)
class SupportResistanceResult:
    support: float
    resistance: float
    strength: float


@dataclass(frozen=True)
class VolumeResult:
    trend: VolumeTrend
    strength: float
    ratio: float


@dataclass(frozen=True)
class IndicatorSet:
    """Immutable bundle of indicator readings for one asset.

    Any sub-record may be None when the set is assembled by hand; the score
    aggregator excludes absent indicators from its weighted mean.
    """

    rsi: Optional[RSIResult] = None
    macd: Optional[MACDResult] = None
    bollinger: Optional[BollingerResult] = None
    moving_averages: Optional[MovingAverageResult] = None
    support_resistance: Optional[SupportResistanceResult] = None
    volume_analysis: Optional[VolumeResult] = None
    current_price: float = 0.0
    simplified: bool = False


NEUTRAL_INDICATORS = IndicatorSet(
    rsi=RSIResult(value=50.0, signal=RSISignal.NEUTRAL, strength=0.5),
    macd=MACDResult(0.0, 0.0, 0.0, TrendDirection.NEUTRAL, 0.5),
    bollinger=BollingerResult(0.0, 0.0, 0.0, BandPosition.MIDDLE, 0.5),
    moving_averages=MovingAverageResult(0.0, 0.0, 0.0, 0.0, TrendDirection.NEUTRAL, 0.5),
    support_resistance=SupportResistanceResult(0.0, 0.0, 0.5),
    volume_analysis=VolumeResult(VolumeTrend.NEUTRAL, 0.5, 1.0),
    simplified=True,
)


class TechnicalIndicators:
    """Indicator primitives over a Polars frame with a ``price`` column."""

    @staticmethod
    def to_frame(samples: Sequence[PriceSample]) -> pl.DataFrame:
        """Build a chronological frame from price samples."""
        return pl.DataFrame(
            {
                "timestamp": [s.timestamp for s in samples],
                "price": [float(s.price) for s in samples],
                "volume": [float(s.volume) for s in samples],
                "market_cap": [float(s.market_cap) for s in samples],
            }
        )

    @staticmethod
    def sma(data: pl.DataFrame, period: int, column: str = "price") -> float:
        """Simple Moving Average over the trailing ``min(period, n)`` values."""
        return float(data[column].tail(period).mean())

    @staticmethod
    def ema(data: pl.DataFrame, period: int, column: str = "price") -> pl.DataFrame:
        """Exponential Moving Average seeded with the first value."""
        alpha = 2.0 / (period + 1)
        return data.with_columns(
            [pl.col(column).ewm_mean(alpha=alpha, adjust=False).alias(f"ema_{period}")]
        )

    @staticmethod
    def rsi(prices: np.ndarray, period: int = 14) -> float:
        """Relative Strength Index with Wilder smoothing."""
        deltas = np.diff(prices)
        gains = np.where(deltas > 0, deltas, 0.0)
        losses = np.where(deltas < 0, -deltas, 0.0)

        seed = min(period, len(deltas))
        avg_gain = float(gains[:seed].mean())
        avg_loss = float(losses[:seed].mean())

        for gain, loss in zip(gains[seed:], losses[seed:]):
            avg_gain = (avg_gain * (period - 1) + gain) / period
            avg_loss = (avg_loss * (period - 1) + loss) / period

        rs = avg_gain / max(avg_loss, 0.0001)
        return 100.0 - (100.0 / (1.0 + rs))

    @staticmethod
    def macd(
        data: pl.DataFrame,
        fast_period: int = 12,
        slow_period: int = 26,
        signal_period: int = 9,
        column: str = "price",
    ) -> pl.DataFrame:
        """MACD line, signal line and histogram at every point of the series."""
        fast_alpha = 2.0 / (fast_period + 1)
        slow_alpha = 2.0 / (slow_period + 1)
        signal_alpha = 2.0 / (signal_period + 1)

        return (
            data.with_columns(
                [
                    (
                        pl.col(column).ewm_mean(alpha=fast_alpha, adjust=False)
                        - pl.col(column).ewm_mean(alpha=slow_alpha, adjust=False)
                    ).alias("macd")
                ]
            )
            .with_columns(
                [
                    pl.col("macd")
                    .ewm_mean(alpha=signal_alpha, adjust=False)
                    .alias("macd_signal")
                ]
            )
            .with_columns(
                [(pl.col("macd") - pl.col("macd_signal")).alias("macd_histogram")]
            )
        )

    @staticmethod
    def bollinger_bands(
        data: pl.DataFrame, period: int = 20, std_dev: float = 2.0, column: str = "price"
    ) -> Tuple[float, float, float]:
        """Bollinger Bands over the trailing ``min(period, n)`` values.

        Returns ``(upper, middle, lower)``; the standard deviation is the
        population one.
        """
        window = data[column].tail(period).to_numpy()
        middle = float(window.mean())
        sigma = float(window.std())
        return middle + std_dev * sigma, middle, middle - std_dev * sigma


class IndicatorCalculator:
    """Computes an IndicatorSet from a price history and a market snapshot."""

    def __init__(
        self,
        rsi_period: int = 14,
        bollinger_period: int = 20,
        bollinger_std: float = 2.0,
        sr_window: int = 20,
        volume_window: int = 10,
    ):
        self.rsi_period = rsi_period
        self.bollinger_period = bollinger_period
        self.bollinger_std = bollinger_std
        self.sr_window = sr_window
        self.volume_window = volume_window
        self.indicators = TechnicalIndicators()
        self.simplified_estimator = SimplifiedEstimator()

    def calculate(
        self,
        samples: Sequence[PriceSample],
        snapshot: Optional[MarketSnapshot] = None,
        symbol: str = "UNKNOWN",
    ) -> IndicatorSet:
        """
        Calculate every indicator for a price series.

        Args:
            samples: Chronological price samples
            snapshot: Current market snapshot (fields fall back to the last sample)
            symbol: Asset symbol, used in errors and logs

        Returns:
            IndicatorSet (``simplified=True`` when the series is short)

        Raises:
            InsufficientDataError: If fewer than two samples are available
        """
        if len(samples) < MIN_SAMPLES:
            raise InsufficientDataError(symbol, len(samples), MIN_SAMPLES)

        snapshot = self._resolve_snapshot(samples, snapshot)

        if len(samples) < FULL_ANALYSIS_SAMPLES:
            logger.warning(
                f"Only {len(samples)} samples for {symbol}, using simplified analysis"
            )
            return self.simplified_estimator.estimate(snapshot)

        data = self.indicators.to_frame(samples)
        current_price = float(snapshot.current_price)

        return IndicatorSet(
            rsi=self.calculate_rsi(data),
            macd=self.calculate_macd(data),
            bollinger=self.calculate_bollinger(data, current_price),
            moving_averages=self.calculate_moving_averages(data, current_price),
            support_resistance=self.calculate_support_resistance(data, current_price),
            volume_analysis=self.analyze_volume(data, float(snapshot.total_volume)),
            current_price=current_price,
            simplified=False,
        )

    @staticmethod
    def _resolve_snapshot(
        samples: Sequence[PriceSample], snapshot: Optional[MarketSnapshot]
    ) -> MarketSnapshot:
        last = samples[-1]
        snapshot = snapshot or MarketSnapshot()
        return MarketSnapshot(
            current_price=(
                snapshot.current_price if snapshot.current_price is not None else last.price
            ),
            price_change_percentage_24h=snapshot.price_change_percentage_24h or 0.0,
            total_volume=(
                snapshot.total_volume if snapshot.total_volume is not None else last.volume
            ),
            market_cap=(
                snapshot.market_cap if snapshot.market_cap is not None else last.market_cap
            ),
        )

    def calculate_rsi(self, data: pl.DataFrame) -> RSIResult:
        value = self.indicators.rsi(data["price"].to_numpy(), self.rsi_period)

        if value >= 70:
            signal, strength = RSISignal.OVERBOUGHT, (value - 70) / 30
        elif value <= 30:
            signal, strength = RSISignal.OVERSOLD, (30 - value) / 30
        elif value > 50:
            signal, strength = RSISignal.BULLISH, (value - 50) / 20
        else:
            signal, strength = RSISignal.BEARISH, (50 - value) / 20

        return RSIResult(value=value, signal=signal, strength=clamp(strength))

    def calculate_macd(self, data: pl.DataFrame) -> MACDResult:
        latest = self.indicators.macd(data).tail(1)
        macd_line = float(latest["macd"][0])
        signal_line = float(latest["macd_signal"][0])
        histogram = float(latest["macd_histogram"][0])

        trend = TrendDirection.NEUTRAL
        strength = 0.5
        if macd_line > signal_line and histogram > 0:
            trend = TrendDirection.BULLISH
            strength = safe_divide(abs(histogram), abs(macd_line), 1.0)
        elif macd_line < signal_line and histogram < 0:
            trend = TrendDirection.BEARISH
            strength = safe_divide(abs(histogram), abs(macd_line), 1.0)

        return MACDResult(
            macd=macd_line,
            signal=signal_line,
            histogram=histogram,
            trend=trend,
            strength=clamp(strength),
        )

    def calculate_bollinger(self, data: pl.DataFrame, current_price: float) -> BollingerResult:
        upper, middle, lower = self.indicators.bollinger_bands(
            data, self.bollinger_period, self.bollinger_std
        )

        # 0.5 at the mean rising to 1.0 at either band; saturated beyond it
        if current_price > upper:
            position = BandPosition.ABOVE_UPPER
            strength = 1.0
        elif current_price < lower:
            position = BandPosition.BELOW_LOWER
            strength = 1.0
        elif current_price > middle:
            position = BandPosition.UPPER_HALF
            strength = 0.5 + 0.5 * safe_divide(current_price - middle, upper - middle)
        elif current_price < middle:
            position = BandPosition.LOWER_HALF
            strength = 0.5 + 0.5 * safe_divide(middle - current_price, middle - lower)
        else:
            position = BandPosition.MIDDLE
            strength = 0.5

        return BollingerResult(
            upper=upper, middle=middle, lower=lower, position=position, strength=clamp(strength)
        )

    def calculate_moving_averages(
        self, data: pl.DataFrame, current_price: float
    ) -> MovingAverageResult:
        sma20 = self.indicators.sma(data, 20)
        sma50 = self.indicators.sma(data, 50)
        emas = self.indicators.ema(self.indicators.ema(data, 12), 26).tail(1)
        ema12 = float(emas["ema_12"][0])
        ema26 = float(emas["ema_26"][0])

        trend = TrendDirection.NEUTRAL
        strength = 0.5
        if ema12 > ema26 and current_price > sma20:
            trend = TrendDirection.BULLISH
            strength = safe_divide(ema12 - ema26, ema26, 1.0)
        elif ema12 < ema26 and current_price < sma20:
            trend = TrendDirection.BEARISH
            strength = safe_divide(ema26 - ema12, ema26, 1.0)

        return MovingAverageResult(
            sma20=sma20,
            sma50=sma50,
            ema12=ema12,
            ema26=ema26,
            trend=trend,
            strength=clamp(strength),
        )

    def calculate_support_resistance(
        self, data: pl.DataFrame, current_price: float
    ) -> SupportResistanceResult:
        window = data["price"].tail(self.sr_window)
        support = float(window.min())
        resistance = float(window.max())
        price_range = resistance - support

        if price_range <= 0:
            strength = 0.5
        elif resistance - current_price < price_range * 0.1:
            strength = 0.8
        elif current_price - support < price_range * 0.1:
            strength = 0.2
        else:
            strength = 0.5

        return SupportResistanceResult(support=support, resistance=resistance, strength=strength)

    def analyze_volume(self, data: pl.DataFrame, current_volume: float) -> VolumeResult:
        average = float(data["volume"].tail(self.volume_window).mean())
        ratio = current_volume / (average or 1.0)
        return classify_volume_ratio(ratio, VolumeTrend.NORMAL)


def classify_volume_ratio(ratio: float, neutral: VolumeTrend) -> VolumeResult:
    """Map a volume ratio onto HIGH / LOW / ``neutral``."""
    if ratio > 2:
        return VolumeResult(VolumeTrend.HIGH, clamp((ratio - 2) / 3), ratio)
    if ratio < 0.5:
        return VolumeResult(VolumeTrend.LOW, clamp((0.5 - ratio) / 0.5), ratio)
    return VolumeResult(neutral, 0.5, ratio)


class SimplifiedEstimator:
    """Derives indicator readings from a market snapshot alone.

    Used when the price history is too short for the full calculations. The
    readings are coarse but deterministic and the estimator never fails.
    """

    def estimate(self, snapshot: MarketSnapshot) -> IndicatorSet:
        change = snapshot.price_change_percentage_24h or 0.0
        price = snapshot.current_price or 0.0
        volume_ratio = safe_divide(snapshot.total_volume or 0.0, snapshot.market_cap or 0.0)

        return IndicatorSet(
            rsi=self.estimate_rsi(change),
            macd=self.estimate_macd(change, volume_ratio),
            bollinger=self.estimate_bollinger(price, change),
            moving_averages=self.estimate_moving_averages(price, change),
            support_resistance=self.estimate_support_resistance(price, change),
            volume_analysis=classify_volume_ratio(volume_ratio, VolumeTrend.NEUTRAL),
            current_price=price,
            simplified=True,
        )

    @staticmethod
    def estimate_rsi(change: float) -> RSIResult:
        magnitude = abs(change)
        if change > 0:
            if magnitude >= 15:
                return RSIResult(80.0, RSISignal.OVERBOUGHT, 0.8)
            if magnitude >= 10:
                return RSIResult(70.0, RSISignal.BULLISH, 0.6)
            if magnitude >= 5:
                return RSIResult(60.0, RSISignal.BULLISH, 0.4)
            return RSIResult(55.0, RSISignal.BULLISH, 0.2)

        if magnitude >= 15:
            return RSIResult(20.0, RSISignal.OVERSOLD, 0.8)
        if magnitude >= 10:
            return RSIResult(30.0, RSISignal.BEARISH, 0.6)
        if magnitude >= 5:
            return RSIResult(40.0, RSISignal.BEARISH, 0.4)
        return RSIResult(45.0, RSISignal.BEARISH, 0.2)

    @staticmethod
    def estimate_macd(change: float, volume_ratio: float) -> MACDResult:
        momentum = change * volume_ratio
        if momentum > 10:
            return MACDResult(0.01, 0.005, 0.005, TrendDirection.BULLISH, 0.7)
        if momentum < -10:
            return MACDResult(-0.01, -0.005, -0.005, TrendDirection.BEARISH, 0.7)
        if momentum > 0:
            return MACDResult(0.005, 0.002, 0.003, TrendDirection.BULLISH, 0.4)
        return MACDResult(-0.005, -0.002, -0.003, TrendDirection.BEARISH, 0.4)

    @staticmethod
    def estimate_bollinger(price: float, change: float) -> BollingerResult:
        width = abs(change) / 100 * 2
        upper = price * (1 + width)
        lower = price * (1 - width)

        position = BandPosition.MIDDLE
        strength = 0.5
        if price > upper * 0.95:
            position, strength = BandPosition.ABOVE_UPPER, 0.8
        elif price < lower * 1.05:
            position, strength = BandPosition.BELOW_LOWER, 0.8

        return BollingerResult(upper, price, lower, position, strength)

    @staticmethod
    def estimate_moving_averages(price: float, change: float) -> MovingAverageResult:
        drift = change / 100
        sma20 = price * (1 - drift * 0.5)
        sma50 = price * (1 - drift * 0.3)
        ema12 = price * (1 - drift * 0.2)
        ema26 = price * (1 - drift * 0.1)

        trend = TrendDirection.NEUTRAL
        if ema12 > ema26 and price > sma20:
            trend = TrendDirection.BULLISH
        elif ema12 < ema26 and price < sma20:
            trend = TrendDirection.BEARISH
        strength = 0.5 if trend is TrendDirection.NEUTRAL else 0.6

        return MovingAverageResult(sma20, sma50, ema12, ema26, trend, strength)

    @staticmethod
    def estimate_support_resistance(price: float, change: float) -> SupportResistanceResult:
        spread = abs(change) / 100 * 1.5
        return SupportResistanceResult(
            support=price * (1 - spread), resistance=price * (1 + spread), strength=0.5
        )
