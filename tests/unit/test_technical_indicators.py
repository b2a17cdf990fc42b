"""
Unit tests for technical indicators.

This module tests the indicator primitives and the indicator calculator,
including the simplified estimator used for short price histories.
"""

import numpy as np
import polars as pl
import pytest

from services.signal_engine.src.exceptions import InsufficientDataError
from services.signal_engine.src.technical_analysis import (
    BandPosition,
    IndicatorCalculator,
    RSISignal,
    SimplifiedEstimator,
    TechnicalIndicators,
    TrendDirection,
    VolumeTrend,
)
from shared.models import MarketSnapshot
from tests.fixtures.stubs import make_series


class TestTechnicalIndicators:
    """Test indicator primitives."""

    @pytest.fixture
    def sample_price_data(self):
        """Create a reproducible random-walk price frame."""
        np.random.seed(42)

        prices = [100.0]
        for ret in np.random.normal(0.001, 0.02, 100):
            prices.append(prices[-1] * (1 + ret))

        return TechnicalIndicators.to_frame(make_series(prices))

    @pytest.mark.unit
    def test_rsi_bounds(self, sample_price_data):
        """RSI stays within [0, 100] on arbitrary data."""
        prices = sample_price_data["price"].to_numpy()
        for end in range(2, len(prices) + 1, 7):
            value = TechnicalIndicators.rsi(prices[:end], period=14)
            assert 0.0 <= value <= 100.0

    @pytest.mark.unit
    def test_rsi_extremes(self):
        """Monotone series push RSI to the extremes."""
        assert TechnicalIndicators.rsi(np.arange(1.0, 30.0)) > 99.0
        assert TechnicalIndicators.rsi(np.arange(30.0, 1.0, -1.0)) < 1.0

    @pytest.mark.unit
    def test_ema_seeded_with_first_value(self, sample_price_data):
        result = TechnicalIndicators.ema(sample_price_data, period=12)

        assert "ema_12" in result.columns
        ema_values = result["ema_12"]
        assert ema_values[0] == pytest.approx(sample_price_data["price"][0])
        assert ema_values.null_count() == 0

    @pytest.mark.unit
    def test_macd_histogram_is_line_minus_signal(self, sample_price_data):
        result = TechnicalIndicators.macd(sample_price_data)

        for column in ("macd", "macd_signal", "macd_histogram"):
            assert column in result.columns

        check = result.select(
            (pl.col("macd_histogram") - (pl.col("macd") - pl.col("macd_signal")))
            .abs()
            .max()
        ).item()
        assert check < 1e-9

    @pytest.mark.unit
    def test_bollinger_bands_ordering(self, sample_price_data):
        upper, middle, lower = TechnicalIndicators.bollinger_bands(sample_price_data)

        assert lower < middle < upper
        expected_middle = sample_price_data["price"].tail(20).mean()
        assert middle == pytest.approx(expected_middle)

    @pytest.mark.unit
    def test_sma_uses_available_window(self):
        data = TechnicalIndicators.to_frame(make_series([10.0, 20.0, 30.0]))
        assert TechnicalIndicators.sma(data, 50) == pytest.approx(20.0)
        assert TechnicalIndicators.sma(data, 2) == pytest.approx(25.0)


class TestIndicatorCalculator:
    """Test the indicator calculator over full histories."""

    @pytest.fixture
    def calculator(self):
        return IndicatorCalculator()

    @pytest.mark.unit
    def test_rising_series_readings(self, calculator, rising_series):
        """A steady rise from 100 to 140 reads as overbought and bullish."""
        indicators = calculator.calculate(rising_series, MarketSnapshot(current_price=140.0))

        assert indicators.simplified is False
        assert indicators.rsi.value > 70
        assert indicators.rsi.signal is RSISignal.OVERBOUGHT
        assert indicators.macd.trend is TrendDirection.BULLISH
        assert indicators.macd.histogram > 0
        assert indicators.bollinger.position in (BandPosition.UPPER_HALF, BandPosition.ABOVE_UPPER)
        assert indicators.bollinger.strength > 0.9
        assert indicators.moving_averages.trend is TrendDirection.BULLISH

    @pytest.mark.unit
    def test_price_above_upper_band(self, calculator, rising_series):
        indicators = calculator.calculate(rising_series, MarketSnapshot(current_price=150.0))

        assert indicators.bollinger.position is BandPosition.ABOVE_UPPER
        assert 0.0 < indicators.bollinger.strength <= 1.0

    @pytest.mark.unit
    def test_falling_series_readings(self, calculator, falling_series):
        indicators = calculator.calculate(falling_series)

        assert indicators.rsi.signal is RSISignal.OVERSOLD
        assert indicators.macd.trend is TrendDirection.BEARISH
        assert indicators.bollinger.position in (BandPosition.LOWER_HALF, BandPosition.BELOW_LOWER)
        assert indicators.moving_averages.trend is TrendDirection.BEARISH

    @pytest.mark.unit
    def test_flat_series_is_middle_band(self, calculator, flat_series):
        indicators = calculator.calculate(flat_series)

        assert indicators.bollinger.position is BandPosition.MIDDLE
        assert indicators.bollinger.strength == 0.5
        assert indicators.support_resistance.strength == 0.5

    @pytest.mark.unit
    def test_snapshot_falls_back_to_last_sample(self, calculator, rising_series):
        indicators = calculator.calculate(rising_series)

        assert indicators.current_price == pytest.approx(140.0)
        # Last sample volume equals the trailing average
        assert indicators.volume_analysis.trend is VolumeTrend.NORMAL
        assert indicators.volume_analysis.ratio == pytest.approx(1.0)

    @pytest.mark.unit
    def test_high_volume(self, calculator, rising_series):
        snapshot = MarketSnapshot(current_price=140.0, total_volume=5_000_000.0)
        indicators = calculator.calculate(rising_series, snapshot)

        assert indicators.volume_analysis.trend is VolumeTrend.HIGH
        assert indicators.volume_analysis.strength == pytest.approx(1.0)

    @pytest.mark.unit
    def test_price_near_resistance(self, calculator, rising_series):
        indicators = calculator.calculate(rising_series)

        assert indicators.support_resistance.support == pytest.approx(100.0)
        assert indicators.support_resistance.resistance == pytest.approx(140.0)
        assert indicators.support_resistance.strength == 0.8

    @pytest.mark.unit
    def test_strengths_are_bounded(self, calculator):
        np.random.seed(7)
        prices = 100 * np.cumprod(1 + np.random.normal(0, 0.05, 60))
        indicators = calculator.calculate(make_series(list(prices)))

        for reading in (
            indicators.rsi,
            indicators.macd,
            indicators.bollinger,
            indicators.moving_averages,
            indicators.support_resistance,
            indicators.volume_analysis,
        ):
            assert 0.0 <= reading.strength <= 1.0

    @pytest.mark.unit
    @pytest.mark.parametrize("count", [0, 1])
    def test_insufficient_data(self, calculator, count):
        samples = make_series([100.0] * count)

        with pytest.raises(InsufficientDataError) as exc_info:
            calculator.calculate(samples, symbol="bitcoin")

        assert exc_info.value.available == count
        assert "bitcoin" in str(exc_info.value)

    @pytest.mark.unit
    def test_short_series_uses_simplified_estimator(self, calculator):
        samples = make_series([100.0, 101.0, 103.0, 102.0, 104.0])
        snapshot = MarketSnapshot(price_change_percentage_24h=12.0)

        indicators = calculator.calculate(samples, snapshot)

        assert indicators.simplified is True
        assert indicators.current_price == pytest.approx(104.0)
        assert indicators.rsi.signal is RSISignal.BULLISH
        assert indicators.rsi.value == 70.0


class TestSimplifiedEstimator:
    """Test snapshot-only indicator estimates."""

    @pytest.fixture
    def estimator(self):
        return SimplifiedEstimator()

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "change,value,signal",
        [
            (20.0, 80.0, RSISignal.OVERBOUGHT),
            (7.0, 60.0, RSISignal.BULLISH),
            (1.0, 55.0, RSISignal.BULLISH),
            (0.0, 45.0, RSISignal.BEARISH),
            (-12.0, 30.0, RSISignal.BEARISH),
            (-18.0, 20.0, RSISignal.OVERSOLD),
        ],
    )
    def test_rsi_from_daily_change(self, estimator, change, value, signal):
        rsi = estimator.estimate_rsi(change)
        assert rsi.value == value
        assert rsi.signal is signal

    @pytest.mark.unit
    def test_macd_from_momentum(self, estimator):
        assert estimator.estimate_macd(20.0, 1.0).trend is TrendDirection.BULLISH
        assert estimator.estimate_macd(20.0, 1.0).strength == 0.7
        assert estimator.estimate_macd(2.0, 0.1).strength == 0.4
        assert estimator.estimate_macd(-20.0, 1.0).trend is TrendDirection.BEARISH

    @pytest.mark.unit
    def test_zero_market_cap_gives_low_volume(self, estimator):
        indicators = estimator.estimate(
            MarketSnapshot(current_price=10.0, total_volume=1000.0, market_cap=0.0)
        )

        assert indicators.volume_analysis.trend is VolumeTrend.LOW
        assert indicators.volume_analysis.ratio == 0.0
        assert indicators.simplified is True

    @pytest.mark.unit
    def test_estimate_is_deterministic(self, estimator):
        snapshot = MarketSnapshot(
            current_price=42.0,
            price_change_percentage_24h=-6.5,
            total_volume=3_000_000.0,
            market_cap=1_000_000.0,
        )
        assert estimator.estimate(snapshot) == estimator.estimate(snapshot)

    @pytest.mark.unit
    def test_empty_snapshot_never_fails(self, estimator):
        indicators = estimator.estimate(MarketSnapshot())

        assert indicators.bollinger.position is BandPosition.MIDDLE
        assert indicators.current_price == 0.0


class TestBollingerStrength:
    """Test that band strength is continuous across the bands."""

    @pytest.fixture
    def calculator(self):
        return IndicatorCalculator()

    @pytest.fixture
    def bands(self, calculator, rising_series):
        data = TechnicalIndicators.to_frame(rising_series)
        return data, calculator.calculate_bollinger(data, 140.0)

    @pytest.mark.unit
    def test_continuous_at_upper_band(self, calculator, bands):
        data, reference = bands

        inside = calculator.calculate_bollinger(data, reference.upper - 1e-6)
        outside = calculator.calculate_bollinger(data, reference.upper + 1e-6)

        assert inside.position is BandPosition.UPPER_HALF
        assert outside.position is BandPosition.ABOVE_UPPER
        assert outside.strength == 1.0
        assert inside.strength == pytest.approx(outside.strength, abs=1e-3)

    @pytest.mark.unit
    def test_continuous_at_lower_band(self, calculator, bands):
        data, reference = bands

        inside = calculator.calculate_bollinger(data, reference.lower + 1e-6)
        outside = calculator.calculate_bollinger(data, reference.lower - 1e-6)

        assert inside.position is BandPosition.LOWER_HALF
        assert outside.position is BandPosition.BELOW_LOWER
        assert outside.strength == 1.0
        assert inside.strength == pytest.approx(outside.strength, abs=1e-3)

    @pytest.mark.unit
    def test_far_outside_band_is_saturated(self, calculator, bands):
        data, reference = bands

        result = calculator.calculate_bollinger(data, reference.upper * 2)

        assert result.strength == 1.0
