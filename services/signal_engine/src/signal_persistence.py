"""
Signal Persistence Service

Predicts how long a trading signal is likely to persist over the short,
medium and long horizons. The rule-based predictor output is reviewed by an
AI advisory chain, blended with the advisory adjustment and cached briefly.
"""

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Union

from shared.config import Config, get_config
from shared.models import (
    AIAnalysis,
    BatchItemResult,
    BatchPredictionResult,
    BatchSignal,
    HorizonPrediction,
    HorizonPredictions,
    MarketData,
    MarketSnapshot,
    PersistencePrediction,
    PredictionRequest,
    SignalData,
)
from shared.utils import clamp, elapsed_ms

from .ai_advisory import AdvisoryAdjuster
from .analysis_engine import TechnicalAnalysis, TechnicalAnalysisEngine
from .exceptions import SignalEngineError
from .persistence_model import PersistencePredictor
from .prediction_cache import PredictionCache
from .signal_scoring import SignalStrengthCalculator, StrengthBreakdown

logger = logging.getLogger(__name__)

SignalInput = Union[SignalData, Mapping[str, Any]]
MarketInput = Union[MarketData, Mapping[str, Any], None]


class SignalPersistenceService:
    """Facade over the persistence prediction pipeline."""

    def __init__(
        self,
        config: Optional[Config] = None,
        predictor: Optional[PersistencePredictor] = None,
        adjuster: Optional[AdvisoryAdjuster] = None,
        cache: Optional[PredictionCache[PersistencePrediction]] = None,
        strength_calculator: Optional[SignalStrengthCalculator] = None,
        analysis_engine: Optional[TechnicalAnalysisEngine] = None,
    ):
        """
        Initialize the service.

        Args:
            config: Configuration (defaults to the global configuration)
            predictor: Persistence predictor
            adjuster: Advisory adjuster (built from configuration when omitted)
            cache: Prediction cache
            strength_calculator: Signal strength calculator
            analysis_engine: Technical analysis engine, if a price history source exists
        """
        self.config = config or get_config()
        self.predictor = predictor or PersistencePredictor()
        self.adjuster = adjuster or AdvisoryAdjuster.from_config(self.config)
        if cache is None:
            cache_config = self.config.cache
            cache = PredictionCache(
                ttl_seconds=cache_config.ttl_seconds,
                bucket_seconds=cache_config.bucket_seconds,
            )
        self.cache = cache
        self.strength_calculator = strength_calculator or SignalStrengthCalculator()
        self.analysis_engine = analysis_engine
        self.model_version = self.config.prediction_model_version
        self.is_running = False
        self.model_status: Dict[str, Dict[str, Any]] = {}

    async def start(self) -> None:
        """Validate the advisory providers and mark the service running."""
        if self.is_running:
            logger.warning("Signal persistence prediction is already running")
            return

        logger.info("Starting signal persistence prediction")
        self.model_status = await self.validate_models()
        self.is_running = True
        logger.info("Signal persistence prediction started")

    async def stop(self) -> None:
        """Mark the service stopped and release provider connections."""
        if not self.is_running:
            logger.warning("Signal persistence prediction is not running")
            return

        self.is_running = False
        await self.adjuster.close()
        logger.info("Signal persistence prediction stopped")

    async def validate_models(self) -> Dict[str, Dict[str, Any]]:
        """Probe each advisory provider once."""
        report = await self.adjuster.validate()
        available = [name for name, status in report.items() if status["available"]]
        if available:
            logger.info(f"Advisory providers available: {available}")
        else:
            logger.warning("No advisory provider is available, predictions will be unadjusted")
        return report

    async def predict_signal_persistence(
        self,
        signal_data: SignalInput,
        market_data: MarketInput = None,
        context_data: Optional[Mapping[str, Any]] = None,
    ) -> PersistencePrediction:
        """
        Predict the persistence of a trading signal.

        Args:
            signal_data: Signal descriptor (``type`` and ``strength`` required)
            market_data: Market context
            context_data: Free-form context passed to the advisory provider

        Returns:
            PersistencePrediction

        Raises:
            pydantic.ValidationError: If the request payload is invalid
        """
        request = PredictionRequest(
            signal_data=signal_data,
            market_data=market_data if market_data is not None else MarketData(),
            context_data=dict(context_data or {}),
        )
        signal, market = request.signal_data, request.market_data

        key = self.cache.make_key(signal, market)
        return await self.cache.get_or_compute(
            key, lambda: self._predict(signal, market, request.context_data)
        )

    async def _predict(
        self, signal: SignalData, market: MarketData, context: Dict[str, Any]
    ) -> PersistencePrediction:
        strength = self.strength_calculator.calculate(signal, market)
        raw_predictions = self.predictor.predict(signal, market)
        analysis = await self.adjuster.advise(signal, market, context, raw_predictions)

        prediction = self.integrate_predictions(raw_predictions, analysis, strength)
        logger.info(
            f"Signal persistence predicted: {signal.type.value} "
            f"strength={prediction.signal_strength.value} "
            f"confidence={prediction.overall_confidence:.2f}"
        )
        return prediction

    def integrate_predictions(
        self,
        raw_predictions: HorizonPredictions,
        analysis: AIAnalysis,
        strength: StrengthBreakdown,
    ) -> PersistencePrediction:
        """Blend the advisory adjustment into the raw horizon predictions."""
        shift = analysis.adjustment * analysis.confidence

        adjusted = {}
        for name, horizon in (
            ("short_term", raw_predictions.short_term),
            ("medium_term", raw_predictions.medium_term),
            ("long_term", raw_predictions.long_term),
        ):
            adjusted[name] = HorizonPrediction(
                probability=clamp(horizon.probability + shift),
                confidence=(horizon.confidence + analysis.confidence) / 2,
                duration=horizon.duration,
                factors=horizon.factors,
            )

        confidences = [p.confidence for _, p in raw_predictions.by_horizon()]
        mean_confidence = sum(confidences) / len(confidences)

        return PersistencePrediction(
            signal_strength=strength.category,
            predictions=HorizonPredictions(**adjusted),
            ai_analysis=analysis,
            overall_confidence=clamp((mean_confidence + analysis.confidence) / 2),
            model_version=self.model_version,
        )

    async def batch_predict(
        self,
        signals: List[Union[BatchSignal, Mapping[str, Any]]],
        market_data: Optional[Mapping[str, Any]] = None,
        context_data: Optional[Mapping[str, Any]] = None,
    ) -> BatchPredictionResult:
        """
        Predict persistence for several signals, one at a time.

        Batch-level market and context data are merged under each item's own
        values. A failing item is reported in its result and does not stop
        the batch.

        Args:
            signals: Batch entries ``{id, signalData, marketData?, contextData?}``
            market_data: Market data shared by every entry
            context_data: Context data shared by every entry

        Returns:
            BatchPredictionResult with per-item outcomes and timings
        """
        batch_started = time.perf_counter()
        results: List[BatchItemResult] = []

        for index, raw_item in enumerate(signals):
            started = time.perf_counter()
            item_id: Union[str, int] = self._item_id(raw_item, index)
            try:
                item = (
                    raw_item
                    if isinstance(raw_item, BatchSignal)
                    else BatchSignal.model_validate(raw_item)
                )
                item_id = item.id
                if item.signal_data is None:
                    raise ValueError("signalData is required")

                prediction = await self.predict_signal_persistence(
                    item.signal_data,
                    {**(market_data or {}), **item.market_data},
                    {**(context_data or {}), **item.context_data},
                )
                results.append(
                    BatchItemResult(
                        id=item_id,
                        success=True,
                        prediction=prediction,
                        processing_time=elapsed_ms(started, time.perf_counter()),
                    )
                )
            except Exception as e:
                logger.error(f"Batch prediction failed for signal {item_id}: {e}")
                results.append(
                    BatchItemResult(
                        id=item_id,
                        success=False,
                        error=str(e) or type(e).__name__,
                        processing_time=elapsed_ms(started, time.perf_counter()),
                    )
                )

        total_time = elapsed_ms(batch_started, time.perf_counter())
        successful = sum(1 for r in results if r.success)
        return BatchPredictionResult(
            results=results,
            total_signals=len(signals),
            successful_predictions=successful,
            failed_predictions=len(results) - successful,
            total_processing_time=total_time,
            average_processing_time=total_time / len(signals) if signals else 0.0,
        )

    @staticmethod
    def _item_id(raw_item: Any, index: int) -> Union[str, int]:
        if isinstance(raw_item, BatchSignal):
            return raw_item.id
        if isinstance(raw_item, Mapping) and raw_item.get("id") is not None:
            return raw_item["id"]
        return index

    def analyze_signal_strength(
        self, signal_data: SignalInput, market_data: MarketInput = None
    ) -> StrengthBreakdown:
        """Strength breakdown of a signal descriptor."""
        signal = (
            signal_data
            if isinstance(signal_data, SignalData)
            else SignalData.model_validate(signal_data)
        )
        if market_data is None:
            market = MarketData()
        elif isinstance(market_data, MarketData):
            market = market_data
        else:
            market = MarketData.model_validate(market_data)
        return self.strength_calculator.calculate(signal, market)

    async def analyze_technical(
        self, symbol: str, snapshot: Optional[MarketSnapshot] = None
    ) -> TechnicalAnalysis:
        """
        Technical analysis of a symbol through the configured history source.

        Raises:
            SignalEngineError: If the service has no technical analysis engine
        """
        if self.analysis_engine is None:
            raise SignalEngineError("No historical price source configured")
        return await self.analysis_engine.analyze(symbol, snapshot)

    def get_status(self) -> Dict[str, Any]:
        return {
            "isRunning": self.is_running,
            "cacheSize": self.cache.size,
            "modelConfig": self.adjuster.chain.configured_providers,
        }

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()
