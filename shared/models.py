"""
Pydantic models for the signal persistence engine.

This module defines the data models shared across the engine, including
price history samples, market snapshots, caller-supplied signal descriptors
and the persistence prediction wire contract.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class SignalType(str, Enum):
    """Trade signal type enumeration."""
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class SignalStrength(str, Enum):
    """Ordinal signal strength category."""
    WEAK = "weak"
    MODERATE = "moderate"
    STRONG = "strong"
    VERY_STRONG = "very_strong"


class PriceSample(BaseModel):
    """Single point of a historical price/volume series."""

    timestamp: datetime = Field(..., description="Sample time")
    price: float = Field(..., ge=0, description="Price at sample time")
    volume: float = Field(default=0.0, ge=0, description="Traded volume")
    market_cap: float = Field(default=0.0, ge=0, alias="marketCap", description="Market capitalisation")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class MarketSnapshot(BaseModel):
    """Current market snapshot for an asset."""

    current_price: Optional[float] = Field(None, ge=0, description="Latest traded price")
    price_change_percentage_24h: Optional[float] = Field(None, description="24h price change in percent")
    total_volume: Optional[float] = Field(None, ge=0, description="24h traded volume")
    market_cap: Optional[float] = Field(None, ge=0, description="Market capitalisation")

    model_config = ConfigDict(frozen=True)


class TechnicalData(BaseModel):
    """Technical sub-indicators supplied with a signal."""

    rsi: Optional[float] = Field(None, ge=0, le=100, description="RSI value")
    macd: Optional[float] = Field(None, description="MACD value")
    bollinger: Optional[float] = Field(None, description="Bollinger band position (0-1)")
    volume: Optional[float] = Field(None, description="Volume indicator (0-1)")
    support_resistance: Optional[float] = Field(None, description="Support/resistance strength (0-1)")


class FundamentalData(BaseModel):
    """Fundamental sub-indicators supplied with a signal."""

    news_sentiment: Optional[float] = Field(None, description="News sentiment score (0-1)")
    social_sentiment: Optional[float] = Field(None, description="Social sentiment score (0-1)")
    whale_activity: Optional[float] = Field(None, description="Whale activity indicator (0-1)")
    defi_activity: Optional[float] = Field(None, description="DeFi activity indicator (0-1)")
    market_cap: Optional[float] = Field(None, description="Market cap indicator (0-1)")


class SignalData(BaseModel):
    """Trading signal descriptor supplied by the caller."""

    type: SignalType = Field(..., description="Signal direction")
    strength: float = Field(..., ge=0.0, le=1.0, description="Declared signal strength")
    technical: Optional[TechnicalData] = Field(None, description="Technical sub-indicators")
    fundamental: Optional[FundamentalData] = Field(None, description="Fundamental sub-indicators")


class MarketData(BaseModel):
    """Normalized market context for a prediction."""

    volatility: Optional[float] = Field(None, ge=0.0, le=1.0, description="Market volatility")
    trend_strength: Optional[float] = Field(None, ge=0.0, le=1.0, description="Trend strength")
    correlation: Optional[float] = Field(None, ge=0.0, le=1.0, description="Correlation indicator")
    liquidity: Optional[float] = Field(None, ge=0.0, le=1.0, description="Liquidity indicator")
    time_of_day: Optional[float] = Field(None, ge=0.0, le=1.0, description="Time of day indicator")


class PredictionRequest(BaseModel):
    """Single persistence prediction request."""

    signal_data: SignalData = Field(..., alias="signalData")
    market_data: MarketData = Field(default_factory=MarketData, alias="marketData")
    context_data: Dict[str, Any] = Field(default_factory=dict, alias="contextData")

    model_config = ConfigDict(populate_by_name=True)


class BatchSignal(BaseModel):
    """One entry of a batch prediction request.

    Payloads are kept raw so that each item is validated on its own and an
    invalid item fails alone.
    """

    id: Union[str, int] = Field(..., description="Caller-assigned signal identifier")
    signal_data: Optional[Dict[str, Any]] = Field(None, alias="signalData")
    market_data: Dict[str, Any] = Field(default_factory=dict, alias="marketData")
    context_data: Dict[str, Any] = Field(default_factory=dict, alias="contextData")

    model_config = ConfigDict(populate_by_name=True)


class PersistenceFactor(BaseModel):
    """Contribution of one factor family to a horizon prediction."""

    type: str = Field(..., description="Factor family")
    score: float = Field(..., ge=0.0, le=1.0, description="Factor score")
    weight: float = Field(..., ge=0.0, le=1.0, description="Factor weight")

    model_config = ConfigDict(frozen=True)


class HorizonPrediction(BaseModel):
    """Persistence prediction for a single horizon."""

    probability: float = Field(..., ge=0.0, le=1.0, description="Persistence probability")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Prediction confidence")
    duration: str = Field(..., description="Horizon duration label")
    factors: List[PersistenceFactor] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class HorizonPredictions(BaseModel):
    """Predictions for the short, medium and long horizons."""

    short_term: HorizonPrediction = Field(..., alias="shortTerm")
    medium_term: HorizonPrediction = Field(..., alias="mediumTerm")
    long_term: HorizonPrediction = Field(..., alias="longTerm")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def by_horizon(self):
        """Iterate ``(horizon_name, prediction)`` pairs in horizon order."""
        return [
            ("shortTerm", self.short_term),
            ("mediumTerm", self.medium_term),
            ("longTerm", self.long_term),
        ]


class AIAnalysis(BaseModel):
    """Advisory provider analysis attached to a prediction."""

    reasoning: str = Field(..., description="Advisory reasoning or failure description")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Advisory confidence")
    adjustment: float = Field(default=0.0, ge=-0.2, le=0.2, description="Applied probability adjustment")
    provider: Optional[str] = Field(None, description="Provider that answered, if any")
    risk_factors: List[str] = Field(default_factory=list, alias="riskFactors")
    opportunity_factors: List[str] = Field(default_factory=list, alias="opportunityFactors")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PersistencePrediction(BaseModel):
    """Integrated signal persistence prediction."""

    signal_strength: SignalStrength = Field(..., alias="signalStrength")
    predictions: HorizonPredictions = Field(...)
    ai_analysis: AIAnalysis = Field(..., alias="aiAnalysis")
    overall_confidence: float = Field(..., ge=0.0, le=1.0, alias="overallConfidence")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    model_version: str = Field(default="1.0.0", alias="modelVersion")

    model_config = ConfigDict(populate_by_name=True, frozen=True, protected_namespaces=())

    @field_serializer('timestamp')
    def serialize_datetime(self, value: datetime) -> str | None:
        return value.isoformat() if value is not None else None


class BatchItemResult(BaseModel):
    """Outcome of a single batch entry."""

    id: Union[str, int] = Field(...)
    success: bool = Field(...)
    prediction: Optional[PersistencePrediction] = Field(None)
    error: Optional[str] = Field(None)
    processing_time: float = Field(..., ge=0, alias="processingTime", description="Milliseconds")

    model_config = ConfigDict(populate_by_name=True)


class BatchPredictionResult(BaseModel):
    """Aggregate outcome of a batch prediction."""

    results: List[BatchItemResult] = Field(default_factory=list)
    total_signals: int = Field(..., ge=0, alias="totalSignals")
    successful_predictions: int = Field(..., ge=0, alias="successfulPredictions")
    failed_predictions: int = Field(..., ge=0, alias="failedPredictions")
    total_processing_time: float = Field(..., ge=0, alias="totalProcessingTime", description="Milliseconds")
    average_processing_time: float = Field(..., ge=0, alias="averageProcessingTime", description="Milliseconds")

    model_config = ConfigDict(populate_by_name=True)
