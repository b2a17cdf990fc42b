"""
Shared models and utilities for the signal persistence engine.

This package provides common data models, configuration, and utilities
that are used across the engine's services.
"""

from .config import Config, get_config
from .models import (
    AIAnalysis,
    BatchItemResult,
    BatchPredictionResult,
    BatchSignal,
    HorizonPrediction,
    HorizonPredictions,
    MarketData,
    MarketSnapshot,
    PersistenceFactor,
    PersistencePrediction,
    PredictionRequest,
    PriceSample,
    SignalData,
    SignalStrength,
    SignalType,
)
from .utils import setup_logging

__version__ = "1.0.0"

__all__ = [
    "AIAnalysis",
    "BatchItemResult",
    "BatchPredictionResult",
    "BatchSignal",
    "HorizonPrediction",
    "HorizonPredictions",
    "MarketData",
    "MarketSnapshot",
    "PersistenceFactor",
    "PersistencePrediction",
    "PredictionRequest",
    "PriceSample",
    "SignalData",
    "SignalStrength",
    "SignalType",
    "Config",
    "get_config",
    "setup_logging",
]
