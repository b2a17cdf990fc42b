"""
Shared utilities for the signal persistence engine.

This module provides common utility functions including logging setup,
date/time helpers and small numeric helpers used by the scoring code.
"""

import hashlib
import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

from .config import Config


def setup_logging(config: Config, service_name: Optional[str] = None) -> logging.Logger:
    """
    Setup logging configuration for the service.

    Args:
        config: Configuration object
        service_name: Name of the service (used in log messages)

    Returns:
        Configured logger instance
    """
    logging_config = config.logging

    # Setup logging format
    formatter = logging.Formatter(logging_config.format)

    # Create logger
    logger_name = service_name or config.service_name
    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, logging_config.level))

    # Clear existing handlers
    logger.handlers.clear()

    # Console handler
    if logging_config.enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, logging_config.level))
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    # File handler with rotation
    if logging_config.enable_file:
        log_dir = Path(logging_config.file_path).parent
        log_dir.mkdir(parents=True, exist_ok=True)

        # Use service-specific log file if service name is provided
        log_file = logging_config.file_path
        if service_name:
            log_file = str(log_dir / f"{service_name}.log")

        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=logging_config.max_file_size,
            backupCount=logging_config.backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(getattr(logging, logging_config.level))
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Prevent propagation to root logger
    logger.propagate = False

    return logger


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def calculate_hash(data: str) -> str:
    """
    Calculate SHA256 hash of string data.

    Args:
        data: String data to hash

    Returns:
        Hexadecimal hash string
    """
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def stable_json(data: Dict[str, Any]) -> str:
    """Serialize a dict deterministically (sorted keys, compact separators)."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    """Clamp ``value`` into ``[lower, upper]``."""
    return max(lower, min(upper, value))


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """
    Safely divide two numbers, returning ``default`` if denominator is zero.

    Args:
        numerator: Numerator
        denominator: Denominator
        default: Value returned when the denominator is zero

    Returns:
        Division result or default
    """
    if denominator == 0:
        return default
    return numerator / denominator


def weighted_mean(pairs: Iterable[Tuple[Optional[float], float]]) -> Optional[float]:
    """
    Weighted mean over the pairs whose value is present.

    Weights of absent (``None``) values are dropped from the denominator.

    Args:
        pairs: ``(value, weight)`` pairs

    Returns:
        Weighted mean, or None when no value is present
    """
    total = 0.0
    total_weight = 0.0
    for value, weight in pairs:
        if value is None:
            continue
        total += value * weight
        total_weight += weight
    if total_weight == 0:
        return None
    return total / total_weight


def elapsed_ms(started: float, finished: float) -> float:
    """Convert a pair of ``time.perf_counter`` readings into milliseconds."""
    return max(0.0, (finished - started) * 1000.0)
