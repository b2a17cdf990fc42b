"""
Exceptions raised by the signal engine.

Only ``InsufficientDataError`` is meant to reach callers; advisory failures
are absorbed by the advisory adjuster and surface as a degraded analysis.
"""

from typing import List, Tuple


class SignalEngineError(Exception):
    """Base class for signal engine errors."""


class InsufficientDataError(SignalEngineError):
    """Raised when a price series is too short for any indicator."""

    def __init__(self, symbol: str, available: int, required: int = 2):
        self.symbol = symbol
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient price history for {symbol}: "
            f"{available} sample(s), at least {required} required"
        )


class AdvisoryUnavailableError(SignalEngineError):
    """Raised when every advisory provider in the chain failed or timed out."""

    def __init__(self, attempts: List[Tuple[str, str]]):
        self.attempts = attempts
        if attempts:
            detail = "; ".join(f"{name}: {error}" for name, error in attempts)
        else:
            detail = "no advisory provider configured"
        super().__init__(f"All advisory providers failed ({detail})")


class MalformedAdvisoryResponseError(SignalEngineError):
    """Raised when an advisory response cannot be decoded as structured data."""

    def __init__(self, message: str, raw_text: str = ""):
        self.raw_text = raw_text
        super().__init__(message)
