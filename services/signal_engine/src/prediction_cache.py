"""
Prediction cache.

Short-lived cache for persistence predictions keyed by a fingerprint of the
signal and its market context. Entries expire lazily on lookup. Concurrent
requests for the same missing key share a single in-flight computation.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from shared.models import MarketData, SignalData
from shared.utils import calculate_hash, stable_json

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """Cached value with its creation time (monotonic seconds)."""

    key: str
    value: T
    created_at: float


class PredictionCache(Generic[T]):
    """TTL cache with single-flight computation of missing entries."""

    def __init__(
        self,
        ttl_seconds: float = 120.0,
        bucket_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            ttl_seconds: Lifetime of an entry
            bucket_seconds: Width of the time bucket folded into keys
            clock: Monotonic clock used for expiry
            wall_clock: Wall clock used for key buckets
        """
        self.ttl_seconds = ttl_seconds
        self.bucket_seconds = bucket_seconds
        self._clock = clock
        self._wall_clock = wall_clock
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._in_flight: Dict[str, asyncio.Future] = {}
        self.hits = 0
        self.misses = 0

    def make_key(self, signal: SignalData, market: Optional[MarketData] = None) -> str:
        """Fingerprint of signal type, strength, volatility and time bucket."""
        bucket = int(self._wall_clock() // self.bucket_seconds)
        content = stable_json(
            {
                "type": signal.type.value,
                "strength": signal.strength,
                "volatility": market.volatility if market is not None else None,
                "bucket": bucket,
            }
        )
        return calculate_hash(content)

    def get(self, key: str) -> Optional[T]:
        """Get a live entry, evicting it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.created_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: T) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, created_at=self._clock())

    async def get_or_compute(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Return the cached value for ``key`` or compute it once.

        Callers arriving while a computation for the same key is running
        await that computation instead of starting another. A failed
        computation is not cached; its exception reaches every waiter.

        Args:
            key: Cache key
            factory: Coroutine function producing the value

        Returns:
            Cached or freshly computed value
        """
        cached = self.get(key)
        if cached is not None:
            self.hits += 1
            logger.debug(f"Prediction cache hit for {key[:12]}")
            return cached

        in_flight = self._in_flight.get(key)
        if in_flight is not None:
            self.hits += 1
            logger.debug(f"Joining in-flight prediction for {key[:12]}")
            return await asyncio.shield(in_flight)

        self.misses += 1
        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            value = await factory()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Waiters get the exception; mark it retrieved for the no-waiter case
            future.exception()
            raise
        else:
            self.set(key, value)
            future.set_result(value)
            return value
        finally:
            self._in_flight.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
        logger.info("Prediction cache cleared")

    @property
    def size(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "entries": list(self._entries.keys()),
            "in_flight": len(self._in_flight),
            "hits": self.hits,
            "misses": self.misses,
        }
