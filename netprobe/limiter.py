from __future__ import annotations

import threading
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional

from .models import DEFAULT_CONCURRENCY, ConfigurationError


class NetworkQuality(str, Enum):
    EXCELLENT = "excellent"  # wifi, fast link
    GOOD = "good"            # ethernet or good cellular
    LIMITED = "limited"      # metered/expensive link
    POOR = "poor"            # slow or unstable


_RECOMMENDED_LIMITS = {
    NetworkQuality.EXCELLENT: 100,
    NetworkQuality.GOOD: 50,
    NetworkQuality.LIMITED: 20,
    NetworkQuality.POOR: 10,
}


def recommended_limit(quality: Optional[NetworkQuality] = None) -> int:
    """Concurrency cap for a perceived link quality; unknown quality gets the default."""
    if quality is None:
        return DEFAULT_CONCURRENCY
    return _RECOMMENDED_LIMITS[NetworkQuality(quality)]


class ConcurrencyLimiter:
    """
    Admits at most `limit` probes at a time.

    Use slot() rather than acquire()/release() pairs: the slot is returned on
    every way out of the with-block, including exceptions.
    """

    def __init__(self, limit: int = DEFAULT_CONCURRENCY):
        if limit < 1:
            raise ConfigurationError("concurrency limit must be >= 1")
        self.limit = limit
        self._sem = threading.BoundedSemaphore(limit)
        self._lock = threading.Lock()
        self._in_flight = 0
        self._peak = 0

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def peak(self) -> int:
        with self._lock:
            return self._peak

    def acquire(self) -> None:
        self._sem.acquire()
        with self._lock:
            self._in_flight += 1
            if self._in_flight > self._peak:
                self._peak = self._in_flight

    def release(self) -> None:
        with self._lock:
            self._in_flight -= 1
        self._sem.release()

    @contextmanager
    def slot(self) -> Iterator[None]:
        self.acquire()
        try:
            yield
        finally:
            self.release()
