"""Per-client rate limiters: token bucket, fixed window and leaky bucket."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable

Clock = Callable[[], float]


class Limiter(ABC):
    """Decides whether one more request may pass."""

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()

    @abstractmethod
    def allow(self) -> bool:
        """Return True if a request is allowed now."""


class TokenBucket(Limiter):
    """Bucket of ``capacity`` tokens refilled at ``rate`` tokens per second."""

    def __init__(self, rate: int, capacity: int, clock: Clock = time.monotonic) -> None:
        super().__init__(clock)
        self.rate = rate
        self.capacity = capacity
        self._tokens = capacity
        self._last = clock()

    def allow(self) -> bool:
        with self._lock:
            now = self._clock()
            elapsed = now - self._last
            self._last = now
            self._tokens = min(self._tokens + int(elapsed * self.rate), self.capacity)
            if self._tokens > 0:
                self._tokens -= 1
                return True
            return False


class FixedWindow(Limiter):
    """At most ``rate`` requests in each one-second window."""

    def __init__(self, rate: int, clock: Clock = time.monotonic) -> None:
        super().__init__(clock)
        self.rate = rate
        self._count = 0
        self._start = clock()

    def allow(self) -> bool:
        with self._lock:
            now = self._clock()
            if now - self._start > 1.0:
                self._start = now
                self._count = 0
            if self._count < self.rate:
                self._count += 1
                return True
            return False


class LeakyBucket(Limiter):
    """Bucket of ``capacity`` requests draining at ``rate`` per second."""

    def __init__(self, rate: int, capacity: int, clock: Clock = time.monotonic) -> None:
        super().__init__(clock)
        self.rate = float(rate)
        self.capacity = capacity
        self._water = 0.0
        self._last = clock()

    def allow(self) -> bool:
        with self._lock:
            now = self._clock()
            elapsed = now - self._last
            self._last = now
            self._water = max(self._water - elapsed * self.rate, 0.0)
            if self._water < self.capacity:
                self._water += 1
                return True
            return False


def new_limiter(algo: str, rate: int, burst: int) -> Limiter:
    """Build a limiter by name: ``token``, ``fixed`` or ``leaky``."""
    if algo == "token":
        return TokenBucket(rate, burst)
    if algo == "fixed":
        return FixedWindow(rate)
    if algo == "leaky":
        return LeakyBucket(rate, burst)
    raise ValueError(f"unknown rate limiter: {algo!r}")