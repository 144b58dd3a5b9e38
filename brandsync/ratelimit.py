"""
Token bucket rate limiter shared by all remote calls.

One instance is constructed per client and injected wherever remote
requests are issued, so concurrently dispatched fetches draw from the
same credit pool.
"""

import threading
import time
from typing import Callable, Optional


class RateLimitTimeout(Exception):
    """Raised when ``acquire`` could not obtain a credit within its timeout."""


class TokenBucket:
    """
    Token bucket with capacity ``capacity`` refilling at ``rate`` credits/sec.

    Args:
        capacity: Maximum number of stored credits
        rate: Credits regenerated per second
        poll_interval: Sleep between availability checks while waiting
        clock: Monotonic clock function (injectable for tests)
        sleep: Sleep function (injectable for tests)
    """

    def __init__(
        self,
        capacity: float = 10,
        rate: float = 10.0,
        poll_interval: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if capacity <= 0 or rate <= 0:
            raise ValueError("capacity and rate must be positive")
        self.capacity = float(capacity)
        self.rate = float(rate)
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._last_refill = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._last_refill = now

    @property
    def tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def try_acquire(self) -> bool:
        """Take one credit if available, without waiting."""
        with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def acquire(self, timeout: Optional[float] = None) -> None:
        """
        Block until one credit is available, then consume it.

        Waits by polling with a short sleep. With ``timeout`` set, gives up
        after that many seconds and raises ``RateLimitTimeout``.
        """
        started = self._clock()
        while not self.try_acquire():
            if timeout is not None and self._clock() - started >= timeout:
                raise RateLimitTimeout(f"No rate limit credit within {timeout}s")
            with self._lock:
                deficit = 1 - self._tokens
            self._sleep(min(self.poll_interval, max(deficit / self.rate, 0.001)))
