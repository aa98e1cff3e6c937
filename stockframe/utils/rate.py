"""
Token-bucket rate limiting shared by concurrent market data requests.
"""

import threading
import time
from typing import Callable, Optional


class TokenBucket:
    """
    Thread-safe token bucket.

    Tokens refill continuously at ``rate_per_minute / 60`` per second up to
    ``capacity``. The bucket starts full, so the first ``capacity`` requests
    go out immediately and later ones are paced to the refill rate.
    """

    def __init__(
        self,
        rate_per_minute: float,
        capacity: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        if rate_per_minute <= 0:
            raise ValueError(f"rate_per_minute must be positive, got {rate_per_minute}")
        if capacity is None:
            capacity = 1
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")

        self.rate_per_second = rate_per_minute / 60.0
        self.capacity = capacity
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._updated
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate_per_second)
            self._updated = now

    @property
    def available(self) -> float:
        """Tokens currently in the bucket."""
        with self._lock:
            self._refill()
            return self._tokens

    def try_acquire(self) -> bool:
        """Take one token if available, without blocking."""
        with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def acquire(self) -> float:
        """
        Block until one token is taken.

        Returns:
            Total seconds spent waiting
        """
        waited = 0.0
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return waited
                wait = (1 - self._tokens) / self.rate_per_second
            # Sleep outside the lock
            self._sleep(wait)
            waited += wait
