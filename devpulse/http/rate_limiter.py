# devpulse/http/rate_limiter.py
from typing import Callable
import threading
import time


class RateLimiter:
    """Minimum-interval pacing between successive requests to one platform."""

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_allowed = None

    def acquire(self) -> float:
        """
        Block until the next request is allowed.

        Returns:
            Seconds spent waiting
        """
        with self._lock:
            now = self._clock()
            waited = 0.0
            if self._next_allowed is not None and now < self._next_allowed:
                waited = self._next_allowed - now
                self._sleep(waited)
                now = self._next_allowed
            self._next_allowed = now + self.min_interval
            return waited
