"""
Request rate limiting for the leakcheck HTTP service.

Every scan request fans out into many upstream API calls, so the whole
service is held to a small global request rate.
"""

from __future__ import annotations

import threading
import time
from typing import Callable


class RateLimiter:
    """
    Thread-safe token bucket limiter.

    Tokens refill continuously at ``rate`` per second up to ``burst``.
    A rate of 0 disables limiting.
    """

    def __init__(
        self,
        rate: float,
        burst: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the limiter.

        Args:
            rate: Requests allowed per second
            burst: Bucket capacity (default: max(1, rate))
            clock: Monotonic time source
        """
        self.rate = rate
        self.burst = burst if burst is not None else max(1, int(rate))
        self._clock = clock
        self._tokens = float(self.burst)
        self._last = clock()
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        """Check if limiting is active."""
        return self.rate > 0

    def allow(self) -> bool:
        """
        Take one token if available.

        Returns:
            True if the request may proceed
        """
        if not self.enabled:
            return True

        with self._lock:
            now = self._clock()
            elapsed = max(0.0, now - self._last)
            self._last = now
            self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def retry_after(self) -> int:
        """Seconds a rejected caller should wait before retrying."""
        if not self.enabled:
            return 0
        with self._lock:
            missing = max(0.0, 1 - self._tokens)
        return max(1, int(missing / self.rate + 0.999))
