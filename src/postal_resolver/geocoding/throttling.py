"""
Rate limiting for outbound provider requests.

The gate is shared by every worker of a batch, so the minimum spacing
between provider calls holds across threads.
"""

from __future__ import annotations

import time
import threading

from .base import RateLimiter


class SimpleRateGate(RateLimiter):
    """
    Fixed minimum delay between consecutive requests.

    Concurrent callers queue on a lock and leave at least
    ``min_interval_s`` apart.
    """

    def __init__(self, min_interval_s: float):
        if min_interval_s < 0:
            raise ValueError("min_interval_s must be >= 0")

        self.dt = float(min_interval_s)
        self.next_time = time.perf_counter()
        self.lock = threading.Lock()

    @classmethod
    def per_second(cls, requests_per_second: float) -> "SimpleRateGate":
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be > 0")
        return cls(1.0 / float(requests_per_second))

    def wait(self) -> None:
        with self.lock:
            now = time.perf_counter()
            delay_needed = self.next_time - now
            if delay_needed > 0:
                time.sleep(delay_needed)
                now = time.perf_counter()
            self.next_time = now + self.dt
