"""Token-bucket rate limiting for hosted embedding APIs."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class _Bucket:
    def __init__(self, capacity: float, now: float) -> None:
        self.capacity = capacity
        self.tokens = capacity
        self.refill_per_second = capacity / 60.0
        self.updated = now

    def refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.updated)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_per_second)
        self.updated = now

    def wait_time(self, amount: float) -> float:
        # requests larger than the bucket wait for a full bucket
        amount = min(amount, self.capacity)
        if self.tokens >= amount:
            return 0.0
        return (amount - self.tokens) / self.refill_per_second


class RateLimiter:
    """Blocks callers until the per-minute request and token budgets allow a call.

    Both budgets refill continuously. ``acquire`` sleeps instead of spinning.
    """

    def __init__(
        self,
        requests_per_minute: int,
        tokens_per_minute: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self.requests_per_minute = requests_per_minute
        self.tokens_per_minute = tokens_per_minute
        self.reset()

    def reset(self) -> None:
        now = self._clock()
        self._requests = _Bucket(self.requests_per_minute, now)
        self._tokens = _Bucket(self.tokens_per_minute, now) if self.tokens_per_minute else None

    def _wait_time(self, tokens: int) -> float:
        now = self._clock()
        self._requests.refill(now)
        wait = self._requests.wait_time(1)
        if self._tokens is not None and tokens > 0:
            self._tokens.refill(now)
            wait = max(wait, self._tokens.wait_time(tokens))
        return wait

    def can_proceed(self, tokens: int = 0) -> bool:
        with self._lock:
            return self._wait_time(tokens) == 0.0

    def acquire(self, tokens: int = 0) -> None:
        """Block until one request carrying ``tokens`` tokens may be sent."""
        while True:
            with self._lock:
                wait = self._wait_time(tokens)
                if wait == 0.0:
                    self._requests.tokens -= 1
                    if self._tokens is not None and tokens > 0:
                        self._tokens.tokens -= min(tokens, self._tokens.capacity)
                    return
            logger.debug(f"Rate limit reached, waiting {wait:.2f}s")
            self._sleep(wait)
