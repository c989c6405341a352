"""
Token bucket rate limiting for remote AI APIs.

Vendors cap how many tokens a key may spend per minute.  A bucket holds
up to ``tokens_per_minute * buffer_ratio`` tokens, starts full, and refills
continuously at the same rate per minute.  Each request reserves its
estimated token cost before it is sent, so a burst of parallel file
analyses is spread out instead of bouncing off HTTP 429 responses.

One limiter belongs to one provider instance and is shared by every
worker thread that calls it.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TokenBucketRateLimiter:
    """Thread-safe token bucket.

    Parameters
    ----------
    tokens_per_minute : int
        Vendor limit the bucket is sized from.
    buffer_ratio : float
        Share of the limit actually used, in ``(0, 1]``.
    clock, sleep : callable, optional
        Time source and sleeper; tests inject fakes.
    """

    def __init__(
        self,
        tokens_per_minute: int,
        buffer_ratio: float = 0.9,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if tokens_per_minute <= 0:
            raise ValueError(f"tokens_per_minute must be positive, got {tokens_per_minute}")
        if not 0.0 < buffer_ratio <= 1.0:
            raise ValueError(f"buffer_ratio must be in (0, 1], got {buffer_ratio}")
        self.capacity = tokens_per_minute * buffer_ratio
        self.refill_per_second = self.capacity / 60.0
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._available = self.capacity
        self._last_refill = clock()

    @property
    def available_tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._available

    def try_acquire(self, tokens: int) -> bool:
        """Take *tokens* if the bucket holds enough; never blocks."""
        cost = self._cost(tokens)
        with self._lock:
            self._refill()
            if self._available >= cost:
                self._available -= cost
                return True
            return False

    def get_recommended_wait_time(self, tokens: int) -> float:
        """Seconds until *tokens* would be available (0.0 if they are now)."""
        cost = self._cost(tokens)
        with self._lock:
            self._refill()
            missing = cost - self._available
        return max(0.0, missing / self.refill_per_second)

    def acquire(self, tokens: int, timeout: Optional[float] = None) -> bool:
        """Block until *tokens* are taken.

        Returns ``False`` if they could not be taken within *timeout*
        seconds.
        """
        deadline = None if timeout is None else self._clock() + timeout
        while True:
            if self.try_acquire(tokens):
                return True
            wait = self.get_recommended_wait_time(tokens)
            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0 or wait > remaining:
                    return False
            logger.debug("Rate limit reached; waiting %.2fs for %d tokens", wait, tokens)
            self._sleep(wait)

    def reset(self) -> None:
        with self._lock:
            self._available = self.capacity
            self._last_refill = self._clock()

    def _cost(self, tokens: int) -> float:
        # A request larger than the bucket would otherwise wait forever.
        return min(float(max(tokens, 0)), self.capacity)

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._available = min(self.capacity, self._available + elapsed * self.refill_per_second)
            self._last_refill = now

    def __repr__(self) -> str:
        return (
            f"TokenBucketRateLimiter(capacity={self.capacity:.0f}, "
            f"refill_per_second={self.refill_per_second:.2f})"
        )


__all__ = ["TokenBucketRateLimiter"]
