"""Client-side rate limiting to avoid provoking 429 responses."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import requests

from constants import Constants
from common.cancellation import CancellationToken
from common.logging_utils import extra_context

logger = logging.getLogger(__name__)


class RateLimiter:
    """Interface for limiters used by the request core."""

    def wait(self, token: CancellationToken) -> None:
        """Block until a request may be sent; raises CancellationError if the token fires."""

    def observe(self, response: requests.Response) -> None:
        """Inspect a received response (e.g. rate-limit headers)."""


class TokenBucketLimiter(RateLimiter):
    """Token bucket allowing ``rate`` requests per second with ``burst`` capacity."""

    def __init__(self, rate: float, burst: int = 1, clock: Callable[[], float] = time.monotonic):
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.burst = max(1, int(burst))
        self._clock = clock
        self._tokens = float(self.burst)
        self._updated = clock()
        self._lock = threading.Lock()

    def _reserve(self) -> float:
        """Take one token, returning how long the caller must wait for it."""
        with self._lock:
            now = self._clock()
            self._tokens = min(self.burst, self._tokens + (now - self._updated) * self.rate)
            self._updated = now
            self._tokens -= 1.0
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.rate

    def _release(self) -> None:
        with self._lock:
            self._tokens = min(self.burst, self._tokens + 1.0)

    def wait(self, token: CancellationToken) -> None:
        delay = self._reserve()
        if delay <= 0:
            return
        if token.wait(delay):
            self._release()
            token.raise_if_cancelled()


class AdaptiveRateLimiter(RateLimiter):
    """Unlimited until the first response carrying ``RateLimit-Limit``.

    The header is requests per minute; two thirds become the steady rate and
    one third the burst (at least 1). Configuration happens exactly once.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._configured = False
        self._limiter: Optional[TokenBucketLimiter] = None

    @property
    def limiter(self) -> Optional[TokenBucketLimiter]:
        return self._limiter

    def wait(self, token: CancellationToken) -> None:
        limiter = self._limiter
        if limiter is not None:
            limiter.wait(token)

    def observe(self, response: requests.Response) -> None:
        if self._configured:
            return
        value = (getattr(response, "headers", None) or {}).get(Constants.HEADER_RATE_LIMIT)
        if not value:
            return
        try:
            per_minute = float(value)
        except ValueError:
            return
        if per_minute <= 0:
            return
        with self._lock:
            if self._configured:
                return
            self._configured = True
            per_second = per_minute / 60.0
            limiter = TokenBucketLimiter(per_second * 0.66, max(1, int(per_second * 0.33)))
            # The response that carried the header already used one slot.
            limiter._reserve()  # pylint: disable=protected-access
            self._limiter = limiter
            logger.info(
                "Rate limiter configured from response headers",
                extra=extra_context(
                    event="rate_limit_configured",
                    component="rate_limit",
                    outcome="configured",
                    rate=round(limiter.rate, 3),
                    burst=limiter.burst,
                ),
            )
