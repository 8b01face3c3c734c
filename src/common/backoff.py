"""Retry backoff policies.

A policy maps ``(previous_delay, base_delay, attempt, response)`` to the
number of seconds to wait before the next attempt. ``attempt`` counts the
attempts made so far (1 after the first failure) and ``response`` is the
failed response, or None after a network error, so policies can honor
rate-limit headers. Policies never sleep themselves; the request core waits
on the call's cancellation token.
"""
from __future__ import annotations

import random
import time
from typing import Callable, Optional

import requests

from constants import Constants


class BackoffPolicy:
    """Strategy interface for inter-retry delays."""

    def compute(
        self,
        previous_delay: float,
        base_delay: float,
        attempt: int,
        response: Optional[requests.Response],
    ) -> float:
        raise NotImplementedError

    def __call__(self, previous_delay, base_delay, attempt, response) -> float:
        return max(0.0, float(self.compute(previous_delay, base_delay, attempt, response)))


class ZeroBackoff(BackoffPolicy):
    """Retry immediately. Used to keep error-path tests fast and deterministic."""

    def compute(self, previous_delay, base_delay, attempt, response) -> float:
        return 0.0


class FunctionBackoff(BackoffPolicy):
    """Adapt a plain ``fn(previous_delay, base_delay, attempt, response)``."""

    def __init__(self, fn: Callable[[float, float, int, Optional[requests.Response]], float]):
        self._fn = fn

    def compute(self, previous_delay, base_delay, attempt, response) -> float:
        return self._fn(previous_delay, base_delay, attempt, response)


class ExponentialBackoff(BackoffPolicy):
    """Grow the previous delay by ``multiplier``, capped at ``max_delay``.

    ``jitter`` is a fraction of the computed delay added at random.
    """

    def __init__(
        self,
        max_delay: float = 30.0,
        multiplier: float = 2.0,
        jitter: float = 0.0,
        rng: Optional[random.Random] = None,
    ):
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter = jitter
        self._rng = rng or random.Random()

    def compute(self, previous_delay, base_delay, attempt, response) -> float:
        if previous_delay <= 0:
            delay = base_delay
        else:
            delay = previous_delay * self.multiplier
        delay = min(self.max_delay, delay)
        if self.jitter > 0:
            delay += self._rng.uniform(0, delay * self.jitter)
        return min(self.max_delay, delay)


class LinearJitterBackoff(BackoffPolicy):
    """Random wait in ``[min_delay * attempt, max_delay * attempt]``."""

    def __init__(self, min_delay: float, max_delay: float, rng: Optional[random.Random] = None):
        self.min_delay = min_delay
        self.max_delay = max(min_delay, max_delay)
        self._rng = rng or random.Random()

    def compute(self, previous_delay, base_delay, attempt, response) -> float:
        attempt = max(1, attempt)
        if self.max_delay == self.min_delay:
            return self.min_delay * attempt
        return self._rng.uniform(self.min_delay, self.max_delay) * attempt


class RateLimitBackoff(BackoffPolicy):
    """Backoff for 429 responses.

    ``RateLimit-Reset`` (epoch seconds) or ``Retry-After`` (seconds) raise
    the floor of the wait; without them the floor doubles per attempt.
    Jitter bounded by ``max_delay - min_delay`` is added so concurrent
    clients do not retry in lockstep. The result never exceeds ``max_wait``.
    """

    def __init__(
        self,
        min_delay: float = Constants.HTTP_RETRY_WAIT_MIN_SEC,
        max_delay: float = Constants.HTTP_RETRY_WAIT_MAX_SEC,
        max_wait: float = Constants.HTTP_RATE_LIMIT_MAX_WAIT_SEC,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.min_delay = min_delay
        self.max_delay = max(min_delay, max_delay)
        self.max_wait = max_wait
        self._rng = rng or random.Random()
        self._clock = clock

    def compute(self, previous_delay, base_delay, attempt, response) -> float:
        floor = self.min_delay
        jitter = self._rng.random() * (self.max_delay - self.min_delay)

        header_wait = _header_wait(response, self._clock) if response is not None else None
        if header_wait is not None:
            floor = max(floor, header_wait)
        elif response is not None:
            floor = floor * (2 ** max(0, attempt))

        return min(self.max_wait, floor + jitter)


class DefaultBackoff(BackoffPolicy):
    """Rate-limit aware backoff for 429, linear jitter for everything else."""

    def __init__(
        self,
        rate_limit: Optional[BackoffPolicy] = None,
        service: Optional[BackoffPolicy] = None,
    ):
        self._rate_limit = rate_limit or RateLimitBackoff()
        self._service = service or LinearJitterBackoff(
            Constants.HTTP_SERVICE_WAIT_MIN_SEC, Constants.HTTP_SERVICE_WAIT_MAX_SEC
        )

    def compute(self, previous_delay, base_delay, attempt, response) -> float:
        if response is not None and response.status_code == 429:
            return self._rate_limit(previous_delay, base_delay, attempt, response)
        return self._service(previous_delay, base_delay, attempt, response)


def as_backoff_policy(value) -> BackoffPolicy:
    """Coerce None, a policy or a plain callable into a BackoffPolicy."""
    if value is None:
        return DefaultBackoff()
    if isinstance(value, BackoffPolicy):
        return value
    if callable(value):
        return FunctionBackoff(value)
    raise TypeError(f"unsupported backoff policy: {value!r}")


def _header_wait(response: requests.Response, clock: Callable[[], float]) -> Optional[float]:
    headers = getattr(response, "headers", None) or {}
    reset = headers.get(Constants.HEADER_RATE_RESET)
    if reset:
        try:
            reset_at = int(reset)
        except ValueError:
            reset_at = 0
        if reset_at > 0:
            return max(0.0, reset_at - clock())
    retry_after = headers.get(Constants.HEADER_RETRY_AFTER)
    if retry_after:
        try:
            return max(0.0, float(retry_after))
        except ValueError:
            return None
    return None
