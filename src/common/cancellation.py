"""Cooperative cancellation tokens for outbound HTTP calls.

A token is checked at every suspension point of a call: before each network
attempt, while an attempt is in flight, and during backoff or rate-limit
waits. Tokens may carry a deadline and may be chained to a parent token.
"""
from __future__ import annotations

import threading
import time
from typing import Callable, List, Optional

from common.errors import CancellationError


class CancellationToken:
    """Cancellation signal with an optional deadline.

    Args:
        timeout: Seconds from now until the token expires.
        parent: Token whose cancellation (and deadline) this one inherits.
        clock: Monotonic clock, replaceable in tests.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        *,
        parent: Optional["CancellationToken"] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self._reason: Optional[str] = None
        self._background = False

        deadline = clock() + max(0.0, timeout) if timeout is not None else None
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._deadline = deadline

        self._detach: Optional[Callable[[], None]] = None
        if parent is not None:
            detach = parent.add_callback(lambda: self.cancel(parent.reason or CancellationError.CANCELED))
            if not self._event.is_set():
                self._detach = detach

    @classmethod
    def background(cls) -> "CancellationToken":
        """A token nobody else holds; calls using it are never interrupted mid-attempt."""
        token = cls()
        token._background = True
        return token

    def child(self, timeout: Optional[float] = None) -> "CancellationToken":
        return CancellationToken(timeout, parent=self, clock=self._clock)

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    @property
    def can_cancel(self) -> bool:
        """True when the token may fire while an attempt is in flight."""
        return not self._background or self._deadline is not None

    @property
    def reason(self) -> Optional[str]:
        return self._reason if self.cancelled else None

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self.cancel(CancellationError.DEADLINE_EXCEEDED)
            return True
        return False

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def cancel(self, reason: str = CancellationError.CANCELED) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()
        self.close()

    def close(self) -> None:
        """Detach from the parent token; the token itself stays usable."""
        detach, self._detach = self._detach, None
        if detach is not None:
            detach()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` once on cancellation; returns an unregister function.

        Deadline expiry does not invoke callbacks on its own; waiters bound
        their waits by ``remaining()`` instead.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def _remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return _remove
        callback()
        return lambda: None

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancellationError(self._reason or CancellationError.CANCELED)

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True if the token fired meanwhile."""
        if seconds <= 0:
            return self.cancelled
        remaining = self.remaining()
        timeout = seconds if remaining is None else min(seconds, remaining)
        if not self._event.wait(timeout) and remaining is not None and timeout >= remaining:
            self.cancel(CancellationError.DEADLINE_EXCEEDED)
        return self.cancelled

    def sleep(self, seconds: float) -> None:
        """Like ``wait`` but raises CancellationError when interrupted."""
        if self.wait(seconds):
            raise CancellationError(self._reason or CancellationError.CANCELED)
