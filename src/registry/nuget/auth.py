"""Authentication strategies that attach credentials to outgoing requests.

Strategies return a decorated copy of the request and never touch shared
client state. The bearer strategy caches its current token and refreshes
it under its own lock.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Tuple, Union

from constants import Constants
from common.errors import AuthenticationError
from common.http_client import Request
from common.logging_utils import extra_context

logger = logging.getLogger(__name__)

# A refresh hook returns a new token, optionally with its expiry (epoch seconds).
RefreshResult = Union[str, Tuple[str, Optional[float]]]
RefreshHook = Callable[[], RefreshResult]


class AuthStrategy:
    """Base strategy: decorate a request with credentials."""

    def apply(self, request: Request) -> Request:
        raise NotImplementedError


class AnonymousAuth(AuthStrategy):
    """No credentials."""

    def apply(self, request: Request) -> Request:
        return request

    def __repr__(self) -> str:
        return "AnonymousAuth()"


class ApiKeyAuth(AuthStrategy):
    """Static NuGet API key sent in ``X-NuGet-ApiKey``.

    A key set on the request itself (``with_api_key``) is left untouched.
    """

    def __init__(self, api_key: str, header: str = Constants.HEADER_API_KEY):
        if not api_key:
            raise AuthenticationError("API key must not be empty")
        self._api_key = api_key
        self.header = header

    def apply(self, request: Request) -> Request:
        if request.headers.get(self.header):
            return request
        decorated = request.copy()
        decorated.headers[self.header] = self._api_key
        return decorated

    def __repr__(self) -> str:
        return f"ApiKeyAuth(header={self.header!r})"


class BearerTokenAuth(AuthStrategy):
    """OAuth bearer token with an optional refresh hook.

    Args:
        token: Current access token.
        expires_at: Expiry as epoch seconds, or None if unknown.
        refresh: Called to obtain a new token once the current one expired.
        leeway: Seconds before ``expires_at`` at which the token counts as expired.
        clock: Wall clock, replaceable in tests.
    """

    def __init__(
        self,
        token: Optional[str],
        expires_at: Optional[float] = None,
        refresh: Optional[RefreshHook] = None,
        leeway: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        if not token and refresh is None:
            raise AuthenticationError("bearer token or refresh hook is required")
        # Token and expiry are replaced together as one tuple.
        self._state: Tuple[Optional[str], Optional[float]] = (token, expires_at)
        self._refresh = refresh
        self._leeway = leeway
        self._clock = clock
        self._lock = threading.Lock()
        self.refresh_count = 0

    def _valid_token(self) -> Optional[str]:
        token, expires_at = self._state
        if not token:
            return None
        if expires_at is not None and self._clock() >= expires_at - self._leeway:
            return None
        return token

    def current_token(self) -> str:
        """Return a valid token, refreshing it once if it expired."""
        token = self._valid_token()
        if token is not None:
            return token
        with self._lock:
            token = self._valid_token()
            if token is not None:
                return token
            if self._refresh is None:
                raise AuthenticationError("bearer token expired and no refresh hook is configured")
            try:
                result = self._refresh()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                raise AuthenticationError(f"bearer token refresh failed: {exc}") from exc

            token, expires_at = result if isinstance(result, tuple) else (result, None)
            if not token:
                raise AuthenticationError("bearer token refresh returned an empty token")
            self._state = (token, expires_at)
            self.refresh_count += 1
            logger.info(
                "Bearer token refreshed",
                extra=extra_context(event="auth_refresh", component="auth", outcome="success"),
            )
            return token

    def apply(self, request: Request) -> Request:
        token = self.current_token()
        decorated = request.copy()
        decorated.headers["Authorization"] = f"Bearer {token}"
        return decorated

    def __repr__(self) -> str:
        return f"BearerTokenAuth(expires_at={self._state[1]!r})"


def auth_from_settings(api_key: Optional[str] = None, token: Optional[str] = None) -> AuthStrategy:
    """Pick a strategy from plain settings; a bearer token takes precedence."""
    if token:
        return BearerTokenAuth(token)
    if api_key:
        return ApiKeyAuth(api_key)
    return AnonymousAuth()
