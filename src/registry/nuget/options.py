"""Per-request options.

Each option is a callable applied to the request being built. Client-wide
defaults run first, then the options passed to the call, in order, so the
last option touching a header or setting wins.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from constants import Constants
from common.cancellation import CancellationToken
from common.errors import BuildError
from common.http_client import Request, RequestOption


def with_header(name: str, value: str) -> RequestOption:
    """Set one header on this request."""
    if not name:
        raise BuildError("header name must not be empty")

    def _apply(request: Request) -> None:
        request.headers[name] = value

    return _apply


def with_headers(headers: Mapping[str, str]) -> RequestOption:
    """Set several headers on this request."""
    items = dict(headers)

    def _apply(request: Request) -> None:
        for name, value in items.items():
            request.headers[name] = value

    return _apply


def without_header(name: str) -> RequestOption:
    """Remove a header set by an earlier option or default."""

    def _apply(request: Request) -> None:
        request.headers.pop(name, None)

    return _apply


def with_api_key(api_key: str) -> RequestOption:
    """Use ``api_key`` for this request only, overriding the client's key."""
    return with_header(Constants.HEADER_API_KEY, api_key)


def with_client_version(version: str) -> RequestOption:
    """Send ``X-NuGet-Client-Version`` (servers commonly expect ``4.1.0``)."""
    return with_header(Constants.HEADER_CLIENT_VERSION, version)


def with_cancel_token(token: CancellationToken) -> RequestOption:
    """Run the request under ``token``."""

    def _apply(request: Request) -> None:
        request.cancel_token = token
        request.owns_cancel_token = False

    return _apply


def with_deadline(seconds: float, parent: Optional[CancellationToken] = None) -> RequestOption:
    """Bound the whole call, retries and backoff included, to ``seconds``.

    A new token is created each time the option is applied.
    """

    def _apply(request: Request) -> None:
        request.cancel_token = CancellationToken(seconds, parent=parent)
        request.owns_cancel_token = True

    return _apply


def with_timeout(seconds: float) -> RequestOption:
    """Per-attempt socket timeout."""
    if seconds <= 0:
        raise BuildError("timeout must be positive")

    def _apply(request: Request) -> None:
        request.timeout = seconds

    return _apply


def with_params(params: Dict[str, Any]) -> RequestOption:
    """Merge query parameters into the request."""
    items = dict(params)

    def _apply(request: Request) -> None:
        merged = dict(request.params or {})
        merged.update(items)
        request.params = merged

    return _apply
