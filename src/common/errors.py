"""Error taxonomy for the NuGet client core.

- DiscoveryError: the service index could not be fetched or parsed
- BuildError: a request could not be built from the given parameters
- TransportError: network-level failure after retries
- ErrorResponse: non-success HTTP status (NotFoundError for 404)
- CancellationError: the call's cancellation token fired
- AuthenticationError: credentials could not be produced
- ResponseDecodeError: a successful response body could not be decoded
- ConfigError: client configuration is invalid
"""
from __future__ import annotations

from typing import Any, Optional


class NuGetClientError(Exception):
    """Base class for every error raised by this package."""


class DiscoveryError(NuGetClientError):
    """Service index unreachable, rejected or malformed."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class BuildError(NuGetClientError, ValueError):
    """Malformed request parameters."""


class TransportError(NuGetClientError):
    """Network-level failure (connection, timeout, TLS)."""

    def __init__(self, message: str, url: Optional[str] = None, attempts: int = 0):
        super().__init__(message)
        self.url = url
        self.attempts = attempts


class CancellationError(NuGetClientError):
    """The request was canceled or its deadline elapsed."""

    CANCELED = "canceled"
    DEADLINE_EXCEEDED = "deadline exceeded"

    def __init__(self, reason: str = CANCELED):
        super().__init__(reason)
        self.reason = reason

    @property
    def deadline_exceeded(self) -> bool:
        return self.reason == self.DEADLINE_EXCEEDED


class AuthenticationError(NuGetClientError):
    """Credential material is missing, expired or could not be refreshed."""


class ResponseDecodeError(NuGetClientError):
    """A successful response body did not match the requested decoder."""


class ConfigError(NuGetClientError, ValueError):
    """Configuration loading/validation error."""


class ErrorResponse(NuGetClientError):
    """Structured error for a non-success HTTP status.

    ``str(error)`` is the message: the flattened error body when the server
    sent JSON, otherwise the HTTP status line (``"404 Not Found"``).
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        reason: str = "",
        code: Optional[str] = None,
        body: Optional[bytes] = None,
        method: Optional[str] = None,
        url: Optional[str] = None,
        response: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.reason = reason
        self.code = code
        self.body = body
        self.method = method
        self.url = url
        self.response = response

    @property
    def status_line(self) -> str:
        return f"{self.status_code} {self.reason}".strip()

    def describe(self) -> str:
        """Long form including method and URL, for diagnostics."""
        target = " ".join(part for part in (self.method, self.url) if part)
        detail = self.message
        if not detail.startswith(str(self.status_code)):
            detail = f"{self.status_code} {detail}"
        return f"{target}: {detail}" if target else detail


class NotFoundError(ErrorResponse):
    """HTTP 404."""
