"""NuGet registry package.

This package provides the NuGet V3 client core:
- catalog.py: service types and tag matching
- discovery.py: service index parsing and endpoint resolution
- auth.py: anonymous, API key and bearer token strategies
- config.py: ClientConfig and env/file loading
- options.py: per-request options
- client.py: NuGetClient facade

Public API is preserved at registry.nuget without shims.
"""

from common.cancellation import CancellationToken  # noqa: F401
from common.errors import (  # noqa: F401
    AuthenticationError,
    BuildError,
    CancellationError,
    ConfigError,
    DiscoveryError,
    ErrorResponse,
    NotFoundError,
    NuGetClientError,
    ResponseDecodeError,
    TransportError,
)
from common.response import check_response  # noqa: F401
from constants import Decoder  # noqa: F401

# Public API re-exports
from .catalog import ServiceType, match_tag  # noqa: F401
from .discovery import EndpointMap, build_endpoint_map, parse_service_index, resolve_service_index  # noqa: F401
from .auth import AnonymousAuth, ApiKeyAuth, AuthStrategy, BearerTokenAuth  # noqa: F401
from .config import ClientConfig, load_config  # noqa: F401
from .options import (  # noqa: F401
    with_api_key,
    with_cancel_token,
    with_client_version,
    with_deadline,
    with_header,
    with_headers,
    with_params,
    with_timeout,
    without_header,
)
from .client import NuGetClient, normalize_id, path_escape  # noqa: F401

__all__ = [
    # Client
    "NuGetClient",
    "ClientConfig",
    "load_config",
    "normalize_id",
    "path_escape",
    "Decoder",
    "check_response",
    # Discovery
    "ServiceType",
    "match_tag",
    "EndpointMap",
    "build_endpoint_map",
    "parse_service_index",
    "resolve_service_index",
    # Auth
    "AuthStrategy",
    "AnonymousAuth",
    "ApiKeyAuth",
    "BearerTokenAuth",
    # Options
    "with_api_key",
    "with_cancel_token",
    "with_client_version",
    "with_deadline",
    "with_header",
    "with_headers",
    "with_params",
    "with_timeout",
    "without_header",
    "CancellationToken",
    # Errors
    "NuGetClientError",
    "AuthenticationError",
    "BuildError",
    "CancellationError",
    "ConfigError",
    "DiscoveryError",
    "ErrorResponse",
    "NotFoundError",
    "ResponseDecodeError",
    "TransportError",
]
