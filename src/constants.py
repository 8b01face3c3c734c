"""Constants used in the project."""

from enum import Enum


class Decoder(Enum):
    """Response body decoders understood by the client.

    Args:
        Enum (string): Decoder names.
    """

    JSON = "json"
    XML = "xml"
    RAW = "raw"
    NONE = ""


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    DEFAULT_SOURCE_URL = "https://api.nuget.org/v3/index.json"
    USER_AGENT = "nuget-core-py/0.1.0"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests

    # Retry / backoff tunables
    HTTP_RETRY_MAX = 5
    HTTP_RETRY_WAIT_MIN_SEC = 0.1
    HTTP_RETRY_WAIT_MAX_SEC = 0.4
    HTTP_SERVICE_WAIT_MIN_SEC = 0.7
    HTTP_SERVICE_WAIT_MAX_SEC = 0.9
    HTTP_RATE_LIMIT_MAX_WAIT_SEC = 60.0

    # Header names
    HEADER_API_KEY = "X-NuGet-ApiKey"
    HEADER_CLIENT_VERSION = "X-NuGet-Client-Version"
    HEADER_RATE_LIMIT = "RateLimit-Limit"
    HEADER_RATE_RESET = "RateLimit-Reset"
    HEADER_RETRY_AFTER = "Retry-After"
    CONTENT_TYPE_JSON = "application/json"
    CONTENT_TYPE_BINARY = "application/octet-stream"

    # Environment
    ENV_SOURCE_URL = "NUGET_SOURCE_URL"
    ENV_API_KEY = "NUGET_API_KEY"
    ENV_TOKEN = "NUGET_TOKEN"
    ENV_USER_AGENT = "NUGET_USER_AGENT"
    ENV_RETRY_MAX = "NUGET_RETRY_MAX"
    ENV_REQUEST_TIMEOUT = "NUGET_REQUEST_TIMEOUT"
    ENV_LOG_LEVEL = "NUGET_LOG_LEVEL"
    ENV_LOG_FORMAT = "NUGET_LOG_FORMAT"
