"""Client configuration for the NuGet client.

Settings come from keyword arguments, the environment (``NUGET_*``) or a
YAML/JSON file; explicit arguments override file and environment values.
The resulting ClientConfig is frozen and safe to share between threads.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlunsplit

import requests
import yaml

from constants import Constants
from common.backoff import ExponentialBackoff, ZeroBackoff, as_backoff_policy
from common.errors import AuthenticationError, BuildError, ConfigError
from common.http_client import RequestOption, RetryCheck, parse_base_url
from common.rate_limit import AdaptiveRateLimiter, RateLimiter

from .auth import AnonymousAuth, AuthStrategy, auth_from_settings

logger = logging.getLogger(__name__)

_BACKOFF_NAMES = {
    "default": lambda: None,
    "zero": ZeroBackoff,
    "none": ZeroBackoff,
    "exponential": ExponentialBackoff,
}


@dataclass(frozen=True)
class ClientConfig:
    """Immutable settings for one NuGetClient."""

    source_url: str = Constants.DEFAULT_SOURCE_URL
    base_url: Optional[str] = None
    auth: AuthStrategy = field(default_factory=AnonymousAuth)
    backoff: Any = None
    retry_max: int = Constants.HTTP_RETRY_MAX
    retry_wait_min: float = Constants.HTTP_RETRY_WAIT_MIN_SEC
    retry_wait_max: float = Constants.HTTP_RETRY_WAIT_MAX_SEC
    retry_check: Optional[RetryCheck] = None
    disable_retries: bool = False
    user_agent: Optional[str] = Constants.USER_AGENT
    timeout: float = Constants.REQUEST_TIMEOUT
    rate_limiter: Optional[RateLimiter] = None
    request_options: Tuple[RequestOption, ...] = ()
    session: Optional[requests.Session] = None

    def __post_init__(self) -> None:
        try:
            parse_base_url(self.source_url)
            if self.base_url is not None:
                parse_base_url(self.base_url)
        except BuildError as exc:
            raise ConfigError(str(exc)) from exc
        if self.retry_max < 0:
            raise ConfigError("retry_max must be >= 0")
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")
        if self.retry_wait_min < 0 or self.retry_wait_max < self.retry_wait_min:
            raise ConfigError("retry waits must satisfy 0 <= retry_wait_min <= retry_wait_max")
        if self.backoff is not None:
            try:
                as_backoff_policy(self.backoff)
            except TypeError as exc:
                raise ConfigError(str(exc)) from exc
        object.__setattr__(self, "request_options", tuple(self.request_options))

    @property
    def resolved_base_url(self) -> str:
        """Explicit base URL, or the scheme and host of the source URL."""
        if self.base_url:
            return self.base_url
        parts = parse_base_url(self.source_url)
        return urlunsplit((parts.scheme, parts.netloc, "/", "", ""))

    def replace(self, **changes: Any) -> "ClientConfig":
        return replace(self, **changes)

    @classmethod
    def from_settings(cls, **settings: Any) -> "ClientConfig":
        """Build a config from keyword settings.

        Besides the dataclass fields, ``api_key`` and ``token`` are accepted
        as shorthands for ApiKeyAuth and BearerTokenAuth, and
        ``adaptive_rate_limit=True`` installs an AdaptiveRateLimiter.
        """
        settings = {k: v for k, v in settings.items() if v is not None}
        api_key = settings.pop("api_key", None)
        token = settings.pop("token", None)
        if settings.pop("adaptive_rate_limit", False) and "rate_limiter" not in settings:
            settings["rate_limiter"] = AdaptiveRateLimiter()
        if isinstance(settings.get("backoff"), str):
            settings["backoff"] = _backoff_from_name(settings["backoff"])

        if "auth" not in settings:
            try:
                settings["auth"] = auth_from_settings(api_key=api_key, token=token)
            except AuthenticationError as exc:
                raise ConfigError(str(exc)) from exc

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(settings) - known)
        if unknown:
            raise ConfigError(f"unknown client settings: {', '.join(unknown)}")
        return cls(**settings)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "ClientConfig":
        """Read ``NUGET_*`` variables; ``overrides`` take precedence."""
        settings = settings_from_env(environ)
        settings.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_settings(**settings)


def _backoff_from_name(name: str) -> Any:
    factory = _BACKOFF_NAMES.get(name.strip().lower())
    if factory is None:
        raise ConfigError(f"unknown backoff policy: {name!r}")
    return factory()


def _coerce(key: str, value: Any, kind: type) -> Any:
    if kind is bool:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid value for {key}: {value!r}") from exc


_ENV_SETTINGS: Tuple[Tuple[str, str, type], ...] = (
    (Constants.ENV_SOURCE_URL, "source_url", str),
    (Constants.ENV_API_KEY, "api_key", str),
    (Constants.ENV_TOKEN, "token", str),
    (Constants.ENV_USER_AGENT, "user_agent", str),
    (Constants.ENV_RETRY_MAX, "retry_max", int),
    (Constants.ENV_REQUEST_TIMEOUT, "timeout", float),
)

_FILE_SETTINGS: Dict[str, type] = {
    "source_url": str,
    "base_url": str,
    "api_key": str,
    "token": str,
    "user_agent": str,
    "retry_max": int,
    "retry_wait_min": float,
    "retry_wait_max": float,
    "disable_retries": bool,
    "timeout": float,
    "adaptive_rate_limit": bool,
    "backoff": str,
}


def settings_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    env = os.environ if environ is None else environ
    settings: Dict[str, Any] = {}
    for var, key, kind in _ENV_SETTINGS:
        raw = env.get(var)
        if raw is not None and raw.strip():
            settings[key] = _coerce(var, raw.strip(), kind)
    return settings


def load_config(config_path: Optional[str], **overrides: Any) -> ClientConfig:
    """Load a ClientConfig from a YAML or JSON file.

    The file may hold the settings at top level or under a ``nuget:``
    section. A missing file logs a warning and falls back to defaults.
    """
    data: Dict[str, Any] = {}
    if config_path and not os.path.isfile(config_path):
        logger.warning("Config file not found: %s", config_path)
    elif config_path:
        with open(config_path, "r", encoding="utf-8") as f:
            try:
                if config_path.endswith(".json"):
                    loaded = json.load(f)
                else:
                    loaded = yaml.safe_load(f)
            except (ValueError, yaml.YAMLError) as exc:
                raise ConfigError(f"failed to parse config {config_path}: {exc}") from exc
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"config {config_path} must contain a mapping")
        loaded = loaded or {}
        section = loaded.get("nuget", loaded)
        if not isinstance(section, dict):
            raise ConfigError(f"'nuget' section of {config_path} must be a mapping")
        for key, value in section.items():
            kind = _FILE_SETTINGS.get(key)
            if kind is None:
                raise ConfigError(f"unknown setting in {config_path}: {key}")
            if value is not None:
                data[key] = _coerce(key, value, kind)

    data.update({k: v for k, v in overrides.items() if v is not None})
    return ClientConfig.from_settings(**data)
