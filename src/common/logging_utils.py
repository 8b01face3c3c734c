"""Structured logging helpers shared by the transport and registry modules.

Callers attach machine-readable fields through ``extra=extra_context(...)``
and guard verbose traces with ``is_debug_enabled(logger)`` so argument
construction is skipped when DEBUG is off. URLs pass through ``safe_url``
before they are logged so API keys and tokens never reach log sinks.
"""
from __future__ import annotations

import json
import logging
import os
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from constants import Constants

REDACTED = "[REDACTED]"

_SENSITIVE_KEYS = ("apikey", "api_key", "key", "token", "access_token", "password", "secret", "sig")
_SECRET_PATTERN = re.compile(r"(?i)(bearer\s+|x-nuget-apikey[:=]\s*)([^\s,;]+)")

# LogRecord attributes that must not be overwritten through ``extra``.
_RESERVED = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger from arguments or the environment.

    ``NUGET_LOG_LEVEL`` selects the level (default INFO) and
    ``NUGET_LOG_FORMAT=json`` switches to one JSON object per line that
    includes the ``extra_context`` fields.
    """
    level_name = (level or os.environ.get(Constants.ENV_LOG_LEVEL) or "INFO").upper()
    level_value = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    if os.environ.get(Constants.ENV_LOG_FORMAT, "").lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(Constants.LOG_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level_value)


class JsonFormatter(logging.Formatter):
    """Render records as JSON, carrying structured ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when DEBUG records from ``logger`` would be emitted."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra`` dict for structured log records.

    None values are dropped, and names that collide with LogRecord
    attributes are prefixed with ``ctx_``.
    """
    context: Dict[str, Any] = {}
    for key, value in fields.items():
        if value is None:
            continue
        context[f"ctx_{key}" if key in _RESERVED else key] = value
    return context


def redact(text: Optional[str]) -> str:
    """Mask bearer tokens and API keys embedded in free text."""
    if not text:
        return ""
    return _SECRET_PATTERN.sub(lambda m: f"{m.group(1)}{REDACTED}", text)


def safe_url(url: Optional[str]) -> str:
    """Return ``url`` with userinfo and sensitive query values masked."""
    if not url:
        return ""
    try:
        parts = urlsplit(url)
    except ValueError:
        return redact(url)

    netloc = parts.netloc
    if "@" in netloc:
        netloc = f"{REDACTED}@{netloc.rsplit('@', 1)[1]}"

    query = parts.query
    if query:
        pairs = parse_qsl(query, keep_blank_values=True)
        query = urlencode(
            [(k, REDACTED if k.lower() in _SENSITIVE_KEYS else v) for k, v in pairs],
            safe="[]",
        )
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


class Timer:
    """Context manager measuring wall-clock duration."""

    def __init__(self) -> None:
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> float:
        """Elapsed milliseconds; reads the running duration inside the block."""
        if self._start is None:
            return 0.0
        end = self._end if self._end is not None else time.perf_counter()
        return round((end - self._start) * 1000.0, 3)
