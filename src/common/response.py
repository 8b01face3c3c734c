"""Classify HTTP responses into success or a structured ErrorResponse."""
from __future__ import annotations

import json
import logging
from http import HTTPStatus
from typing import Any, Optional

import requests

from common.errors import ErrorResponse, NotFoundError
from common.logging_utils import extra_context, is_debug_enabled, safe_url

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({304})

_CODE_FIELDS = ("code", "errorCode", "error_code")


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300 or status_code in SUCCESS_STATUSES


def status_line(response: requests.Response) -> str:
    """``"<code> <reason>"``, falling back to the standard reason phrase."""
    reason = getattr(response, "reason", None) or ""
    if not reason:
        try:
            reason = HTTPStatus(response.status_code).phrase
        except ValueError:
            reason = ""
    return f"{response.status_code} {reason}".strip()


def parse_error(raw: Any) -> str:
    """Flatten a decoded JSON error body into one message.

    Strings pass through, lists render as ``[a, b]`` and objects as
    ``{key: value}`` pairs sorted and joined with ``", "``.
    """
    if isinstance(raw, str):
        return raw
    if isinstance(raw, list):
        return "[" + ", ".join(parse_error(item) for item in raw) + "]"
    if isinstance(raw, dict):
        parts = sorted(f"{{{key}: {parse_error(value)}}}" for key, value in raw.items())
        return ", ".join(parts)
    if isinstance(raw, bool) or raw is None:
        return json.dumps(raw)
    if isinstance(raw, (int, float)):
        return str(raw)
    return f"failed to parse unexpected error type: {type(raw).__name__}"


def _read_body(response: requests.Response) -> Optional[bytes]:
    try:
        content = response.content
    except (requests.RequestException, AttributeError, RuntimeError):
        return None
    if content is None or isinstance(content, bool):
        return None
    return content


def classify_response(response: requests.Response) -> Optional[ErrorResponse]:
    """Return None for success, otherwise the ErrorResponse describing it."""
    if is_success(response.status_code):
        return None

    request = getattr(response, "request", None)
    method = getattr(request, "method", None)
    url = getattr(response, "url", None) or getattr(request, "url", None)
    line = status_line(response)
    reason = line.partition(" ")[2]

    if response.status_code == 404:
        return NotFoundError(
            404, line, reason=reason, body=_read_body(response),
            method=method, url=url, response=response,
        )

    body = _read_body(response)
    message = line
    code = None
    if body and body.strip():
        try:
            decoded = json.loads(body)
        except ValueError:
            decoded = None
            if is_debug_enabled(logger):
                logger.debug(
                    "Error body is not JSON; using status line",
                    extra=extra_context(
                        event="parse",
                        component="response",
                        action="classify",
                        outcome="unknown_error_format",
                        status_code=response.status_code,
                        target=safe_url(url),
                    ),
                )
        if decoded is not None:
            message = parse_error(decoded) or line
            if isinstance(decoded, dict):
                for field in _CODE_FIELDS:
                    if decoded.get(field) is not None:
                        code = str(decoded[field])
                        break

    return ErrorResponse(
        response.status_code, message, reason=reason, code=code, body=body,
        method=method, url=url, response=response,
    )


def check_response(response: requests.Response) -> None:
    """Raise the classified ErrorResponse for non-success responses."""
    error = classify_response(response)
    if error is not None:
        raise error
