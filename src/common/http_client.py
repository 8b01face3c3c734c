"""Request core shared by every NuGet API call.

Builds transport-level requests (target resolution, body encoding, default
headers, per-call options) and executes them with authentication, optional
client-side rate limiting, retry/backoff and cooperative cancellation.
Responses are returned raw; classification happens in common.response.
"""
from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, Optional, Tuple
from urllib.parse import SplitResult, urlsplit, urlunsplit

import requests
from requests.structures import CaseInsensitiveDict

from constants import Constants
from common.backoff import BackoffPolicy, DefaultBackoff, RateLimitBackoff, as_backoff_policy
from common.cancellation import CancellationToken
from common.errors import BuildError, CancellationError, TransportError
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from common.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

RetryCheck = Callable[[Optional[requests.Response], Optional[Exception]], bool]


@dataclass
class Request:
    """One outbound call. Built per call and never shared between calls."""

    method: str
    url: str
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    body: Optional[bytes] = None
    params: Optional[Dict[str, Any]] = None
    files: Optional[Dict[str, Tuple[str, bytes, str]]] = None
    form: Optional[Dict[str, str]] = None
    cancel_token: CancellationToken = field(default_factory=CancellationToken.background)
    timeout: float = Constants.REQUEST_TIMEOUT
    # Set when the token was created for this call alone (with_deadline).
    owns_cancel_token: bool = False

    def copy(self) -> "Request":
        return replace(
            self,
            headers=CaseInsensitiveDict(self.headers),
            params=dict(self.params) if self.params is not None else None,
        )


RequestOption = Callable[[Request], None]


def encode_body(body: Any) -> Tuple[Optional[bytes], Optional[str]]:
    """Serialize a request body and return it with its content type.

    None yields no body and no content type; bytes are sent as binary;
    anything else is JSON-encoded.
    """
    if body is None:
        return None, None
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body), Constants.CONTENT_TYPE_BINARY
    try:
        return json.dumps(body).encode("utf-8"), Constants.CONTENT_TYPE_JSON
    except (TypeError, ValueError) as exc:
        raise BuildError(f"request body is not JSON serializable: {exc}") from exc


def parse_base_url(base_url: str) -> SplitResult:
    """Validate an absolute http(s) base URL."""
    try:
        parts = urlsplit(base_url.strip())
    except (AttributeError, ValueError) as exc:
        raise BuildError(f"invalid base URL: {base_url!r}") from exc
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise BuildError(f"invalid base URL: {base_url!r}")
    return parts


class _Attempt:
    """One network attempt running on its own daemon thread.

    Each attempt gets a fresh thread, so attempts abandoned after
    cancellation never hold up later ones. A response that arrives after
    the attempt was abandoned is closed.
    """

    def __init__(self, send: Callable[[], requests.Response], on_done: Callable[[], None]):
        self._send = send
        self._on_done = on_done
        self._lock = threading.Lock()
        self._abandoned = False
        self.done = threading.Event()
        self.response: Optional[requests.Response] = None
        self.error: Optional[Exception] = None

    def start(self) -> None:
        threading.Thread(target=self._run, name="nuget-http", daemon=True).start()

    def _run(self) -> None:
        response: Optional[requests.Response] = None
        error: Optional[Exception] = None
        try:
            response = self._send()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            error = exc  # re-raised on the calling thread by result()
        with self._lock:
            self.response, self.error = response, error
            abandoned = self._abandoned
        self.done.set()
        if abandoned and response is not None:
            response.close()
        self._on_done()

    def abandon(self) -> None:
        with self._lock:
            self._abandoned = True
            response, self.response = self.response, None
        if response is not None:
            response.close()

    def result(self) -> requests.Response:
        if self.error is not None:
            raise self.error
        assert self.response is not None
        return self.response


class RequestCore:
    """Builds and executes requests against one base URL.

    All settings are fixed at construction, so a single instance can serve
    many threads at once; the only mutable collaborators are the auth
    strategy's token cache and the optional rate limiter, both guarded by
    their own locks.
    """

    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        user_agent: Optional[str] = Constants.USER_AGENT,
        auth: Any = None,
        backoff: Any = None,
        retry_max: int = Constants.HTTP_RETRY_MAX,
        retry_wait_min: float = Constants.HTTP_RETRY_WAIT_MIN_SEC,
        retry_wait_max: float = Constants.HTTP_RETRY_WAIT_MAX_SEC,
        retry_check: Optional[RetryCheck] = None,
        disable_retries: bool = False,
        rate_limiter: Optional[RateLimiter] = None,
        default_options: Iterable[Optional[RequestOption]] = (),
        timeout: float = Constants.REQUEST_TIMEOUT,
    ):
        if retry_max < 0:
            raise BuildError("retry_max must be >= 0")
        self._base = parse_base_url(base_url)
        self._owns_session = session is None
        self._session = session if session is not None else requests.Session()
        self._user_agent = user_agent
        self._auth = auth
        if backoff is None:
            backoff = DefaultBackoff(rate_limit=RateLimitBackoff(retry_wait_min, retry_wait_max))
        self._backoff: BackoffPolicy = as_backoff_policy(backoff)
        self._retry_max = retry_max
        self._retry_wait_min = retry_wait_min
        self._retry_check = retry_check
        self._disable_retries = disable_retries
        self._rate_limiter = rate_limiter
        self._default_options = tuple(opt for opt in default_options if opt is not None)
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return urlunsplit(self._base)

    @property
    def user_agent(self) -> Optional[str]:
        return self._user_agent

    @property
    def session(self) -> requests.Session:
        return self._session

    @property
    def retry_max(self) -> int:
        return self._retry_max

    @property
    def backoff(self) -> BackoffPolicy:
        return self._backoff

    def resolve_url(self, target: str) -> str:
        """Absolute http(s) targets pass through; others join the base URL path."""
        if not isinstance(target, str):
            raise BuildError(f"request target must be a string, got {type(target).__name__}")
        target = target.strip()
        try:
            parts = urlsplit(target)
        except ValueError as exc:
            raise BuildError(f"invalid request target: {target!r}") from exc

        if parts.scheme:
            if parts.scheme not in ("http", "https") or not parts.netloc:
                raise BuildError(f"invalid request target: {target!r}")
            return target
        if parts.netloc:
            raise BuildError(f"scheme-relative targets are not supported: {target!r}")

        base_path = self._base.path.rstrip("/")
        path = f"{base_path}/{parts.path.lstrip('/')}" if parts.path else (self._base.path or "/")
        return urlunsplit((self._base.scheme, self._base.netloc, path, parts.query, ""))

    def _base_headers(self) -> CaseInsensitiveDict:
        headers = CaseInsensitiveDict({"Accept": Constants.CONTENT_TYPE_JSON})
        if self._user_agent:
            headers["User-Agent"] = self._user_agent
        return headers

    def _apply_options(self, request: Request, options: Iterable[Optional[RequestOption]]) -> None:
        # Client defaults first, then per-call options; later options win.
        for option in (*self._default_options, *options):
            if option is None:
                continue
            option(request)

    def new_request(
        self,
        method: str,
        target: str,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        options: Iterable[Optional[RequestOption]] = (),
    ) -> Request:
        """Build a request; raises BuildError for malformed input."""
        if not method or not isinstance(method, str):
            raise BuildError("request method is required")
        url = self.resolve_url(target)
        payload, content_type = encode_body(body)

        headers = self._base_headers()
        if content_type:
            headers["Content-Type"] = content_type

        request = Request(
            method=method.upper(),
            url=url,
            headers=headers,
            body=payload,
            params=dict(params) if params else None,
            timeout=self._timeout,
        )
        self._apply_options(request, options)
        self._prepare(request)
        return request

    def new_upload_request(
        self,
        method: str,
        target: str,
        content: Any,
        *,
        filename: str,
        field_name: str = "package",
        fields: Optional[Dict[str, Any]] = None,
        options: Iterable[Optional[RequestOption]] = (),
    ) -> Request:
        """Build a multipart/form-data request carrying one file.

        The content is buffered so retries can resend it.
        """
        if not method or not isinstance(method, str):
            raise BuildError("request method is required")
        url = self.resolve_url(target)
        if hasattr(content, "read"):
            data = content.read()
        else:
            data = content
        if isinstance(data, str) or not isinstance(data, (bytes, bytearray, memoryview)):
            raise BuildError("upload content must be bytes or a binary file object")

        request = Request(
            method=method.upper(),
            url=url,
            headers=self._base_headers(),
            files={field_name: (filename, bytes(data), Constants.CONTENT_TYPE_BINARY)},
            form={k: str(v) for k, v in (fields or {}).items()},
            timeout=self._timeout,
        )
        self._apply_options(request, options)
        self._prepare(request)
        return request

    def _prepare(self, request: Request) -> requests.PreparedRequest:
        raw = requests.Request(
            method=request.method,
            url=request.url,
            headers=dict(request.headers),
            params=request.params,
            data=request.form if request.files else request.body,
            files=request.files,
        )
        try:
            return self._session.prepare_request(raw)
        except (requests.RequestException, ValueError, TypeError) as exc:
            raise BuildError(f"cannot build request for {safe_url(request.url)}: {exc}") from exc

    def _should_retry(self, response: Optional[requests.Response], error: Optional[Exception]) -> bool:
        if self._retry_check is not None:
            return bool(self._retry_check(response, error))
        if self._disable_retries:
            return False
        if error is not None:
            return True
        return response is not None and (response.status_code == 429 or response.status_code >= 500)

    def do(self, request: Request) -> requests.Response:
        """Execute ``request`` through auth, rate limiting and the retry loop.

        Returns the final response even when its status is an error; raises
        TransportError when the last attempt failed at the network level,
        CancellationError when the token fires, and AuthenticationError
        when credentials cannot be produced.
        """
        try:
            return self._execute(request)
        finally:
            if request.owns_cancel_token:
                request.cancel_token.close()

    def _execute(self, request: Request) -> requests.Response:
        token = request.cancel_token
        safe_target = safe_url(request.url)
        previous_delay = 0.0
        attempt = 0

        while True:
            token.raise_if_cancelled()
            if self._rate_limiter is not None:
                self._rate_limiter.wait(token)
            outgoing = self._auth.apply(request) if self._auth is not None else request
            attempt += 1

            response: Optional[requests.Response] = None
            error: Optional[TransportError] = None
            with Timer() as t:
                if is_debug_enabled(logger):
                    logger.debug(
                        "HTTP request",
                        extra=extra_context(
                            event="http_request",
                            component="http_client",
                            action=request.method,
                            target=safe_target,
                            attempt=attempt,
                        ),
                    )
                try:
                    response = self._send(outgoing)
                except TransportError as exc:
                    error = exc

            if response is not None:
                if self._rate_limiter is not None:
                    self._rate_limiter.observe(response)
                if is_debug_enabled(logger):
                    logger.debug(
                        "HTTP response",
                        extra=extra_context(
                            event="http_response",
                            component="http_client",
                            action=request.method,
                            outcome="success" if response.status_code < 400 else "error_status",
                            status_code=response.status_code,
                            duration_ms=t.duration_ms(),
                            target=safe_target,
                            attempt=attempt,
                        ),
                    )
            elif is_debug_enabled(logger):
                logger.debug(
                    "HTTP request exception",
                    extra=extra_context(
                        event="http_exception",
                        component="http_client",
                        action=request.method,
                        outcome="transport_error",
                        duration_ms=t.duration_ms(),
                        target=safe_target,
                        attempt=attempt,
                    ),
                )

            if attempt > self._retry_max or not self._should_retry(response, error):
                break

            delay = self._backoff(previous_delay, self._retry_wait_min, attempt, response)
            logger.info(
                "Retrying %s %s in %.3fs (attempt %d of %d)",
                request.method,
                safe_target,
                delay,
                attempt + 1,
                self._retry_max + 1,
                extra=extra_context(
                    event="http_retry",
                    component="http_client",
                    action=request.method,
                    status_code=response.status_code if response is not None else None,
                    attempt=attempt,
                ),
            )
            if response is not None:
                response.close()
            token.sleep(delay)
            previous_delay = delay

        if error is not None:
            error.attempts = attempt
            logger.warning(
                "%s %s failed after %d attempt(s): %s",
                request.method,
                safe_target,
                attempt,
                error,
                extra=extra_context(
                    event="http_exception",
                    component="http_client",
                    action=request.method,
                    outcome="retries_exhausted",
                    target=safe_target,
                    attempt=attempt,
                ),
            )
            raise error
        assert response is not None
        return response

    def _send(self, request: Request) -> requests.Response:
        token = request.cancel_token
        prepared = self._prepare(request)
        timeout = request.timeout
        remaining = token.remaining()
        if remaining is not None:
            timeout = max(0.001, min(timeout, remaining))

        if not token.can_cancel:
            return self._transmit(prepared, timeout)

        # Run the attempt off-thread so cancellation can interrupt the wait.
        finished = threading.Event()
        attempt = _Attempt(lambda: self._transmit(prepared, timeout), finished.set)
        attempt.start()
        unregister = token.add_callback(finished.set)
        try:
            finished.wait(token.remaining())
        finally:
            unregister()

        if token.cancelled or not attempt.done.is_set():
            attempt.abandon()
            raise CancellationError(token.reason or CancellationError.DEADLINE_EXCEEDED)
        return attempt.result()

    def _transmit(self, prepared: requests.PreparedRequest, timeout: float) -> requests.Response:
        try:
            return self._session.send(prepared, timeout=timeout, allow_redirects=True)
        except requests.Timeout as exc:
            raise TransportError(
                f"request timed out after {timeout} seconds", url=safe_url(prepared.url)
            ) from exc
        except requests.RequestException as exc:  # includes ConnectionError
            raise TransportError(f"connection error: {exc}", url=safe_url(prepared.url)) from exc

    def close(self) -> None:
        if self._owns_session:
            self._session.close()
