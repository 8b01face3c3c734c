"""Shared fixtures: an in-process requests transport and a service index."""

import io
import json
import threading
from dataclasses import dataclass, field
from http import HTTPStatus
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from common.backoff import ZeroBackoff
from common.http_client import RequestCore

FIXTURES = Path(__file__).parent / "fixtures"
SOURCE_URL = "https://api.nuget.org/v3/index.json"


@dataclass
class Reply:
    """Canned response served by FakeTransport."""

    status: int = 200
    body: Any = b""
    headers: Dict[str, str] = field(default_factory=dict)

    def content(self) -> bytes:
        if isinstance(self.body, bytes):
            return self.body
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return json.dumps(self.body).encode("utf-8")


def build_response(
    status: int,
    body: Any = b"",
    headers: Optional[Dict[str, str]] = None,
    request: Optional[requests.PreparedRequest] = None,
    url: str = "https://nuget.test/",
) -> requests.Response:
    content = Reply(status, body).content() if body is not None else None
    response = requests.Response()
    response.status_code = status
    try:
        response.reason = HTTPStatus(status).phrase
    except ValueError:
        response.reason = ""
    response.headers = CaseInsensitiveDict(headers or {})
    response._content = content
    response._content_consumed = True
    response.raw = io.BytesIO(content or b"")
    response.url = request.url if request is not None else url
    response.request = request
    response.encoding = "utf-8"
    return response


class FakeTransport(BaseAdapter):
    """requests adapter answering from registered routes instead of the network.

    Routes are keyed by method and URL without the query string. Each route
    holds a queue of replies; the last reply repeats once the queue drains.
    A reply may be a Reply, an exception instance (raised from ``send``), or
    a callable taking the PreparedRequest and returning either of those.
    Unknown routes answer 404.
    """

    def __init__(self):
        super().__init__()
        self._routes: Dict[Tuple[str, str], List[Any]] = {}
        self._lock = threading.Lock()
        self.calls: List[requests.PreparedRequest] = []

    def add(self, method: str, url: str, *replies: Any) -> "FakeTransport":
        with self._lock:
            self._routes.setdefault((method.upper(), url), []).extend(replies)
        return self

    def add_json(self, method: str, url: str, payload: Any, status: int = 200, headers=None) -> "FakeTransport":
        return self.add(method, url, Reply(status, payload, dict(headers or {})))

    def calls_to(self, url: str) -> List[requests.PreparedRequest]:
        with self._lock:
            return [call for call in self.calls if call.url.split("?", 1)[0] == url]

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        key = (request.method, request.url.split("?", 1)[0])
        with self._lock:
            self.calls.append(request)
            queue = self._routes.get(key)
            if not queue:
                reply: Any = Reply(404, b"")
            elif len(queue) == 1:
                reply = queue[0]
            else:
                reply = queue.pop(0)

        if callable(reply) and not isinstance(reply, Reply):
            reply = reply(request)
        if isinstance(reply, BaseException):
            raise reply
        return build_response(reply.status, reply.content(), reply.headers, request=request)

    def close(self):
        pass


@pytest.fixture
def index_document() -> Dict[str, Any]:
    with open(FIXTURES / "index.json", "r", encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def transport(index_document) -> FakeTransport:
    fake = FakeTransport()
    fake.add_json("GET", SOURCE_URL, index_document)
    return fake


@pytest.fixture
def session(transport) -> requests.Session:
    sess = requests.Session()
    sess.mount("https://", transport)
    sess.mount("http://", transport)
    yield sess
    sess.close()


@pytest.fixture
def make_core(session) -> Callable[..., RequestCore]:
    """Factory for request cores bound to the fake transport."""
    created: List[RequestCore] = []

    def _make(base_url: str = "https://api.nuget.org/", **kwargs) -> RequestCore:
        kwargs.setdefault("backoff", ZeroBackoff())
        core = RequestCore(base_url, session=session, **kwargs)
        created.append(core)
        return core

    yield _make
    for core in created:
        core.close()


@pytest.fixture
def make_response() -> Callable[..., requests.Response]:
    return build_response
