"""NuGet service index discovery: fetch the index and resolve it into endpoints."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from common.cancellation import CancellationToken
from common.errors import DiscoveryError, ErrorResponse, TransportError
from common.http_client import RequestCore, RequestOption
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from common.response import classify_response

from .catalog import ServiceType, is_known_alias, is_versioned, match_specificity, match_tag

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resource:
    """One ``resources`` entry of a service index."""

    id: str
    type: str
    comment: Optional[str] = None
    client_version: Optional[str] = None


@dataclass(frozen=True)
class ServiceIndex:
    """Decoded service index document."""

    version: Optional[str]
    resources: Tuple[Resource, ...] = field(default_factory=tuple)
    context: Optional[Dict[str, Any]] = None


class EndpointMap(Mapping[ServiceType, str]):
    """Read-only mapping from ServiceType to its resolved URL.

    Capabilities missing from the index are simply absent; ``get`` and
    ``url_for`` return None for them.
    """

    __slots__ = ("_urls",)

    def __init__(self, urls: Optional[Mapping[ServiceType, str]] = None):
        self._urls: Dict[ServiceType, str] = dict(urls or {})

    def __getitem__(self, key: ServiceType) -> str:
        return self._urls[key]

    def __iter__(self) -> Iterator[ServiceType]:
        return iter(self._urls)

    def __len__(self) -> int:
        return len(self._urls)

    def __repr__(self) -> str:
        return f"EndpointMap({self.as_dict()!r})"

    def url_for(self, service_type: ServiceType) -> Optional[str]:
        return self._urls.get(service_type)

    def as_dict(self) -> Dict[str, str]:
        return {k.value: v for k, v in self._urls.items()}


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def parse_service_index(document: Any, url: Optional[str] = None) -> ServiceIndex:
    """Validate a decoded service index.

    The document must be an object with a ``resources`` list. Entries that
    are not objects or lack string ``@id``/``@type`` fields are skipped.
    """
    if not isinstance(document, dict):
        raise DiscoveryError("service index is not a JSON object", url=url)
    raw_resources = document.get("resources")
    if not isinstance(raw_resources, list):
        raise DiscoveryError("service index has no 'resources' array", url=url)

    resources: List[Resource] = []
    for entry in raw_resources:
        if not isinstance(entry, dict):
            continue
        res_id, res_type = entry.get("@id"), entry.get("@type")
        if not isinstance(res_id, str) or not isinstance(res_type, str):
            continue
        if not res_id.strip() or not res_type.strip():
            continue
        resources.append(
            Resource(
                id=res_id,
                type=res_type,
                comment=_optional_str(entry.get("comment")),
                client_version=_optional_str(entry.get("clientVersion")),
            )
        )

    context = document.get("@context")
    return ServiceIndex(
        version=_optional_str(document.get("version")),
        resources=tuple(resources),
        context=context if isinstance(context, dict) else None,
    )


def normalize_resource_url(url: str) -> str:
    """Strip surrounding whitespace and one trailing slash."""
    url = url.strip()
    return url[:-1] if url.endswith("/") else url


def build_endpoint_map(resources: Iterable[Resource]) -> EndpointMap:
    """Match resources against the catalog.

    When several entries resolve to the same capability the longest
    matching tag wins; equal lengths keep the earliest entry.
    """
    chosen: Dict[ServiceType, Tuple[int, str, str]] = {}
    for resource in resources:
        service_type = match_tag(resource.type)
        if service_type is None:
            if is_debug_enabled(logger):
                logger.debug("Ignoring unrecognized resource type", extra=extra_context(
                    event="decision", component="discovery", action="match_tag",
                    target=resource.type, outcome="unrecognized",
                ))
            continue
        rank = match_specificity(resource.type)
        current = chosen.get(service_type)
        if current is None or rank > current[0]:
            chosen[service_type] = (rank, resource.type, normalize_resource_url(resource.id))

    if is_debug_enabled(logger):
        for service_type, (_, tag, url) in chosen.items():
            logger.debug("Resolved service endpoint", extra=extra_context(
                event="decision", component="discovery", action="build_endpoint_map",
                service_type=service_type.value, tag=tag, target=safe_url(url),
                versioned=is_versioned(tag), known_alias=is_known_alias(service_type, tag),
            ))
    return EndpointMap({st: url for st, (_, _, url) in chosen.items()})


def fetch_service_index(
    core: RequestCore,
    index_url: str,
    token: Optional[CancellationToken] = None,
    options: Iterable[Optional[RequestOption]] = (),
) -> ServiceIndex:
    """GET and parse the service index at ``index_url``.

    Transport retries come from the request core; failures surface as
    DiscoveryError chained to the underlying error. CancellationError
    propagates unchanged.
    """
    safe_target = safe_url(index_url)
    request = core.new_request("GET", index_url, options=options)
    if token is not None:
        request.cancel_token = token

    with Timer() as t:
        try:
            response = core.do(request)
        except TransportError as exc:
            logger.error("Service index %s unreachable: %s", safe_target, exc)
            raise DiscoveryError(f"service index unreachable: {exc}", url=index_url) from exc

    error: Optional[ErrorResponse] = classify_response(response)
    if error is not None:
        logger.error(
            "Service index request failed",
            extra=extra_context(
                event="http_response", component="discovery", action="fetch_service_index",
                outcome="error_status", status_code=error.status_code, target=safe_target,
            ),
        )
        raise DiscoveryError(f"service index request failed: {error}", url=index_url) from error

    try:
        document = json.loads(response.content)
    except ValueError as exc:
        raise DiscoveryError("service index is not valid JSON", url=index_url) from exc

    index = parse_service_index(document, url=index_url)
    logger.info(
        "Service index loaded",
        extra=extra_context(
            event="http_response", component="discovery", action="fetch_service_index",
            outcome="success", status_code=response.status_code, target=safe_target,
            count=len(index.resources), duration_ms=t.duration_ms(),
        ),
    )
    return index


def resolve_service_index(
    core: RequestCore,
    index_url: str,
    token: Optional[CancellationToken] = None,
    options: Iterable[Optional[RequestOption]] = (),
) -> EndpointMap:
    """Fetch the service index and resolve it into an EndpointMap."""
    index = fetch_service_index(core, index_url, token=token, options=options)
    return build_endpoint_map(index.resources)
