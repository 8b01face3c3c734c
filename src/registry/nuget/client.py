"""NuGet client facade: resolves the service index once and routes calls through the request core."""
from __future__ import annotations

import json
import logging
import urllib.parse
from typing import Any, Dict, Iterable, Optional, Union
from xml.etree import ElementTree as ET

import requests

from constants import Decoder
from common.errors import BuildError, DiscoveryError, ResponseDecodeError
from common.http_client import Request, RequestCore, RequestOption
from common.logging_utils import extra_context, is_debug_enabled, safe_url
from common.response import classify_response

from .auth import auth_from_settings
from .catalog import ServiceType
from .config import ClientConfig
from .discovery import EndpointMap, resolve_service_index

logger = logging.getLogger(__name__)

DecoderLike = Union[Decoder, str, None]


def normalize_id(package_id: str) -> str:
    """Lower-case a package id the way V3 resource paths expect it."""
    if not isinstance(package_id, str) or not package_id.strip():
        raise BuildError("package id must not be empty")
    return package_id.strip().lower()


def path_escape(value: str) -> str:
    """Percent-encode one path segment; dots are escaped too."""
    return urllib.parse.quote(str(value), safe="").replace(".", "%2E")


def _as_decoder(decoder: DecoderLike) -> Decoder:
    if decoder is None:
        return Decoder.NONE
    if isinstance(decoder, Decoder):
        return decoder
    try:
        return Decoder(str(decoder).lower())
    except ValueError as exc:
        raise BuildError(f"unknown decoder: {decoder!r}") from exc


def _config_with_overrides(config: ClientConfig, overrides: Dict[str, Any]) -> ClientConfig:
    overrides = {k: v for k, v in overrides.items() if v is not None}
    api_key = overrides.pop("api_key", None)
    token = overrides.pop("token", None)
    if (api_key or token) and "auth" not in overrides:
        overrides["auth"] = auth_from_settings(api_key=api_key, token=token)
    return config.replace(**overrides) if overrides else config


class NuGetClient:
    """Entry point for talking to one NuGet V3 source.

    Construction fetches the service index once; a DiscoveryError aborts it.
    The endpoint map and configuration never change afterwards, so one
    client can be shared freely between threads.

    Args:
        source_url: Service index URL; defaults to nuget.org.
        config: Prebuilt ClientConfig. Keyword settings override its fields.
        **settings: Any ClientConfig field plus ``api_key`` / ``token``.
    """

    def __init__(self, source_url: Optional[str] = None, *, config: Optional[ClientConfig] = None, **settings: Any):
        if source_url is not None:
            settings["source_url"] = source_url
        if config is None:
            config = ClientConfig.from_settings(**settings)
        else:
            config = _config_with_overrides(config, settings)
        self._config = config

        self._core = RequestCore(
            config.resolved_base_url,
            session=config.session,
            user_agent=config.user_agent,
            auth=config.auth,
            backoff=config.backoff,
            retry_max=config.retry_max,
            retry_wait_min=config.retry_wait_min,
            retry_wait_max=config.retry_wait_max,
            retry_check=config.retry_check,
            disable_retries=config.disable_retries,
            rate_limiter=config.rate_limiter,
            default_options=config.request_options,
            timeout=config.timeout,
        )
        try:
            self._endpoints = resolve_service_index(self._core, config.source_url)
        except DiscoveryError:
            self._core.close()
            raise

        logger.info(
            "NuGet client ready",
            extra=extra_context(
                event="client_init",
                component="client",
                target=safe_url(config.source_url),
                count=len(self._endpoints),
            ),
        )

    def __enter__(self) -> "NuGetClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"NuGetClient(source_url={safe_url(self.source_url)!r})"

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def source_url(self) -> str:
        return self._config.source_url

    @property
    def base_url(self) -> str:
        return self._core.base_url

    @property
    def user_agent(self) -> Optional[str]:
        return self._core.user_agent

    @property
    def endpoints(self) -> EndpointMap:
        return self._endpoints

    @property
    def core(self) -> RequestCore:
        return self._core

    def endpoint_for(self, service_type: ServiceType) -> Optional[str]:
        """URL the source advertises for ``service_type``, or None."""
        return self._endpoints.url_for(service_type)

    def new_request(
        self,
        method: str,
        target: str,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        options: Iterable[Optional[RequestOption]] = (),
    ) -> Request:
        return self._core.new_request(method, target, body=body, params=params, options=options)

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
        return self._core.new_upload_request(
            method, target, content,
            filename=filename, field_name=field_name, fields=fields, options=options,
        )

    def do(self, request: Request, decoder: DecoderLike = Decoder.JSON, sink: Any = None) -> Any:
        """Execute ``request``, raise on error statuses and decode the body.

        Returns the decoded body (None for ``Decoder.NONE``). When ``sink`` is
        given, the raw body is written to it as well.
        """
        chosen = _as_decoder(decoder)
        response = self._core.do(request)
        try:
            error = classify_response(response)
            if error is not None:
                if is_debug_enabled(logger):
                    logger.debug(
                        "Request returned error status",
                        extra=extra_context(
                            event="http_response",
                            component="client",
                            action=request.method,
                            outcome="error_status",
                            status_code=error.status_code,
                            target=safe_url(request.url),
                        ),
                    )
                raise error
            return self._decode(response, chosen, sink)
        finally:
            response.close()

    def request(
        self,
        method: str,
        target: str,
        body: Any = None,
        *,
        params: Optional[Dict[str, Any]] = None,
        options: Iterable[Optional[RequestOption]] = (),
        decoder: DecoderLike = Decoder.JSON,
        sink: Any = None,
    ) -> Any:
        """Build and execute a request in one step."""
        built = self.new_request(method, target, body=body, params=params, options=options)
        return self.do(built, decoder=decoder, sink=sink)

    def resource_request(
        self,
        service_type: ServiceType,
        path: str = "",
        method: str = "GET",
        body: Any = None,
        *,
        params: Optional[Dict[str, Any]] = None,
        options: Iterable[Optional[RequestOption]] = (),
        decoder: DecoderLike = Decoder.JSON,
        sink: Any = None,
    ) -> Any:
        """Call ``path`` below the endpoint advertised for ``service_type``."""
        base = self.endpoint_for(service_type)
        if base is None:
            raise BuildError(f"source does not advertise {service_type}")
        target = f"{base}/{path.lstrip('/')}" if path else base
        return self.request(method, target, body, params=params, options=options, decoder=decoder, sink=sink)

    @staticmethod
    def _decode(response: requests.Response, decoder: Decoder, sink: Any) -> Any:
        content = response.content or b""
        if sink is not None:
            sink.write(content)
        if decoder is Decoder.NONE:
            return None
        if decoder is Decoder.RAW:
            return content
        if not content.strip():
            return None
        if decoder is Decoder.XML:
            try:
                return ET.fromstring(content)
            except ET.ParseError as exc:
                raise ResponseDecodeError(f"response body is not valid XML: {exc}") from exc
        try:
            return json.loads(content)
        except ValueError as exc:
            raise ResponseDecodeError(f"response body is not valid JSON: {exc}") from exc

    def close(self) -> None:
        self._core.close()
