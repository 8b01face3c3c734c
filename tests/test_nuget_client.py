"""Tests for the NuGet client facade."""

import io
import threading
from unittest.mock import patch
from xml.etree import ElementTree as ET

import pytest

from common.backoff import ZeroBackoff
from common.errors import (
    BuildError,
    DiscoveryError,
    ErrorResponse,
    NotFoundError,
    ResponseDecodeError,
)
from constants import Constants, Decoder
from registry.nuget import (
    ClientConfig,
    NuGetClient,
    ServiceType,
    normalize_id,
    path_escape,
    with_client_version,
)
from registry.nuget.auth import ApiKeyAuth, BearerTokenAuth

from conftest import Reply, SOURCE_URL

REGISTRATION = "https://api.nuget.org/v3/registration5-gz-semver2"
FLAT = "https://api.nuget.org/v3-flatcontainer"
PUBLISH = "https://www.nuget.org/api/v2/package"


@pytest.fixture
def client(session):
    with NuGetClient(SOURCE_URL, session=session, backoff=ZeroBackoff()) as nuget:
        yield nuget


class TestConstruction:
    """Test client construction and endpoint lookup."""

    def test_resolves_endpoints_once(self, client, transport):
        assert client.endpoint_for(ServiceType.REGISTRATIONS_BASE_URL) == REGISTRATION
        assert client.endpoint_for(ServiceType.PACKAGE_BASE_ADDRESS) == FLAT
        assert len(client.endpoints) == len(ServiceType)
        client.endpoint_for(ServiceType.SEARCH_QUERY_SERVICE)
        assert len(transport.calls_to(SOURCE_URL)) == 1

    def test_defaults(self, client):
        assert client.source_url == SOURCE_URL
        assert client.base_url == "https://api.nuget.org/"
        assert client.user_agent == Constants.USER_AGENT

    def test_base_url_override(self, session):
        with NuGetClient(SOURCE_URL, session=session, base_url="https://proxy.test/nuget/") as nuget:
            assert nuget.base_url == "https://proxy.test/nuget/"

    def test_discovery_failure_aborts(self, session):
        with pytest.raises(DiscoveryError):
            NuGetClient("https://feed.test/v3/index.json", session=session, backoff=ZeroBackoff())

    def test_absent_capability_returns_none(self, session, transport):
        url = "https://feed.test/v3/index.json"
        transport.add_json("GET", url, {
            "version": "3.0.0",
            "resources": [{"@id": "https://feed.test/query", "@type": "SearchQueryService"}],
        })

        with NuGetClient(url, session=session) as nuget:
            assert nuget.endpoint_for(ServiceType.PACKAGE_PUBLISH) is None
            with pytest.raises(BuildError):
                nuget.resource_request(ServiceType.PACKAGE_PUBLISH, "x")

    def test_config_with_overrides(self, session):
        config = ClientConfig(source_url=SOURCE_URL, session=session, backoff=ZeroBackoff())

        with NuGetClient(config=config, user_agent="my-tool/2.0", api_key="k") as nuget:
            assert nuget.user_agent == "my-tool/2.0"
            assert isinstance(nuget.config.auth, ApiKeyAuth)
            assert nuget.config.backoff is config.backoff

    def test_context_manager_closes(self, session):
        with patch("registry.nuget.client.RequestCore.close") as mock_close:
            with NuGetClient(SOURCE_URL, session=session):
                pass

        mock_close.assert_called_once()


class TestRequests:
    """Test request execution and decoding."""

    def test_resource_request_json(self, client, transport):
        transport.add_json("GET", f"{REGISTRATION}/newtonsoft.json/index.json", {"count": 2})

        result = client.resource_request(
            ServiceType.REGISTRATIONS_BASE_URL, f"{normalize_id('Newtonsoft.Json')}/index.json"
        )

        assert result == {"count": 2}

    def test_raw_decoder_and_sink(self, client, transport):
        url = f"{FLAT}/demo/1.0.0/demo.1.0.0.nupkg"
        transport.add("GET", url, Reply(200, b"PK\x03\x04"))
        sink = io.BytesIO()

        assert client.request("GET", url, decoder=Decoder.RAW) == b"PK\x03\x04"
        assert client.request("GET", url, decoder=None, sink=sink) is None
        assert sink.getvalue() == b"PK\x03\x04"

    def test_xml_decoder(self, client, transport):
        url = "https://www.nuget.org/api/v2/Packages()"
        transport.add("GET", url, Reply(200, b"<feed><entry>demo</entry></feed>"))

        root = client.request("GET", url, decoder="xml")

        assert isinstance(root, ET.Element)
        assert root.find("entry").text == "demo"

    def test_empty_json_body(self, client, transport):
        transport.add("DELETE", f"{PUBLISH}/demo/1.0.0", Reply(204))

        assert client.request("DELETE", f"{PUBLISH}/demo/1.0.0") is None

    @pytest.mark.parametrize("decoder,body", [(Decoder.JSON, b"{broken"), (Decoder.XML, b"<unclosed>")])
    def test_undecodable_body(self, client, transport, decoder, body):
        url = "https://api.nuget.org/v3/broken"
        transport.add("GET", url, Reply(200, body))

        with pytest.raises(ResponseDecodeError):
            client.request("GET", url, decoder=decoder)

    def test_unknown_decoder(self, client):
        with pytest.raises(BuildError):
            client.request("GET", "v3/anything", decoder="yaml")

    def test_not_found(self, client):
        with pytest.raises(NotFoundError) as exc_info:
            client.resource_request(ServiceType.REGISTRATIONS_BASE_URL, "missing/index.json")

        assert str(exc_info.value) == "404 Not Found"

    def test_error_body_flattened(self, client, transport):
        transport.add("PUT", PUBLISH, Reply(400, {"error": "test request error"}))

        with pytest.raises(ErrorResponse) as exc_info:
            client.request("PUT", PUBLISH, body={"id": "demo"})

        assert str(exc_info.value) == "{error: test request error}"
        assert exc_info.value.status_code == 400

    def test_relative_target_uses_base_url(self, client, transport):
        transport.add_json("GET", "https://api.nuget.org/v3/catalog0/index.json", {"count": 1})

        assert client.request("GET", "v3/catalog0/index.json") == {"count": 1}

    def test_upload(self, session, transport):
        transport.add("PUT", PUBLISH, Reply(201))

        with NuGetClient(SOURCE_URL, session=session, api_key="push-key") as nuget:
            request = nuget.new_upload_request(
                "PUT", nuget.endpoint_for(ServiceType.PACKAGE_PUBLISH), b"PK\x03\x04", filename="demo.1.0.0.nupkg"
            )
            assert nuget.do(request, decoder=Decoder.NONE) is None

        sent = transport.calls_to(PUBLISH)[0]
        assert sent.headers["X-NuGet-ApiKey"] == "push-key"
        assert b"PK\x03\x04" in sent.body


class TestCredentialsAndOptions:
    """Test client-wide credentials and default options."""

    def test_bearer_token_sent(self, session, transport):
        with NuGetClient(SOURCE_URL, session=session, token="tok-1") as nuget:
            assert isinstance(nuget.config.auth, BearerTokenAuth)

        assert transport.calls_to(SOURCE_URL)[0].headers["Authorization"] == "Bearer tok-1"

    def test_default_options_apply_to_discovery_and_calls(self, session, transport):
        transport.add_json("GET", f"{REGISTRATION}/demo/index.json", {})

        with NuGetClient(SOURCE_URL, session=session, request_options=[with_client_version("4.1.0")]) as nuget:
            nuget.resource_request(ServiceType.REGISTRATIONS_BASE_URL, "demo/index.json")

        for call in transport.calls:
            assert call.headers["X-NuGet-Client-Version"] == "4.1.0"


class TestConcurrency:
    """Test sharing one client between threads."""

    def test_parallel_requests(self, client, transport):
        for n in range(8):
            transport.add_json("GET", f"{REGISTRATION}/pkg{n}/index.json", {"id": f"pkg{n}"})
        results = {}
        errors = []

        def fetch(n):
            try:
                results[n] = client.resource_request(ServiceType.REGISTRATIONS_BASE_URL, f"pkg{n}/index.json")
            except Exception as exc:  # pylint: disable=broad-exception-caught
                errors.append(exc)

        threads = [threading.Thread(target=fetch, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert errors == []
        assert results == {n: {"id": f"pkg{n}"} for n in range(8)}


class TestIdHelpers:
    """Test normalize_id and path_escape."""

    def test_normalize_id(self):
        assert normalize_id("Newtonsoft.Json") == "newtonsoft.json"
        assert normalize_id("  Serilog ") == "serilog"

    @pytest.mark.parametrize("value", ["", "   ", None])
    def test_normalize_id_rejects_empty(self, value):
        with pytest.raises(BuildError):
            normalize_id(value)

    def test_path_escape(self):
        assert path_escape("1.0.0-beta+build") == "1%2E0%2E0-beta%2Bbuild"
        assert path_escape("a/b c") == "a%2Fb%20c"
