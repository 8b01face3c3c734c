"""Tests for response classification and error-body flattening."""

import pytest

from common.errors import ErrorResponse, NotFoundError
from common.response import check_response, classify_response, is_success, parse_error, status_line


class TestIsSuccess:
    """Test the success predicate."""

    @pytest.mark.parametrize("status", [200, 201, 202, 204, 299, 304])
    def test_success_statuses(self, status):
        assert is_success(status)

    @pytest.mark.parametrize("status", [100, 301, 302, 400, 404, 429, 500, 503])
    def test_error_statuses(self, status):
        assert not is_success(status)


class TestParseError:
    """Test parse_error flattening."""

    def test_string(self):
        assert parse_error("bad request") == "bad request"

    def test_list(self):
        assert parse_error(["a", "b"]) == "[a, b]"

    def test_object(self):
        assert parse_error({"error": "test request error"}) == "{error: test request error}"

    def test_object_keys_sorted(self):
        assert parse_error({"message": "m", "error": "e"}) == "{error: e}, {message: m}"

    def test_nested(self):
        assert parse_error({"errors": ["x", {"field": "id"}]}) == "{errors: [x, {field: id}]}"

    def test_scalars(self):
        assert parse_error(3) == "3"
        assert parse_error(True) == "true"
        assert parse_error(None) == "null"


class TestClassifyResponse:
    """Test classify_response and check_response."""

    @pytest.mark.parametrize("status", [200, 201, 204, 304])
    def test_success_is_none(self, make_response, status):
        assert classify_response(make_response(status)) is None

    def test_not_found_message_is_exact(self, make_response):
        error = classify_response(make_response(404, {"error": "package missing"}))

        assert isinstance(error, NotFoundError)
        assert str(error) == "404 Not Found"
        assert error.message == "404 Not Found"
        assert error.status_code == 404

    def test_json_object_body(self, make_response):
        error = classify_response(make_response(400, {"error": "test request error"}))

        assert type(error) is ErrorResponse
        assert str(error) == "{error: test request error}"
        assert error.reason == "Bad Request"

    def test_json_string_body(self, make_response):
        error = classify_response(make_response(409, '"package version already exists"'))

        assert str(error) == "package version already exists"

    def test_code_field_extracted(self, make_response):
        error = classify_response(make_response(403, {"code": "ApiKeyExpired", "message": "expired"}))

        assert error.code == "ApiKeyExpired"

    def test_non_json_body_uses_status_line(self, make_response):
        error = classify_response(make_response(502, b"<html>upstream</html>"))

        assert str(error) == "502 Bad Gateway"
        assert error.body == b"<html>upstream</html>"

    @pytest.mark.parametrize("body", [b"", b"   ", None])
    def test_blank_body_uses_status_line(self, make_response, body):
        error = classify_response(make_response(500, body))

        assert str(error) == "500 Internal Server Error"

    def test_unknown_status_without_reason(self, make_response):
        error = classify_response(make_response(599, b""))

        assert str(error) == "599"

    def test_carries_request_details(self, make_response):
        response = make_response(500, b"", url="https://api.nuget.test/v3/query")

        error = classify_response(response)

        assert error.url == "https://api.nuget.test/v3/query"
        assert error.response is response
        assert error.describe() == "https://api.nuget.test/v3/query: 500 Internal Server Error"

    def test_describe_prefixes_status_for_body_messages(self, make_response):
        error = classify_response(make_response(400, {"error": "bad"}))

        assert error.describe() == "https://nuget.test/: 400 {error: bad}"

    def test_check_response_raises(self, make_response):
        with pytest.raises(ErrorResponse) as exc_info:
            check_response(make_response(401, {"error": "unauthorized"}))

        assert exc_info.value.status_code == 401

    def test_check_response_passes_success(self, make_response):
        check_response(make_response(200, {"ok": True}))

    def test_status_line_falls_back_to_phrase(self, make_response):
        response = make_response(503)
        response.reason = None

        assert status_line(response) == "503 Service Unavailable"
