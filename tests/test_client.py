"""
Tests for the client module.
"""

import os
import pytest
from unittest.mock import patch

from canvas_context.client import (
    ACCEPT_HEADER,
    CanvasClient,
    build_query,
    get_canvas_client,
    raise_for_canvas_status,
    _validate_domain,
    _validate_token,
)
from canvas_context.exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    PermissionDeniedError,
    ResourceDisabledError,
    ResourceNotFoundError,
    ValidationError,
)

from conftest import FakeResponse, make_client


class TestValidateDomain:
    """Tests for _validate_domain function."""

    def test_valid_domain(self):
        _validate_domain("canvas.instructure.com")  # Should not raise

    def test_valid_domain_with_port(self):
        _validate_domain("localhost:3000")  # Should not raise

    def test_empty_domain_raises_config_error(self):
        with pytest.raises(ConfigurationError) as exc_info:
            _validate_domain("")

        assert "CANVAS_DOMAIN" in str(exc_info.value)

    def test_none_domain_raises_config_error(self):
        with pytest.raises(ConfigurationError):
            _validate_domain(None)

    def test_invalid_domain_format(self):
        for domain in ["-invalid", "canvas edu", "canvas.edu/path"]:
            with pytest.raises(ValidationError):
                _validate_domain(domain)


class TestValidateToken:
    """Tests for _validate_token function."""

    def test_valid_token(self):
        _validate_token("some-token-value")  # Should not raise

    def test_empty_token_raises_config_error(self):
        with pytest.raises(ConfigurationError) as exc_info:
            _validate_token("")

        assert "CANVAS_API_TOKEN" in str(exc_info.value)


class TestBuildQuery:
    """Tests for Canvas query serialization."""

    def test_list_values_become_array_keys(self):
        query = build_query({"include": ["term", "concluded", "sections"], "per_page": 100})

        assert query == [
            ("include[]", "term"),
            ("include[]", "concluded"),
            ("include[]", "sections"),
            ("per_page", "100"),
        ]

    def test_existing_array_suffix_not_doubled(self):
        assert build_query({"include[]": ["items"]}) == [("include[]", "items")]

    def test_booleans_and_none(self):
        query = build_query({"only_published": True, "search_term": None, "override": False})

        assert query == [("only_published", "true"), ("override", "false")]

    def test_empty(self):
        assert build_query(None) == []
        assert build_query({}) == []


class TestRaiseForCanvasStatus:
    """Tests for mapping HTTP status codes to exceptions."""

    def test_success_does_not_raise(self):
        raise_for_canvas_status(FakeResponse([], status_code=200))

    def test_401(self):
        with pytest.raises(AuthenticationError) as exc_info:
            raise_for_canvas_status(FakeResponse(status_code=401, text="unauthorized"))

        assert "Invalid or expired access token" in str(exc_info.value)

    def test_403(self):
        with pytest.raises(PermissionDeniedError) as exc_info:
            raise_for_canvas_status(FakeResponse(status_code=403, text="forbidden"))

        assert "insufficient permissions" in str(exc_info.value)

    def test_404_disabled_english(self):
        response = FakeResponse(status_code=404, text='{"message": "That page has been disabled for this course"}')

        with pytest.raises(ResourceDisabledError) as exc_info:
            raise_for_canvas_status(response, "/api/v1/courses/1/files")

        assert "disabled" in str(exc_info.value)
        assert exc_info.value.identifier == "/api/v1/courses/1/files"

    def test_404_disabled_arabic(self):
        response = FakeResponse(status_code=404, text='{"message": "تم تعطيل هذه الصفحة لهذا المساق"}')

        with pytest.raises(ResourceDisabledError):
            raise_for_canvas_status(response, "/api/v1/courses/1/files")

    def test_404_not_found(self):
        response = FakeResponse(status_code=404, text='{"errors": [{"message": "The specified resource does not exist."}]}')

        with pytest.raises(ResourceNotFoundError) as exc_info:
            raise_for_canvas_status(response, "/api/v1/courses/999")

        assert not isinstance(exc_info.value, ResourceDisabledError)
        assert "not found or is not accessible" in str(exc_info.value)

    def test_other_status_is_api_error(self):
        with pytest.raises(APIError) as exc_info:
            raise_for_canvas_status(FakeResponse(status_code=500, text="Internal Server Error"))

        assert exc_info.value.status_code == 500
        assert exc_info.value.response == "Internal Server Error"
        assert str(exc_info.value) == "Canvas API Error (500): Internal Server Error"


class TestCanvasClient:
    """Tests for CanvasClient class."""

    def test_init_with_explicit_credentials(self):
        client = CanvasClient(domain="test.com", token="test-token")

        assert client.domain == "test.com"
        assert client.token == "test-token"

    def test_init_strips_scheme_and_slash(self):
        client = CanvasClient(domain="https://canvas.test.edu/", token="t")

        assert client.domain == "canvas.test.edu"
        assert client.base_url == "https://canvas.test.edu"

    def test_init_from_environment(self):
        with patch.dict(os.environ, {
            "CANVAS_DOMAIN": "env.test.com",
            "CANVAS_API_TOKEN": "env-token"
        }):
            client = CanvasClient()

        assert client.domain == "env.test.com"
        assert client.token == "env-token"

    def test_session_property_validates_credentials(self):
        with patch.dict(os.environ, {}, clear=True):
            client = CanvasClient(domain="", token="test")

            with pytest.raises(ConfigurationError):
                _ = client.session

    def test_session_headers(self):
        client = CanvasClient(domain="canvas.test.edu", token="secret")
        session = client.session

        assert session.headers["Authorization"] == "Bearer secret"
        assert session.headers["Accept"] == ACCEPT_HEADER
        assert session.headers["User-Agent"].startswith("canvas-context/")

    def test_get_returns_json(self):
        client, session = make_client(FakeResponse({"id": "1", "name": "Biology"}))

        assert client.get("/api/v1/courses/1") == {"id": "1", "name": "Biology"}
        args, kwargs = session.get.call_args
        assert args[0] == "https://canvas.test.edu/api/v1/courses/1"


class TestPagination:
    """Tests for following Link headers."""

    def test_three_pages_concatenated_in_order(self):
        client, session = make_client(
            FakeResponse([{"id": 1}, {"id": 2}], next_url="https://canvas.test.edu/api/v1/courses?page=2"),
            FakeResponse([{"id": 3}], next_url="https://canvas.test.edu/api/v1/courses?page=3"),
            FakeResponse([{"id": 4}, {"id": 5}]),
        )

        items = client.get_paginated("/api/v1/courses", {"per_page": 100})

        assert [i["id"] for i in items] == [1, 2, 3, 4, 5]
        assert session.get.call_count == 3

    def test_query_only_sent_on_first_page(self):
        client, session = make_client(
            FakeResponse([1], next_url="https://canvas.test.edu/api/v1/courses?page=2&per_page=100"),
            FakeResponse([2]),
        )

        client.get_paginated("/api/v1/courses", {"per_page": 100, "include": ["term"]})

        first, second = session.get.call_args_list
        assert first.kwargs["params"] == [("per_page", "100"), ("include[]", "term")]
        assert second.args[0] == "https://canvas.test.edu/api/v1/courses?page=2&per_page=100"
        assert second.kwargs["params"] is None

    def test_empty_list_is_valid(self):
        client, session = make_client(FakeResponse([]))

        assert client.get_paginated("/api/v1/courses/1/assignments") == []

    def test_non_list_page_is_single_item(self):
        client, session = make_client(FakeResponse({"id": "1"}))

        assert client.get_paginated("/api/v1/courses/1") == [{"id": "1"}]

    def test_max_pages_ceiling(self):
        client, session = make_client(
            *[FakeResponse([n], next_url=f"https://canvas.test.edu/api/v1/x?page={n + 1}") for n in range(10)],
            max_pages=3,
        )

        assert client.get_paginated("/api/v1/x") == [0, 1, 2]
        assert session.get.call_count == 3

    def test_repeated_next_link_stops(self):
        client, session = make_client(
            FakeResponse([1], next_url="https://canvas.test.edu/api/v1/x?page=2"),
            FakeResponse([2], next_url="https://canvas.test.edu/api/v1/x?page=2"),
            FakeResponse([3]),
        )

        assert client.get_paginated("/api/v1/x") == [1, 2]
        assert session.get.call_count == 2

    def test_error_on_later_page_raises(self):
        client, session = make_client(
            FakeResponse([1], next_url="https://canvas.test.edu/api/v1/x?page=2"),
            FakeResponse(status_code=401, text="unauthorized"),
        )

        with pytest.raises(AuthenticationError):
            client.get_paginated("/api/v1/x")


class TestDownload:
    """Tests for downloading absolute URLs."""

    def test_follows_redirects(self):
        client, session = make_client(FakeResponse(content=b"hello", headers={"Content-Type": "text/plain"}))

        response = client.download("https://files.test.edu/abc")

        assert response.content == b"hello"
        assert session.get.call_args.kwargs["allow_redirects"] is True


class TestGetCanvasClient:
    """Tests for get_canvas_client function."""

    def test_returns_canvas_client_instance(self):
        with patch.dict(os.environ, {
            "CANVAS_DOMAIN": "test.com",
            "CANVAS_API_TOKEN": "token"
        }):
            client = get_canvas_client()

        assert isinstance(client, CanvasClient)

    def test_override_credentials(self):
        client = get_canvas_client(domain="override.com", token="override-token")

        assert client.domain == "override.com"
        assert client.token == "override-token"

    def test_caches_global_client(self):
        import canvas_context.client as client_module

        client_module._canvas_client = None

        with patch.dict(os.environ, {
            "CANVAS_DOMAIN": "test.com",
            "CANVAS_API_TOKEN": "token"
        }):
            client1 = get_canvas_client()
            client2 = get_canvas_client()

        assert client1 is client2

        client_module._canvas_client = None
