# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for the static HTTP greeting responder in hello_rpc.http.

In-process behaviour uses ``falcon.testing.TestClient``; the end-to-end
tests talk to a real waitress server over ``httpx``.
"""

from __future__ import annotations

import inspect
import logging

import falcon
import falcon.testing
import httpx
import pytest

from hello_rpc.http import DEFAULT_BODY, DEFAULT_PATH, make_greeting_app, make_http_server, make_test_client, serve_http
from hello_rpc.rpc import DEFAULT_HOST

_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "CONNECT", "PROPFIND"]


@pytest.fixture
def client() -> falcon.testing.TestClient:
    """TestClient for the default greeting app."""
    return make_test_client()


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


class TestRouting:
    """The single route and the 404 fallback."""

    def test_defaults(self) -> None:
        """The default route and body."""
        assert DEFAULT_PATH == "/holamundo"
        assert DEFAULT_BODY == "Hola Mundo"

    @pytest.mark.parametrize("method", _METHODS)
    def test_any_method(self, client: falcon.testing.TestClient, method: str) -> None:
        """Every request method gets 200 and the body."""
        result = client.simulate_request(method, DEFAULT_PATH)
        assert result.status_code == 200
        assert result.text == DEFAULT_BODY
        assert result.headers["content-type"].startswith("text/plain")

    def test_head(self, client: falcon.testing.TestClient) -> None:
        """HEAD gets 200 without a body."""
        result = client.simulate_head(DEFAULT_PATH)
        assert result.status_code == 200
        assert result.content == b""

    def test_request_body_ignored(self, client: falcon.testing.TestClient) -> None:
        """A request body does not change the response."""
        result = client.simulate_post(DEFAULT_PATH, body=b"ignored", headers={"Content-Type": "text/plain"})
        assert result.text == DEFAULT_BODY

    @pytest.mark.parametrize("path", ["/", "/hola", "/holamundo/extra", "/HOLAMUNDO"])
    def test_unregistered_path(self, client: falcon.testing.TestClient, path: str) -> None:
        """Other paths get the framework's default 404."""
        result = client.simulate_get(path)
        assert result.status_code == 404

    def test_custom_route(self) -> None:
        """Path and body are parameters."""
        client = make_test_client("/hello", "Hello there")
        assert client.simulate_get("/hello").text == "Hello there"
        assert client.simulate_get(DEFAULT_PATH).status_code == 404

    def test_path_matched_literally(self) -> None:
        """Regex characters in the route are not treated as patterns."""
        client = make_test_client("/a.b", "x")
        assert client.simulate_get("/a.b").text == "x"
        assert client.simulate_get("/aXb").status_code == 404

    def test_invalid_path(self) -> None:
        """Paths must be absolute."""
        with pytest.raises(ValueError, match="must start with '/'"):
            make_greeting_app("holamundo")

    @pytest.mark.parametrize("factory", [make_http_server, serve_http])
    def test_default_host(self, factory: object) -> None:
        """The HTTP server binds the same default host as the RPC server."""
        assert inspect.signature(factory).parameters["host"].default == DEFAULT_HOST  # type: ignore[arg-type]

    def test_wrap_existing_app(self) -> None:
        """make_test_client can wrap an app built elsewhere."""
        app = make_greeting_app("/x", "y")
        assert make_test_client(app=app).simulate_get("/x").text == "y"


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class TestMiddleware:
    """Request IDs and access logging."""

    def test_request_id_generated(self, client: falcon.testing.TestClient) -> None:
        """A response always carries a 16-char request ID."""
        result = client.simulate_get(DEFAULT_PATH)
        assert len(result.headers["x-request-id"]) == 16

    def test_request_id_echoed(self, client: falcon.testing.TestClient) -> None:
        """An incoming X-Request-ID is echoed back."""
        result = client.simulate_get(DEFAULT_PATH, headers={"X-Request-ID": "abc123"})
        assert result.headers["x-request-id"] == "abc123"

    def test_request_id_on_404(self, client: falcon.testing.TestClient) -> None:
        """The 404 response also carries the request ID."""
        result = client.simulate_get("/missing", headers={"X-Request-ID": "nf"})
        assert result.status_code == 404
        assert result.headers["x-request-id"] == "nf"

    def test_default_headers(self) -> None:
        """Headers given to make_test_client are sent with every request."""
        client = make_test_client(default_headers={"X-Request-ID": "fixed"})
        assert client.simulate_get(DEFAULT_PATH).headers["x-request-id"] == "fixed"

    def test_access_log(self, client: falcon.testing.TestClient, caplog: pytest.LogCaptureFixture) -> None:
        """One access record per request with method, path and status."""
        with caplog.at_level(logging.INFO, logger="hello_rpc.http"):
            client.simulate_get(DEFAULT_PATH, headers={"X-Request-ID": "r1"})
            client.simulate_delete("/missing")
        records = [r for r in caplog.records if r.name == "hello_rpc.http.access"]
        assert [(r.__dict__["method"], r.__dict__["path"], r.__dict__["status"]) for r in records] == [
            ("GET", DEFAULT_PATH, 200),
            ("DELETE", "/missing", 404),
        ]
        assert records[0].__dict__["request_id"] == "r1"

    def test_app_created_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """Building the app logs the route."""
        with caplog.at_level(logging.INFO, logger="hello_rpc.http"):
            make_greeting_app()
        assert any(r.getMessage() == f"WSGI app created (path={DEFAULT_PATH})" for r in caplog.records)


# ---------------------------------------------------------------------------
# Real server (waitress subprocess)
# ---------------------------------------------------------------------------


class TestWaitress:
    """End to end over a real socket."""

    def test_get(self, http_server_port: int) -> None:
        """GET on the route returns 200 Hola Mundo."""
        resp = httpx.get(f"http://127.0.0.1:{http_server_port}{DEFAULT_PATH}", timeout=5.0)
        assert resp.status_code == 200
        assert resp.text == DEFAULT_BODY

    def test_post(self, http_server_port: int) -> None:
        """POST on the route gets the same answer."""
        resp = httpx.post(f"http://127.0.0.1:{http_server_port}{DEFAULT_PATH}", content=b"x", timeout=5.0)
        assert resp.status_code == 200
        assert resp.text == DEFAULT_BODY

    def test_trace(self, http_server_port: int) -> None:
        """TRACE is answered like any other method."""
        resp = httpx.request("TRACE", f"http://127.0.0.1:{http_server_port}{DEFAULT_PATH}", timeout=5.0)
        assert resp.status_code == 200
        assert resp.text == DEFAULT_BODY

    def test_not_found(self, http_server_port: int) -> None:
        """Unregistered paths get 404."""
        resp = httpx.get(f"http://127.0.0.1:{http_server_port}/nope", timeout=5.0)
        assert resp.status_code == falcon.http_status_to_code(falcon.HTTP_404)

    def test_request_id_header(self, http_server_port: int) -> None:
        """X-Request-ID survives the real server."""
        resp = httpx.get(
            f"http://127.0.0.1:{http_server_port}{DEFAULT_PATH}", headers={"X-Request-ID": "e2e"}, timeout=5.0
        )
        assert resp.headers["x-request-id"] == "e2e"
