"""Falcon app and waitress server for the static greeting responder.

``make_greeting_app`` builds a WSGI app with a single route that answers
every HTTP method with ``200 OK`` and a fixed plain-text body.  Any other
path falls through to Falcon's default ``404 Not Found``.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any

import falcon
import waitress
from waitress.server import BaseWSGIServer

from hello_rpc.rpc._common import _current_request_id, _generate_request_id
from hello_rpc.rpc._transport import DEFAULT_HOST

from ._common import _REQUEST_ID_HEADER, _TEXT_CONTENT_TYPE, DEFAULT_BODY, DEFAULT_PATH

_logger = logging.getLogger("hello_rpc.http")
_access_logger = logging.getLogger("hello_rpc.http.access")


class _GreetingSink:
    """Writes the same text body whatever the request method.

    Mounted with ``add_sink`` so every method reaches it; a resource would
    only see the methods it has ``on_*`` responders for.
    """

    __slots__ = ("_body",)

    def __init__(self, body: str) -> None:
        self._body = body

    def __call__(self, req: falcon.Request, resp: falcon.Response, **kwargs: Any) -> None:
        resp.status = falcon.HTTP_200
        resp.content_type = _TEXT_CONTENT_TYPE
        resp.text = self._body


class _RequestIdMiddleware:
    """Falcon middleware that sets a per-request correlation ID.

    Reads ``X-Request-ID`` from the incoming request or generates a new
    16-char hex ID, stores it on ``req.context`` and the request-id
    contextvar, and echoes it on the response.
    """

    def process_request(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Set request ID from header or generate one; populate contextvar."""
        request_id = req.get_header(_REQUEST_ID_HEADER) or _generate_request_id()
        req.context.request_id = request_id
        req.context.request_id_token = _current_request_id.set(request_id)

    def process_response(
        self,
        req: falcon.Request,
        resp: falcon.Response,
        resource: object,
        req_succeeded: bool,
    ) -> None:
        """Echo request ID on response header and reset contextvar."""
        request_id = getattr(req.context, "request_id", None)
        if request_id is not None:
            resp.set_header(_REQUEST_ID_HEADER, request_id)
        token = getattr(req.context, "request_id_token", None)
        if token is not None:
            _current_request_id.reset(token)


class _AccessLogMiddleware:
    """One ``hello_rpc.http.access`` record per request."""

    def process_request(self, req: falcon.Request, resp: falcon.Response) -> None:
        req.context.start_time = time.monotonic()

    def process_response(
        self,
        req: falcon.Request,
        resp: falcon.Response,
        resource: object,
        req_succeeded: bool,
    ) -> None:
        if not _access_logger.isEnabledFor(logging.INFO):
            return
        start = getattr(req.context, "start_time", None)
        duration_ms = (time.monotonic() - start) * 1000 if start is not None else 0.0
        status = falcon.http_status_to_code(resp.status)
        extra: dict[str, object] = {
            "method": req.method,
            "path": req.path,
            "status": status,
            "remote_addr": req.remote_addr or "",
            "duration_ms": round(duration_ms, 2),
        }
        request_id = getattr(req.context, "request_id", None)
        if request_id:
            extra["request_id"] = request_id
        _access_logger.info("%s %s %d", req.method, req.path, status, extra=extra)


def make_greeting_app(
    path: str = DEFAULT_PATH,
    body: str = DEFAULT_BODY,
) -> falcon.App[falcon.Request, falcon.Response]:
    """Create a Falcon WSGI app that answers *path* with *body*.

    Args:
        path: The single registered route; must start with ``/``.
        body: Plain-text response body.

    Returns:
        A Falcon application with one route.

    Raises:
        ValueError: If *path* does not start with ``/``.

    """
    if not path.startswith("/"):
        raise ValueError(f"path must start with '/', got {path!r}")
    app: falcon.App[falcon.Request, falcon.Response] = falcon.App(
        middleware=[_RequestIdMiddleware(), _AccessLogMiddleware()]
    )
    # Anchored: the sink answers this exact path only.
    app.add_sink(_GreetingSink(body), re.compile(re.escape(path) + r"\Z"))
    _logger.info("WSGI app created (path=%s)", path, extra={"path": path})
    return app


def make_http_server(app: Any, host: str = DEFAULT_HOST, port: int = 0) -> BaseWSGIServer:
    """Bind a waitress server for *app* without starting it.

    ``server.effective_port`` holds the bound port, which matters when
    ``port=0`` asks for an ephemeral one.
    """
    server: BaseWSGIServer = waitress.create_server(app, host=host, port=port)
    return server


def serve_http(app: Any, host: str = DEFAULT_HOST, port: int = 0) -> None:
    """Serve *app* with waitress until interrupted. Blocks."""
    server = make_http_server(app, host, port)
    _logger.info(
        "Starting HTTP server on port %d",
        server.effective_port,
        extra={"host": host, "port": server.effective_port},
    )
    try:
        server.run()
    finally:
        server.close()

