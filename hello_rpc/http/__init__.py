"""Static HTTP greeting responder using Falcon (app) and waitress (server).

``make_greeting_app`` builds a WSGI application with one route,
``/holamundo`` by default, that answers every request method with
``200 OK`` and the plain-text body ``Hola Mundo``.  Unregistered paths get
Falcon's default ``404 Not Found``.

Every response carries an ``X-Request-ID`` header, echoed from the request
when present, and one access record is logged per request on
``hello_rpc.http.access``.
"""

from hello_rpc.http._common import DEFAULT_BODY, DEFAULT_PATH
from hello_rpc.http._server import make_greeting_app, make_http_server, serve_http
from hello_rpc.http._testing import make_test_client

__all__ = [
    "DEFAULT_BODY",
    "DEFAULT_PATH",
    "make_greeting_app",
    "make_http_server",
    "make_test_client",
    "serve_http",
]
