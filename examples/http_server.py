"""Static HTTP responder using Falcon (WSGI) and waitress.

Start the server::

    python examples/http_server.py

Then, in another terminal::

    curl http://127.0.0.1:8080/holamundo
"""

from __future__ import annotations

import socket
import sys

import waitress

from hello_rpc import DEFAULT_HTTP_PORT, DEFAULT_PATH, make_greeting_app


def _find_free_port() -> int:
    """Find a free TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


def main() -> None:
    """Start the HTTP server."""
    port = int(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_HTTP_PORT
    if port == 0:
        port = _find_free_port()

    app = make_greeting_app()

    print(f"Serving Hola Mundo on http://127.0.0.1:{port}{DEFAULT_PATH}", flush=True)
    waitress.serve(app, host="127.0.0.1", port=port, _quiet=True)


if __name__ == "__main__":
    main()
