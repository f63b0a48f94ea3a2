# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""In-process test client for the greeting responder.

``make_test_client`` wraps ``falcon.testing.TestClient`` around a fresh
greeting app, so requests are simulated without a real HTTP server.
"""

from __future__ import annotations

import falcon
import falcon.testing

from ._common import DEFAULT_BODY, DEFAULT_PATH
from ._server import make_greeting_app


def make_test_client(
    path: str = DEFAULT_PATH,
    body: str = DEFAULT_BODY,
    *,
    app: falcon.App[falcon.Request, falcon.Response] | None = None,
    default_headers: dict[str, str] | None = None,
) -> falcon.testing.TestClient:
    """Return a ``TestClient`` for *app*, or for a new greeting app on *path*.

    Args:
        path: Route to register when *app* is not given.
        body: Response body to serve when *app* is not given.
        app: An existing app to wrap instead of building one.
        default_headers: Headers sent with every simulated request.

    """
    if app is None:
        app = make_greeting_app(path, body)
    return falcon.testing.TestClient(app, headers=default_headers)
