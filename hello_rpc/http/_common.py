"""Shared constants for the HTTP greeting responder."""

from __future__ import annotations

DEFAULT_PATH = "/holamundo"
DEFAULT_BODY = "Hola Mundo"

_TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
_REQUEST_ID_HEADER = "X-Request-ID"
