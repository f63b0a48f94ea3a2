# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""JSON formatter and handler setup for the ``hello_rpc`` loggers.

The library itself only attaches a ``NullHandler``; applications (and the
``hello-rpc`` command) decide where records go.  :class:`HelloJsonFormatter`
renders each record as one JSON object per line, including every field that
was attached through ``extra`` or a ``LoggerAdapter``::

    from hello_rpc.logging_utils import configure_logging

    configure_logging(logging.INFO, json_format=True)
"""

from __future__ import annotations

import json
import logging
import sys
from typing import TextIO

__all__ = ["HelloJsonFormatter", "configure_logging"]

# Attribute names every LogRecord has; anything else came from ``extra``.
_DEFAULT_RECORD_ATTRS: frozenset[str] = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()) | {
    "message",
    "asctime",
}

_RESERVED_KEYS: frozenset[str] = frozenset({"timestamp", "level", "logger", "message", "exception", "stack_info"})

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class HelloJsonFormatter(logging.Formatter):
    """Format records as single-line JSON including all ``extra`` fields.

    ``timestamp``, ``level``, ``logger`` and ``message`` are always present
    and cannot be shadowed by an extra field of the same name.  Values that
    ``json`` cannot encode are rendered with ``str``.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a single-line JSON string."""
        record.message = record.getMessage()
        obj: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }
        for key, value in record.__dict__.items():
            if key not in _DEFAULT_RECORD_ATTRS and key not in _RESERVED_KEYS:
                obj[key] = value
        if record.exc_info and record.exc_info[1]:
            obj["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            obj["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(obj, default=str)


def configure_logging(
    level: int = logging.INFO,
    *,
    json_format: bool = False,
    stream: TextIO | None = None,
) -> logging.Handler:
    """Attach a stream handler to the ``hello_rpc`` logger.

    Any handler previously installed by this function is replaced, so it is
    safe to call more than once.

    Args:
        level: Threshold for the ``hello_rpc`` logger hierarchy.
        json_format: Use :class:`HelloJsonFormatter` instead of plain text.
        stream: Destination stream, ``sys.stderr`` when omitted.

    Returns:
        The installed handler.

    """
    root = logging.getLogger("hello_rpc")
    for existing in [h for h in root.handlers if getattr(h, "_hello_rpc_cli", False)]:
        root.removeHandler(existing)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(HelloJsonFormatter() if json_format else logging.Formatter(_TEXT_FORMAT))
    handler._hello_rpc_cli = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level)
    return handler
