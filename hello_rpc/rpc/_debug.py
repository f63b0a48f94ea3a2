"""Wire-level debug loggers and formatting helpers.

Loggers live under ``hello_rpc.wire.*``.  Setting
``logging.getLogger("hello_rpc.wire").setLevel(logging.DEBUG)`` shows every
request, response batch and transport event.

The ``fmt_*`` helpers only build strings.  Call them inside an
``isEnabledFor(logging.DEBUG)`` guard.
"""

from __future__ import annotations

import logging
from typing import Any

import pyarrow as pa

wire_request_logger = logging.getLogger("hello_rpc.wire.request")
"""Request serialization / deserialization."""

wire_response_logger = logging.getLogger("hello_rpc.wire.response")
"""Response serialization / deserialization."""

wire_batch_logger = logging.getLogger("hello_rpc.wire.batch")
"""Batch classification (log / error / data dispatch)."""

wire_transport_logger = logging.getLogger("hello_rpc.wire.transport")
"""Transport lifecycle (pipe, TCP)."""

_MAX_VALUE_LEN = 80


def fmt_schema(schema: pa.Schema) -> str:
    """Format a schema as ``(name: string)``, or ``(empty)``."""
    if len(schema) == 0:
        return "(empty)"
    return "(" + ", ".join(f"{f.name}: {f.type}" for f in schema) + ")"


def _clip(text: str) -> str:
    return text[:_MAX_VALUE_LEN] + "..." if len(text) > _MAX_VALUE_LEN else text


def fmt_metadata(metadata: pa.KeyValueMetadata | None) -> str:
    """Format custom metadata as ``{hello_rpc.method='...', ...}``, or ``None``."""
    if metadata is None:
        return "None"
    parts: list[str] = []
    for k, v in metadata.items():
        key = k.decode("utf-8", errors="replace") if isinstance(k, bytes) else k
        val = v.decode("utf-8", errors="replace") if isinstance(v, bytes) else v
        parts.append(f"{key}={_clip(val)!r}")
    return "{" + ", ".join(parts) + "}"


def fmt_batch(batch: pa.RecordBatch) -> str:
    """Summarise a batch: rows, columns, schema and byte size."""
    return (
        f"RecordBatch(rows={batch.num_rows}, cols={batch.num_columns}, "
        f"schema={fmt_schema(batch.schema)}, bytes={batch.nbytes})"
    )


def fmt_kwargs(kwargs: dict[str, Any]) -> str:
    """Format keyword arguments as ``a=1, b='x'`` with long values clipped."""
    return ", ".join(f"{k}={_clip(repr(v))}" for k, v in kwargs.items())
