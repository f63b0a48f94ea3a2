"""Shared helpers for ``pa.KeyValueMetadata`` used across the RPC layer.

Centralises the well-known metadata keys (including the wire-protocol
version constant ``REQUEST_VERSION``) and their encoding so that
``rpc/`` and ``log.py`` share a single implementation.
"""

from __future__ import annotations

import pyarrow as pa

__all__ = [
    "LOG_EXTRA_KEY",
    "LOG_LEVEL_KEY",
    "LOG_MESSAGE_KEY",
    "REQUEST_ID_KEY",
    "REQUEST_VERSION",
    "REQUEST_VERSION_KEY",
    "RPC_METHOD_KEY",
    "SERVER_ID_KEY",
    "encode_metadata",
]

# ---------------------------------------------------------------------------
# Well-known metadata keys (bytes, matching what appears on the wire)
# ---------------------------------------------------------------------------

RPC_METHOD_KEY = b"hello_rpc.method"
LOG_LEVEL_KEY = b"hello_rpc.log_level"
LOG_MESSAGE_KEY = b"hello_rpc.log_message"
LOG_EXTRA_KEY = b"hello_rpc.log_extra"
REQUEST_VERSION_KEY = b"hello_rpc.request_version"
REQUEST_VERSION = b"1"

SERVER_ID_KEY = b"hello_rpc.server_id"
REQUEST_ID_KEY = b"hello_rpc.request_id"


def encode_metadata(metadata: dict[str, str]) -> pa.KeyValueMetadata:
    """Encode a plain ``dict[str, str]`` to ``pa.KeyValueMetadata`` with bytes keys/values."""
    return pa.KeyValueMetadata({k.encode(): v.encode() for k, v in metadata.items()})
