"""Constants, errors, and call context shared by the RPC client and server."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping, MutableMapping
from contextvars import ContextVar
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Final

import pyarrow as pa

from hello_rpc.log import Level, Message

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_EMPTY_SCHEMA = pa.schema([])
_logger = logging.getLogger("hello_rpc.rpc")
_access_logger = logging.getLogger("hello_rpc.access")

ClientLog = Callable[[Message], None]
"""Callback type for emitting client-directed log messages from service implementations."""

_EMPTY_TRANSPORT_METADATA: Final[Mapping[str, Any]] = MappingProxyType({})


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CallError(Exception):
    """A remote call could not be completed once connected.

    Raised for errors reported by the server (including unknown methods),
    for requests that cannot be serialized, and for connections that drop
    mid-call (``error_type == "TransportError"``).
    """

    def __init__(self, error_type: str, error_message: str, remote_traceback: str = "", *, request_id: str = "") -> None:
        """Initialize with the error details from the remote side or the transport."""
        self.error_type = error_type
        self.error_message = error_message
        self.remote_traceback = remote_traceback
        self.request_id = request_id
        super().__init__(f"{error_type}: {error_message}")


class RpcConnectionError(ConnectionError):
    """The target address could not be reached, or a listener could not bind to it."""

    def __init__(self, host: str, port: int, reason: str) -> None:
        """Initialize with the address that failed and a short reason."""
        self.host = host
        self.port = port
        self.reason = reason
        super().__init__(f"cannot connect to {host}:{port}: {reason}")


class VersionError(Exception):
    """Raised when a request has a missing or incompatible protocol version."""


# ---------------------------------------------------------------------------
# Call context
# ---------------------------------------------------------------------------


class _ContextLoggerAdapter(logging.LoggerAdapter[logging.Logger]):
    """LoggerAdapter whose bound fields win over per-call ``extra`` on conflict."""

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        user_extra = kwargs.get("extra", {})
        kwargs["extra"] = {**user_extra, **(self.extra or {})}
        return msg, kwargs


class CallContext:
    """Request-scoped context injected into methods that declare a ``ctx`` parameter."""

    __slots__ = (
        "_logger",
        "_method_name",
        "_protocol_name",
        "_request_id",
        "_server_id",
        "emit_client_log",
        "transport_metadata",
    )

    def __init__(
        self,
        emit_client_log: ClientLog,
        transport_metadata: Mapping[str, Any] | None = None,
        *,
        server_id: str = "",
        method_name: str = "",
        protocol_name: str = "",
    ) -> None:
        """Initialize with the client-log callback and the server-side context fields."""
        self.emit_client_log = emit_client_log
        self.transport_metadata: Mapping[str, Any] = transport_metadata or {}
        self._server_id = server_id
        self._method_name = method_name
        self._protocol_name = protocol_name
        self._request_id = _current_request_id.get()
        self._logger: _ContextLoggerAdapter | None = None

    @property
    def request_id(self) -> str:
        """Per-request correlation ID (empty string if not set)."""
        return self._request_id

    @property
    def logger(self) -> logging.LoggerAdapter[logging.Logger]:
        """Server-side logger named ``hello_rpc.service.<ProtocolName>``.

        ``server_id`` and ``method`` are always bound; ``request_id`` and
        ``remote_addr`` are bound when known.
        """
        if self._logger is None:
            base = logging.getLogger(f"hello_rpc.service.{self._protocol_name}")
            extra: dict[str, object] = {
                "server_id": self._server_id,
                "method": self._method_name,
            }
            if self._request_id:
                extra["request_id"] = self._request_id
            remote = self.transport_metadata.get("remote_addr")
            if remote:
                extra["remote_addr"] = remote
            self._logger = _ContextLoggerAdapter(base, extra)
        return self._logger

    def client_log(self, level: Level, message: str, **extra: str) -> None:
        """Emit a client-directed log message."""
        self.emit_client_log(Message(level, message, **extra))


# Set by the transport layer (e.g. the TCP handler) for the duration of a connection.
_current_transport_metadata: ContextVar[Mapping[str, Any] | None] = ContextVar(
    "hello_rpc_transport_metadata", default=None
)


def _get_transport_metadata() -> Mapping[str, Any]:
    md = _current_transport_metadata.get()
    return md if md is not None else _EMPTY_TRANSPORT_METADATA


# ---------------------------------------------------------------------------
# Per-request correlation ID
# ---------------------------------------------------------------------------


def _generate_request_id() -> str:
    """Generate a 16-char hex request ID for correlation."""
    return uuid.uuid4().hex[:16]


_current_request_id: ContextVar[str] = ContextVar("hello_rpc_request_id", default="")


# ---------------------------------------------------------------------------
# Per-call I/O statistics
# ---------------------------------------------------------------------------


@dataclass
class CallStatistics:
    """Per-call batch/row/byte counters surfaced through the access log.

    Byte counts come from ``RecordBatch.get_total_buffer_size()`` and do not
    include IPC framing.
    """

    input_batches: int = 0
    output_batches: int = 0
    input_rows: int = 0
    output_rows: int = 0
    input_bytes: int = 0
    output_bytes: int = 0

    def record_input(self, batch: pa.RecordBatch) -> None:
        """Record an input batch's row count and buffer size."""
        self.input_batches += 1
        self.input_rows += batch.num_rows
        self.input_bytes += batch.get_total_buffer_size()

    def record_output(self, batch: pa.RecordBatch) -> None:
        """Record an output batch's row count and buffer size."""
        self.output_batches += 1
        self.output_rows += batch.num_rows
        self.output_bytes += batch.get_total_buffer_size()


_current_call_stats: ContextVar[CallStatistics | None] = ContextVar("hello_rpc_call_stats", default=None)


def _record_input(batch: pa.RecordBatch) -> None:
    stats = _current_call_stats.get()
    if stats is not None:
        stats.record_input(batch)


def _record_output(batch: pa.RecordBatch) -> None:
    stats = _current_call_stats.get()
    if stats is not None:
        stats.record_output(batch)
