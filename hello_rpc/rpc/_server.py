"""RPC server dispatch."""

from __future__ import annotations

import contextlib
import inspect
import logging
import time
import uuid
from collections.abc import Mapping
from typing import Any, Literal

import pyarrow as pa
from pyarrow import ipc

from hello_rpc.rpc._common import (
    _EMPTY_SCHEMA,
    CallContext,
    CallError,
    CallStatistics,
    VersionError,
    _access_logger,
    _current_call_stats,
    _current_request_id,
    _generate_request_id,
    _get_transport_metadata,
    _logger,
)
from hello_rpc.rpc._transport import RpcTransport
from hello_rpc.rpc._types import RpcMethodInfo, _validate_implementation, rpc_methods
from hello_rpc.rpc._wire import (
    _ClientLogSink,
    _deserialize_params,
    _read_request,
    _validate_params,
    _validate_result,
    _write_error_batch,
    _write_error_stream,
    _write_result_batch,
)

# ---------------------------------------------------------------------------
# Server helpers
# ---------------------------------------------------------------------------


def _log_method_error(protocol_name: str, method_name: str, server_id: str, exc: BaseException) -> str:
    """Log an RPC method error and return the exception class name."""
    error_type = type(exc).__name__
    extra: dict[str, object] = {"server_id": server_id, "method": method_name, "error_type": error_type}
    request_id = _current_request_id.get()
    if request_id:
        extra["request_id"] = request_id
    _logger.error(
        "Error in %s.%s: %s",
        protocol_name,
        method_name,
        exc,
        exc_info=True,
        extra=extra,
    )
    return error_type


def _emit_access_log(
    protocol_name: str,
    method_name: str,
    server_id: str,
    transport_metadata: Mapping[str, Any],
    duration_ms: float,
    status: Literal["ok", "error"],
    error_type: str = "",
    stats: CallStatistics | None = None,
) -> None:
    """Emit one structured access log record for a completed RPC call."""
    if not _access_logger.isEnabledFor(logging.INFO):
        return
    extra: dict[str, object] = {
        "server_id": server_id,
        "protocol": protocol_name,
        "method": method_name,
        "remote_addr": transport_metadata.get("remote_addr", ""),
        "duration_ms": round(duration_ms, 2),
        "status": status,
        "error_type": error_type,
    }
    request_id = _current_request_id.get()
    if request_id:
        extra["request_id"] = request_id
    if stats is not None:
        extra["input_batches"] = stats.input_batches
        extra["output_batches"] = stats.output_batches
        extra["input_rows"] = stats.input_rows
        extra["output_rows"] = stats.output_rows
        extra["input_bytes"] = stats.input_bytes
        extra["output_bytes"] = stats.output_bytes
    _access_logger.info("%s.%s %s", protocol_name, method_name, status, extra=extra)


def _at_eof(reader: Any) -> bool:
    """Return ``True`` when a buffered reader has no more bytes to give."""
    peek = getattr(reader, "peek", None)
    if peek is None:
        return False
    try:
        return not peek(1)
    except (OSError, ValueError):
        return True


# ---------------------------------------------------------------------------
# RpcServer
# ---------------------------------------------------------------------------


class RpcServer:
    """Dispatches RPC requests to an implementation over IO-stream transports.

    Methods are registered under their qualified name
    (``<Protocol>.<method>``), which is what clients send on the wire.
    """

    __slots__ = (
        "_ctx_methods",
        "_impl",
        "_methods",
        "_protocol",
        "_server_id",
    )

    def __init__(
        self,
        protocol: type,
        implementation: object,
        *,
        server_id: str | None = None,
    ) -> None:
        """Initialize with a protocol type and its implementation.

        Args:
            protocol: The Protocol class defining the RPC interface.
            implementation: Object implementing all methods from *protocol*.
            server_id: Optional server identifier; auto-generated if ``None``.

        Raises:
            TypeError: If *implementation* does not conform to *protocol*.

        """
        self._protocol = protocol
        self._impl = implementation
        methods = rpc_methods(protocol)
        _validate_implementation(protocol, implementation, methods)
        self._methods: Mapping[str, RpcMethodInfo] = {info.qualified_name: info for info in methods.values()}
        self._server_id = server_id if server_id is not None else uuid.uuid4().hex[:12]

        self._ctx_methods: frozenset[str] = frozenset(
            info.name
            for info in methods.values()
            if "ctx" in inspect.signature(getattr(implementation, info.name)).parameters
        )

        _logger.info(
            "RpcServer created for %s (server_id=%s, methods=%d)",
            protocol.__name__,
            self._server_id,
            len(self._methods),
            extra={"server_id": self._server_id, "protocol": protocol.__name__, "method_count": len(self._methods)},
        )

    @property
    def methods(self) -> Mapping[str, RpcMethodInfo]:
        """Method metadata keyed by qualified name."""
        return self._methods

    @property
    def implementation(self) -> object:
        """The implementation object."""
        return self._impl

    @property
    def server_id(self) -> str:
        """Short random identifier for this server instance."""
        return self._server_id

    @property
    def protocol_name(self) -> str:
        """Name of the Protocol class this server implements."""
        return self._protocol.__name__

    def serve(self, transport: RpcTransport) -> None:
        """Serve RPC requests in a loop until the peer closes the transport."""
        while not _at_eof(transport.reader):
            try:
                self.serve_one(transport)
            except (EOFError, StopIteration, BrokenPipeError, ConnectionResetError):
                break
            except pa.ArrowInvalid:
                _logger.warning(
                    "serve loop ending due to ArrowInvalid",
                    exc_info=True,
                    extra={"server_id": self._server_id},
                )
                break

    def serve_one(self, transport: RpcTransport) -> None:
        """Handle a single RPC call over the given transport.

        Protocol-level errors (unknown method, ``VersionError``, malformed
        request metadata, bad parameters) are written back as error
        responses and the method returns normally so the serve loop can
        continue.

        Raises:
            pa.ArrowInvalid: If the incoming data is not valid Arrow IPC.
                An error response is written first when the transport still
                accepts writes.

        """
        token = _current_request_id.set(_generate_request_id())
        stats = CallStatistics()
        stats_token = _current_call_stats.set(stats)
        try:
            try:
                method_name, kwargs = _read_request(transport.reader)
            except pa.ArrowInvalid as exc:
                with contextlib.suppress(BrokenPipeError, OSError):
                    _write_error_stream(transport.writer, _EMPTY_SCHEMA, exc, server_id=self._server_id)
                raise
            except (VersionError, CallError) as exc:
                _write_error_stream(transport.writer, _EMPTY_SCHEMA, exc, server_id=self._server_id)
                return

            info = self._methods.get(method_name)
            if info is None:
                available = sorted(self._methods.keys())
                _write_error_stream(
                    transport.writer,
                    _EMPTY_SCHEMA,
                    AttributeError(f"Unknown method: '{method_name}'. Available methods: {available}"),
                    server_id=self._server_id,
                )
                return

            try:
                _deserialize_params(kwargs, info.param_types)
                _validate_params(info.name, kwargs, info.param_types)
            except (TypeError, ValueError, pa.ArrowInvalid) as exc:
                _write_error_stream(transport.writer, info.result_schema, exc, server_id=self._server_id)
                return

            self._serve_unary(transport, info, kwargs, stats=stats)
        finally:
            _current_call_stats.reset(stats_token)
            _current_request_id.reset(token)

    def _serve_unary(
        self,
        transport: RpcTransport,
        info: RpcMethodInfo,
        kwargs: dict[str, Any],
        *,
        stats: CallStatistics | None = None,
    ) -> None:
        schema = info.result_schema
        sink = _ClientLogSink(server_id=self._server_id)
        transport_md = _get_transport_metadata()
        if info.name in self._ctx_methods:
            kwargs["ctx"] = CallContext(
                emit_client_log=sink,
                transport_metadata=transport_md,
                server_id=self._server_id,
                method_name=info.name,
                protocol_name=self.protocol_name,
            )

        start = time.monotonic()
        status: Literal["ok", "error"] = "ok"
        error_type = ""
        try:
            with ipc.new_stream(transport.writer, schema) as writer:
                sink.flush_contents(writer, schema)
                try:
                    result = getattr(self._impl, info.name)(**kwargs)
                    _validate_result(info.name, result, info.result_type)
                except Exception as exc:
                    status = "error"
                    error_type = _log_method_error(self.protocol_name, info.name, self._server_id, exc)
                    _write_error_batch(writer, schema, exc, server_id=self._server_id)
                    return
                _write_result_batch(writer, schema, result)
        finally:
            _emit_access_log(
                self.protocol_name,
                info.name,
                self._server_id,
                transport_md,
                (time.monotonic() - start) * 1000,
                status,
                error_type,
                stats=stats,
            )
