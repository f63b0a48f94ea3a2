# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Client proxy and connection."""

from __future__ import annotations

import logging
from collections.abc import Callable
from types import TracebackType
from typing import Any, cast

import pyarrow as pa

from hello_rpc.log import Message
from hello_rpc.rpc._common import CallError
from hello_rpc.rpc._debug import wire_request_logger, wire_transport_logger
from hello_rpc.rpc._transport import RpcTransport
from hello_rpc.rpc._types import RpcMethodInfo, rpc_methods
from hello_rpc.rpc._wire import _prepare_request, _read_unary_response, _write_request

# Exceptions that mean the peer went away or the IPC data was truncated.
# Wrapped into ``CallError("TransportError", ...)``.  Unrelated ``OSError``s
# such as ``PermissionError`` are left alone.
_TRANSPORT_ERRORS = (BrokenPipeError, ConnectionResetError, ConnectionAbortedError, EOFError, pa.ArrowInvalid)

# Raised by pyarrow while encoding a value into its column.  Strings holding
# lone surrogates fail UTF-8 encoding with ``UnicodeEncodeError``.
_SERIALIZATION_ERRORS = (
    pa.ArrowInvalid,
    pa.ArrowTypeError,
    pa.ArrowNotImplementedError,
    OverflowError,
    UnicodeEncodeError,
)


class _RpcProxy:
    """Dynamic proxy that turns attribute calls into RPC calls over a transport.

    Not thread-safe: calls are serialised over a single transport.  Open one
    connection per thread instead of sharing a proxy.
    """

    def __init__(
        self,
        protocol: type,
        transport: RpcTransport,
        on_log: Callable[[Message], None] | None = None,
    ) -> None:
        self._protocol = protocol
        self._transport = transport
        self._methods = rpc_methods(protocol)
        self._on_log = on_log

    def call(self, operation: str, **kwargs: object) -> object:
        """Invoke an operation by its qualified name (``Service.Method``).

        Names outside this proxy's protocol are rejected before anything is
        sent, with ``CallError("AttributeError", ...)``.
        """
        service, _, method = operation.rpartition(".")
        if service != self._protocol.__name__ or method not in self._methods:
            known = sorted(info.qualified_name for info in self._methods.values())
            raise CallError("AttributeError", f"Unknown method: '{operation}'. Available methods: {known}")
        return getattr(self, method)(**kwargs)

    def __getattr__(self, name: str) -> Any:
        info = self._methods.get(name)
        if info is None:
            raise AttributeError(f"{self._protocol.__name__} has no RPC method '{name}'")
        caller = self._make_unary_caller(info)
        self.__dict__[name] = caller
        return caller

    def _make_unary_caller(self, info: RpcMethodInfo) -> Callable[..., object]:
        transport = self._transport
        on_log = self._on_log

        def caller(**kwargs: object) -> object:
            if wire_request_logger.isEnabledFor(logging.DEBUG):
                wire_request_logger.debug("Unary call: method=%s", info.qualified_name)
            try:
                batch, custom_metadata = _prepare_request(info, kwargs)
            except _SERIALIZATION_ERRORS as exc:
                raise CallError(
                    "SerializationError", f"Cannot serialize request for '{info.qualified_name}': {exc}"
                ) from exc
            except TypeError as exc:
                raise CallError("TypeError", str(exc)) from exc
            try:
                _write_request(transport.writer, batch, custom_metadata)
                return _read_unary_response(transport.reader, info, on_log)
            except CallError:
                raise
            except _TRANSPORT_ERRORS as exc:
                raise CallError(
                    "TransportError", f"Transport failed during call to '{info.qualified_name}': {exc}"
                ) from exc

        return caller


# ---------------------------------------------------------------------------
# RpcConnection: typed context manager
# ---------------------------------------------------------------------------


class RpcConnection[P]:
    """Scoped connection that provides a typed RPC proxy over a transport.

    The type parameter ``P`` is the Protocol class, so the proxy returned by
    ``__enter__`` autocompletes the protocol's methods::

        with RpcConnection(HelloWorldHandler, transport) as svc:
            svc.HelloWorld(request=HelloWorldRequest(name="World"))

    The transport is closed when the block exits, whether or not it raised.
    """

    __slots__ = ("_closed", "_on_log", "_protocol", "_proxy", "_transport")

    def __init__(
        self,
        protocol: type[P],
        transport: RpcTransport,
        on_log: Callable[[Message], None] | None = None,
    ) -> None:
        """Initialize with a protocol type and transport."""
        self._protocol = protocol
        self._transport = transport
        self._on_log = on_log
        self._proxy = _RpcProxy(protocol, transport, on_log)
        self._closed = False

    @property
    def proxy(self) -> P:
        """The typed proxy for this connection."""
        return cast(P, self._proxy)

    def call(self, operation: str, **kwargs: object) -> object:
        """Invoke an operation by its qualified name (``Service.Method``).

        The proxy returned by ``__enter__`` has the same ``call``, so both
        ``connection.call(...)`` and ``with connection as svc: svc.call(...)``
        work.

        Raises:
            CallError: If the operation is unknown, the request cannot be
                serialized, the server reports an error, or the connection
                drops.

        """
        return self._proxy.call(operation, **kwargs)

    def close(self) -> None:
        """Close the underlying transport. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("RpcConnection close: protocol=%s", self._protocol.__name__)
        self._transport.close()

    def __enter__(self) -> P:
        """Enter the context and return the typed proxy."""
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("RpcConnection open: protocol=%s", self._protocol.__name__)
        return self.proxy

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Close the transport."""
        self.close()
