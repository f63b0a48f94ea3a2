# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Request/response RPC over Arrow IPC streams.

RPC interfaces are Python Protocol classes.  Arrow schemas are derived from
the method type annotations, and clients get a typed proxy that serializes
keyword arguments and deserializes results.  Methods are addressed on the
wire by their qualified name, ``<Protocol>.<method>``.

Wire Protocol
-------------
IPC streams are written and read back to back on the same byte stream.  Each
``ipc.open_stream()`` reads one complete IPC stream (schema + batches + EOS)
and stops; the next picks up where the last left off.

Every request batch carries ``hello_rpc.method`` and
``hello_rpc.request_version`` in its custom metadata.  The server rejects a
missing or incompatible version with ``VersionError``.

Errors and log messages are zero-row batches carrying
``hello_rpc.log_level``, ``hello_rpc.log_message`` and ``hello_rpc.log_extra``:

- **EXCEPTION** level: the client raises ``CallError``
- **other levels**: the client passes a ``Message`` to ``on_log``

::

    Client->Server: [IPC stream: params_schema + 1 request batch + EOS]
    Server->Client: [IPC stream: result_schema + 0..N log batches + 1 result/error batch + EOS]

Transports
----------
``make_pipe_pair`` / ``serve_pipe`` run client and server in one process
over ``os.pipe()``.  ``TcpRpcServer`` / ``serve_tcp`` listen on TCP (one
thread per connection) and ``dial`` / ``tcp_connect`` connect to them.

Call Context
------------
Implementations may declare a ``ctx`` parameter (``CallContext``) to get a
request-scoped logger and a client-log channel.  It is injected by the
server and does not appear in the Protocol definition.
"""

from __future__ import annotations

import contextlib
import threading
from collections.abc import Callable, Iterator, Mapping

from hello_rpc.log import Message
from hello_rpc.rpc._client import RpcConnection, _RpcProxy
from hello_rpc.rpc._common import (
    CallContext,
    CallError,
    CallStatistics,
    ClientLog,
    RpcConnectionError,
    VersionError,
)
from hello_rpc.rpc._server import RpcServer
from hello_rpc.rpc._transport import (
    DEFAULT_HOST,
    PipeTransport,
    RpcTransport,
    TcpRpcServer,
    TcpTransport,
    dial_tcp,
    make_pipe_pair,
    serve_tcp,
    serve_tcp_in_thread,
)
from hello_rpc.rpc._types import RpcMethodInfo, rpc_methods

__all__ = [
    "DEFAULT_HOST",
    "CallContext",
    "CallError",
    "CallStatistics",
    "ClientLog",
    "PipeTransport",
    "RpcConnection",
    "RpcConnectionError",
    "RpcMethodInfo",
    "RpcServer",
    "RpcTransport",
    "TcpRpcServer",
    "TcpTransport",
    "VersionError",
    "_RpcProxy",
    "describe_rpc",
    "dial",
    "dial_tcp",
    "make_pipe_pair",
    "rpc_methods",
    "serve_pipe",
    "serve_tcp",
    "serve_tcp_in_thread",
    "tcp_connect",
]


# ---------------------------------------------------------------------------
# Convenience functions
# ---------------------------------------------------------------------------


def dial[P](
    protocol: type[P],
    host: str = DEFAULT_HOST,
    port: int = 0,
    *,
    on_log: Callable[[Message], None] | None = None,
    timeout: float | None = None,
) -> RpcConnection[P]:
    """Connect to a TCP RPC server and return the (not yet entered) connection.

    Use the result as a context manager so the socket is always closed::

        with dial(HelloWorldHandler, "127.0.0.1", 1234) as svc:
            svc.HelloWorld(request=HelloWorldRequest(name="World"))

    Raises:
        RpcConnectionError: If the server is unreachable.

    """
    return RpcConnection(protocol, dial_tcp(host, port, timeout=timeout), on_log=on_log)


@contextlib.contextmanager
def tcp_connect[P](
    protocol: type[P],
    host: str = DEFAULT_HOST,
    port: int = 0,
    *,
    on_log: Callable[[Message], None] | None = None,
    timeout: float | None = None,
) -> Iterator[P]:
    """Connect to a TCP RPC server and yield a typed proxy.

    Args:
        protocol: The Protocol class defining the RPC interface.
        host: Server host.
        port: Server port.
        on_log: Optional callback for log messages from the server.
        timeout: Optional connect timeout in seconds.

    Yields:
        A typed RPC proxy supporting all methods defined on *protocol*.

    Raises:
        RpcConnectionError: If the server is unreachable.

    """
    with dial(protocol, host, port, on_log=on_log, timeout=timeout) as proxy:
        yield proxy


@contextlib.contextmanager
def serve_pipe[P](
    protocol: type[P],
    implementation: object,
    *,
    on_log: Callable[[Message], None] | None = None,
) -> Iterator[P]:
    """Start an in-process pipe server and yield a typed client proxy.

    Useful for tests and demos.  A background thread runs
    ``RpcServer.serve()`` on the server side of a pipe pair.
    """
    client_transport, server_transport = make_pipe_pair()
    server = RpcServer(protocol, implementation)
    thread = threading.Thread(target=server.serve, args=(server_transport,), daemon=True)
    thread.start()
    try:
        with RpcConnection(protocol, client_transport, on_log=on_log) as proxy:
            yield proxy
    finally:
        client_transport.close()
        thread.join(timeout=5)
        server_transport.close()


# ---------------------------------------------------------------------------
# describe_rpc
# ---------------------------------------------------------------------------


def describe_rpc(protocol: type, *, methods: Mapping[str, RpcMethodInfo] | None = None) -> str:
    """Return a human-readable description of an RPC protocol's methods."""
    if methods is None:
        methods = rpc_methods(protocol)
    lines: list[str] = [f"RPC Protocol: {protocol.__name__}", ""]

    for _, info in sorted(methods.items()):
        lines.append(f"  {info.qualified_name}")
        lines.append(f"    params: {info.params_schema}")
        lines.append(f"    result: {info.result_schema}")
        if info.doc:
            lines.append(f"    doc: {info.doc.strip()}")
        lines.append("")

    return "\n".join(lines)
