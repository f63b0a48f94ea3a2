"""Transport protocol and implementations (in-process pipes and TCP)."""

from __future__ import annotations

import contextlib
import io
import logging
import os
import socket
import socketserver
import threading
from collections.abc import Iterator
from io import IOBase
from typing import TYPE_CHECKING, Protocol, cast, runtime_checkable

from hello_rpc.rpc._common import RpcConnectionError, _current_transport_metadata, _logger
from hello_rpc.rpc._debug import wire_transport_logger

if TYPE_CHECKING:
    from hello_rpc.rpc._server import RpcServer


DEFAULT_HOST = "127.0.0.1"


# ---------------------------------------------------------------------------
# RpcTransport protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class RpcTransport(Protocol):
    """Bidirectional byte stream transport."""

    @property
    def reader(self) -> IOBase:
        """Readable binary stream."""
        ...

    @property
    def writer(self) -> IOBase:
        """Writable binary stream."""
        ...

    def close(self) -> None:
        """Close the transport."""
        ...


# ---------------------------------------------------------------------------
# PipeTransport + make_pipe_pair
# ---------------------------------------------------------------------------


class PipeTransport:
    """Transport backed by file-like IO streams (e.g. from os.pipe())."""

    __slots__ = ("_reader", "_writer")

    def __init__(self, reader: IOBase, writer: IOBase) -> None:
        """Initialize with reader and writer streams."""
        self._reader = reader
        self._writer = writer

    @property
    def reader(self) -> IOBase:
        """Readable binary stream."""
        return self._reader

    @property
    def writer(self) -> IOBase:
        """Writable binary stream."""
        return self._writer

    def close(self) -> None:
        """Close both streams."""
        self._reader.close()
        self._writer.close()


def make_pipe_pair() -> tuple[PipeTransport, PipeTransport]:
    """Create connected client/server transports using os.pipe().

    Returns (client_transport, server_transport).
    """
    c2s_r, c2s_w = os.pipe()
    s2c_r, s2c_w = os.pipe()
    if wire_transport_logger.isEnabledFor(logging.DEBUG):
        wire_transport_logger.debug("make_pipe_pair: c2s=(%d,%d), s2c=(%d,%d)", c2s_r, c2s_w, s2c_r, s2c_w)
    client = PipeTransport(
        os.fdopen(s2c_r, "rb"),
        os.fdopen(c2s_w, "wb", buffering=0),
    )
    server = PipeTransport(
        os.fdopen(c2s_r, "rb"),
        os.fdopen(s2c_w, "wb", buffering=0),
    )
    return client, server


# ---------------------------------------------------------------------------
# TCP
# ---------------------------------------------------------------------------


class _SocketWriter(io.BufferedIOBase):
    """Unbuffered writer that pushes every write through ``sendall``.

    ``socket.makefile("wb", buffering=0)`` returns a raw ``SocketIO`` whose
    ``write`` may send only part of the buffer; Arrow IPC needs full writes.
    """

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    def writable(self) -> bool:
        return True

    def write(self, b: bytes | bytearray | memoryview) -> int:  # type: ignore[override]
        self._sock.sendall(b)
        with memoryview(b) as view:
            return view.nbytes

    def fileno(self) -> int:
        return self._sock.fileno()


class TcpTransport:
    """Transport over a connected TCP socket.

    The reader is buffered so that ``read(n)`` returns exactly *n* bytes
    (or fewer only at EOF).  Closing the transport closes the socket.
    """

    __slots__ = ("_closed", "_reader", "_sock", "_writer")

    def __init__(self, sock: socket.socket) -> None:
        """Wrap an already-connected socket."""
        self._sock = sock
        self._reader: IOBase = cast(IOBase, sock.makefile("rb"))
        self._writer: IOBase = _SocketWriter(sock)
        self._closed = False

    @property
    def reader(self) -> IOBase:
        """Readable binary stream (buffered)."""
        return self._reader

    @property
    def writer(self) -> IOBase:
        """Writable binary stream (unbuffered, ``sendall`` per write)."""
        return self._writer

    def close(self) -> None:
        """Shut down and close the socket. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("TcpTransport close: fd=%d", self._sock.fileno())
        with contextlib.suppress(OSError):
            self._sock.shutdown(socket.SHUT_RDWR)
        self._reader.close()
        self._sock.close()


def dial_tcp(host: str, port: int, *, timeout: float | None = None) -> TcpTransport:
    """Open a TCP connection to an RPC server.

    Args:
        host: Server host name or address.
        port: Server port.
        timeout: Optional connect timeout in seconds.  Reads and writes on
            the returned transport are blocking without a timeout.

    Raises:
        RpcConnectionError: If the server is unreachable or refuses the
            connection.

    """
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except OSError as exc:
        raise RpcConnectionError(host, port, exc.strerror or str(exc)) from exc
    sock.settimeout(None)
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    if wire_transport_logger.isEnabledFor(logging.DEBUG):
        wire_transport_logger.debug("dial_tcp: connected to %s:%d", host, port)
    return TcpTransport(sock)


class _RpcRequestHandler(socketserver.StreamRequestHandler):
    """Serves every call arriving on one accepted connection."""

    server: TcpRpcServer
    disable_nagle_algorithm = True

    def handle(self) -> None:
        rpc_server = self.server.rpc_server
        remote_addr = f"{self.client_address[0]}:{self.client_address[1]}"
        extra = {"server_id": rpc_server.server_id, "remote_addr": remote_addr}
        _logger.debug("Connection accepted from %s", remote_addr, extra=extra)
        token = _current_transport_metadata.set({"remote_addr": remote_addr})
        try:
            rpc_server.serve(PipeTransport(cast(IOBase, self.rfile), cast(IOBase, self.wfile)))
        finally:
            _current_transport_metadata.reset(token)
            _logger.debug("Connection closed from %s", remote_addr, extra=extra)


class TcpRpcServer(socketserver.ThreadingTCPServer):
    """TCP listener that hands each accepted connection to an :class:`RpcServer`.

    The socket is bound and listening once the constructor returns, so
    ``address`` already holds the effective port when ``port=0`` was
    requested.  ``ready`` is set when :meth:`serve_forever` starts
    accepting.  With ``threaded=False`` connections are served one at a
    time on the serving thread.
    """

    allow_reuse_address = True
    daemon_threads = True

    def __init__(
        self,
        rpc_server: RpcServer,
        host: str = DEFAULT_HOST,
        port: int = 0,
        *,
        threaded: bool = True,
    ) -> None:
        """Bind to ``(host, port)``.

        Raises:
            RpcConnectionError: If the address cannot be bound.

        """
        self.rpc_server = rpc_server
        self.threaded = threaded
        self.ready = threading.Event()
        try:
            super().__init__((host, port), _RpcRequestHandler)
        except OSError as exc:
            raise RpcConnectionError(host, port, exc.strerror or str(exc)) from exc

    @property
    def address(self) -> tuple[str, int]:
        """The bound ``(host, port)``."""
        host, port = self.server_address[:2]
        return str(host), int(port)

    def process_request(self, request: socket.socket, client_address: tuple[str, int]) -> None:  # type: ignore[override]
        if self.threaded:
            super().process_request(request, client_address)
        else:
            socketserver.TCPServer.process_request(self, request, client_address)

    def serve_forever(self, poll_interval: float = 0.5) -> None:
        """Accept connections until :meth:`shutdown` is called."""
        host, port = self.address
        _logger.info(
            "Listening on %s:%d (server_id=%s)",
            host,
            port,
            self.rpc_server.server_id,
            extra={"server_id": self.rpc_server.server_id, "host": host, "port": port},
        )
        self.ready.set()
        try:
            super().serve_forever(poll_interval)
        finally:
            self.ready.clear()


def serve_tcp(server: RpcServer, host: str = DEFAULT_HOST, port: int = 0, *, threaded: bool = True) -> None:
    """Serve *server* on ``host:port`` until interrupted. Blocks."""
    with TcpRpcServer(server, host, port, threaded=threaded) as listener:
        listener.serve_forever()


@contextlib.contextmanager
def serve_tcp_in_thread(
    server: RpcServer,
    host: str = DEFAULT_HOST,
    port: int = 0,
    *,
    threaded: bool = True,
    ready_timeout: float = 5.0,
) -> Iterator[TcpRpcServer]:
    """Run a TCP listener on a background thread for the duration of the block.

    The listener is bound before the thread starts and the block is only
    entered once it is accepting, so callers can dial ``listener.address``
    immediately.

    Raises:
        RpcConnectionError: If the address cannot be bound.
        TimeoutError: If the listener does not become ready in time.

    """
    listener = TcpRpcServer(server, host, port, threaded=threaded)
    thread = threading.Thread(target=listener.serve_forever, name=f"hello-rpc-tcp-{server.server_id}", daemon=True)
    thread.start()
    try:
        if not listener.ready.wait(ready_timeout):
            raise TimeoutError(f"TCP server on {host}:{port} did not become ready within {ready_timeout}s")
        yield listener
    finally:
        listener.shutdown()
        listener.server_close()
        thread.join(timeout=5)
