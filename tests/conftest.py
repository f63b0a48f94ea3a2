"""Shared test fixtures for hello-rpc tests."""

from __future__ import annotations

import subprocess
import sys
import time
from collections.abc import Iterator
from pathlib import Path

import httpx
import pytest

from hello_rpc.greeter import HelloWorldHandler, HelloWorldHandlerImpl
from hello_rpc.rpc import RpcServer, TcpRpcServer, serve_tcp_in_thread

_SERVE_FIXTURE_HTTP = str(Path(__file__).parent / "serve_fixture_http.py")


def _http_worker_cmd() -> list[str]:
    """Return the command to launch the test HTTP server subprocess."""
    return [sys.executable, _SERVE_FIXTURE_HTTP]


def _wait_for_http(port: int, timeout: float = 5.0) -> None:
    """Poll until the HTTP server is accepting connections."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            _ = httpx.get(f"http://127.0.0.1:{port}/", timeout=5.0)
            return
        except (httpx.ConnectError, httpx.ConnectTimeout):
            time.sleep(0.1)
    raise TimeoutError(f"HTTP server on port {port} did not start within {timeout}s")


@pytest.fixture(scope="session")
def http_server_port() -> Iterator[int]:
    """Spawn a single waitress server subprocess for the entire test session."""
    proc = subprocess.Popen(
        _http_worker_cmd(),
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
    )
    try:
        assert proc.stdout is not None
        line = proc.stdout.readline().decode().strip()
        assert line.startswith("PORT:"), f"Expected PORT:<n>, got: {line!r}"
        port = int(line.split(":", 1)[1])

        _wait_for_http(port)

        yield port
    finally:
        proc.terminate()
        proc.wait(timeout=5)


@pytest.fixture
def rpc_server() -> RpcServer:
    """A fresh greeting RpcServer."""
    return RpcServer(HelloWorldHandler, HelloWorldHandlerImpl(), server_id="test-server")


@pytest.fixture
def tcp_server(rpc_server: RpcServer) -> Iterator[TcpRpcServer]:
    """Greeting service listening on an ephemeral TCP port in a background thread."""
    with serve_tcp_in_thread(rpc_server, "127.0.0.1", 0) as listener:
        yield listener


@pytest.fixture
def closed_port() -> int:
    """A localhost port that nothing is listening on."""
    import socket

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])
