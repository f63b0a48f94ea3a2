"""Tests that verify every example in the examples/ directory runs successfully."""

from __future__ import annotations

import subprocess
import sys

import httpx
import pytest

from conftest import _wait_for_http

# ---------------------------------------------------------------------------
# Self-contained examples: just call main()
# ---------------------------------------------------------------------------


class TestSelfContainedExamples:
    """Examples that run entirely in-process."""

    def test_hello_world(self, capsys: pytest.CaptureFixture[str]) -> None:
        """hello_world.py: a call over an in-process pipe."""
        from examples.hello_world import main

        main()
        assert capsys.readouterr().out == "Hello World\n"

    def test_tcp_client_server(self, capsys: pytest.CaptureFixture[str]) -> None:
        """tcp_client_server.py: TCP call, unknown operation, refused connection."""
        from examples.tcp_client_server import main

        main()
        out = capsys.readouterr().out
        assert "Hello World" in out
        assert "Call failed: AttributeError" in out
        assert "Connect failed: cannot connect to 127.0.0.1:" in out

    def test_testing_http(self, capsys: pytest.CaptureFixture[str]) -> None:
        """testing_http.py: simulated requests against the greeting app."""
        from examples.testing_http import main

        main()
        out = capsys.readouterr().out
        assert "GET /holamundo -> 200 Hola Mundo" in out
        assert "DELETE /holamundo -> 200 Hola Mundo" in out
        assert "GET /adios -> 404" in out


# ---------------------------------------------------------------------------
# HTTP example: real server
# ---------------------------------------------------------------------------


class TestHttpExample:
    """HTTP server example."""

    def test_http_server(self) -> None:
        """Start http_server.py and request the route with httpx."""
        proc = subprocess.Popen(
            [sys.executable, "examples/http_server.py", "0"],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        try:
            assert proc.stdout is not None
            line = proc.stdout.readline().decode().strip()
            assert line.startswith("Serving Hola Mundo on http://127.0.0.1:"), f"Unexpected output: {line}"
            # Extract port from "Serving Hola Mundo on http://127.0.0.1:<port>/holamundo"
            port = int(line.rsplit(":", maxsplit=1)[1].split("/", 1)[0])

            _wait_for_http(port)

            resp = httpx.get(f"http://127.0.0.1:{port}/holamundo", timeout=5.0)
            assert resp.status_code == 200
            assert resp.text == "Hola Mundo"
        finally:
            proc.terminate()
            proc.wait(timeout=5)
