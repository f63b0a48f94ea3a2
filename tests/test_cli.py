# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for the hello-rpc CLI tool."""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Iterator
from typing import Any

import pytest
from typer.testing import CliRunner

from hello_rpc.cli import app, serve_http_command, serve_rpc
from hello_rpc.greeter import GREETING, OPERATION
from hello_rpc.rpc import DEFAULT_HOST, TcpRpcServer

runner = CliRunner()


@pytest.fixture(autouse=True)
def _restore_package_logger() -> Iterator[None]:
    """Remove the stream handler the CLI callback installs."""
    logger = logging.getLogger("hello_rpc")
    handlers = list(logger.handlers)
    level = logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


def _invoke(args: list[str]) -> Any:
    """Invoke the CLI app with the given args.

    Returns ``Any`` because typer has no type stubs; ``runner.invoke``
    returns ``click.testing.Result`` at runtime but ``Any`` to mypy.
    """
    return runner.invoke(app, args, catch_exceptions=False)


def _json_lines(output: str) -> list[dict[str, Any]]:
    """Parse the lines of *output* that are JSON objects."""
    objs: list[dict[str, Any]] = []
    for line in output.splitlines():
        if line.startswith("{"):
            objs.append(json.loads(line))
    return objs


class TestVersion:
    """Tests for the --version flag."""

    @pytest.mark.parametrize("flag", ["--version", "-V"])
    def test_version_flag(self, flag: str) -> None:
        """``--version`` prints version and exits."""
        result = _invoke([flag])
        assert result.exit_code == 0
        assert result.output.startswith("hello-rpc ")


class TestDemo:
    """The all-in-one demo command."""

    def test_prints_greeting(self) -> None:
        """demo starts a server, calls it and prints the message."""
        result = _invoke(["demo", "--port", "0", "--name", "World"])
        assert result.exit_code == 0, result.output
        assert GREETING in result.stdout.splitlines()

    def test_json_output(self) -> None:
        """--format json prints the reply as an object."""
        result = _invoke(["--format", "json", "demo", "--port", "0"])
        assert result.exit_code == 0, result.output
        assert {"message": GREETING} in _json_lines(result.output)

    def test_json_logs(self) -> None:
        """--log-format json writes structured records, including the access log."""
        result = _invoke(["--log-format", "json", "demo", "--port", "0"])
        assert result.exit_code == 0, result.output
        loggers = {obj.get("logger") for obj in _json_lines(result.output)}
        assert "hello_rpc.rpc" in loggers

    def test_verbose_shows_server_log(self) -> None:
        """--verbose forwards client-directed messages to stderr."""
        result = _invoke(["--verbose", "demo", "--port", "0"])
        assert result.exit_code == 0, result.output
        assert "[DEBUG] greeting prepared" in result.output


class TestCall:
    """The call command against a running server."""

    def test_call(self, tcp_server: TcpRpcServer) -> None:
        """call prints the greeting."""
        _, port = tcp_server.address
        result = _invoke(["call", "--port", str(port), "--name", "Ada"])
        assert result.exit_code == 0, result.output
        assert GREETING in result.stdout.splitlines()

    def test_call_explicit_operation(self, tcp_server: TcpRpcServer) -> None:
        """The qualified operation name may be given explicitly."""
        _, port = tcp_server.address
        result = _invoke(["call", OPERATION, "--port", str(port)])
        assert result.exit_code == 0, result.output

    def test_unknown_operation(self, tcp_server: TcpRpcServer) -> None:
        """An unknown operation exits 1 with a CallError diagnostic."""
        _, port = tcp_server.address
        result = _invoke(["call", "HelloWorldHandler.Goodbye", "--port", str(port)])
        assert result.exit_code == 1
        errors = [obj["error"] for obj in _json_lines(result.output) if "error" in obj]
        assert errors[0]["type"] == "AttributeError"

    def test_unreachable(self, closed_port: int) -> None:
        """An unreachable server exits 1 with a diagnostic."""
        result = _invoke(["call", "--port", str(closed_port)])
        assert result.exit_code == 1
        assert f"cannot connect to 127.0.0.1:{closed_port}" in result.output
        assert GREETING not in result.output


class TestOtherCommands:
    """describe, serve-rpc and serve-http argument handling."""

    def test_describe(self) -> None:
        """describe lists the greeting operation."""
        result = _invoke(["describe"])
        assert result.exit_code == 0
        assert OPERATION in result.output

    def test_serve_rpc_port_in_use(self, tcp_server: TcpRpcServer) -> None:
        """serve-rpc exits 1 when it cannot bind."""
        host, port = tcp_server.address
        result = _invoke(["serve-rpc", "--host", host, "--port", str(port)])
        assert result.exit_code == 1
        assert "cannot connect" in result.output

    def test_serve_http_bad_path(self) -> None:
        """serve-http rejects a relative path before binding."""
        result = runner.invoke(app, ["serve-http", "--path", "holamundo"])
        assert result.exit_code == 2

    def test_serve_commands_share_default_host(self) -> None:
        """serve-rpc and serve-http bind the same default host."""
        for command in (serve_rpc, serve_http_command):
            assert inspect.signature(command).parameters["host"].default == DEFAULT_HOST
