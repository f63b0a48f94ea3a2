"""Command-line interface for the greeting services.

Usage::

    hello-rpc serve-rpc --port 1234
    hello-rpc call --port 1234 --name World
    hello-rpc demo --name World
    hello-rpc serve-http --port 8080 --path /holamundo

This module is the only place where errors end the process: connection and
call failures are written to stderr and turn into exit code 1.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from enum import StrEnum
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as package_version
from typing import Annotated, cast

import typer

from hello_rpc.greeter import (
    DEFAULT_HTTP_PORT,
    DEFAULT_RPC_PORT,
    OPERATION,
    HelloWorldHandler,
    HelloWorldHandlerImpl,
    HelloWorldRequest,
    HelloWorldResponse,
    perform_request,
)
from hello_rpc.http import DEFAULT_BODY, DEFAULT_PATH, make_greeting_app, serve_http
from hello_rpc.log import Message
from hello_rpc.logging_utils import configure_logging
from hello_rpc.rpc import (
    DEFAULT_HOST,
    CallError,
    RpcConnectionError,
    RpcServer,
    describe_rpc,
    dial,
    serve_tcp,
    serve_tcp_in_thread,
)

# ---------------------------------------------------------------------------
# Option enums
# ---------------------------------------------------------------------------


class OutputFormat(StrEnum):
    """How a call result is printed."""

    text = "text"
    json = "json"


class LogFormat(StrEnum):
    """How log records are written to stderr."""

    text = "text"
    json = "json"


# ---------------------------------------------------------------------------
# CLI config
# ---------------------------------------------------------------------------


@dataclass
class _CliConfig:
    """Holds resolved global options."""

    format: OutputFormat = OutputFormat.text
    verbose: bool = False


app = typer.Typer(
    name="hello-rpc",
    help="Greeting RPC service and static HTTP responder.",
    add_completion=False,
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if not value:
        return
    try:
        v = package_version("hello-rpc")
    except PackageNotFoundError:
        v = "unknown"
    typer.echo(f"hello-rpc {v}")
    raise typer.Exit()


@app.callback()
def _main(
    ctx: typer.Context,
    fmt: Annotated[OutputFormat, typer.Option("--format", "-f", help="Output format")] = OutputFormat.text,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Debug logging and server log messages on stderr")
    ] = False,
    log_format: Annotated[LogFormat, typer.Option("--log-format", help="Log record format")] = LogFormat.text,
    _version: Annotated[
        bool,
        typer.Option("--version", "-V", callback=_version_callback, is_eager=True, help="Show version and exit"),
    ] = False,
) -> None:
    """Configure logging and output options."""
    configure_logging(
        logging.DEBUG if verbose else logging.INFO,
        json_format=log_format == LogFormat.json,
        stream=sys.stderr,
    )
    ctx.obj = _CliConfig(format=fmt, verbose=verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _log_to_stderr(msg: Message) -> None:
    """Write a server log message to stderr."""
    sys.stderr.write(f"[{msg.level.value}] {msg.message}\n")
    sys.stderr.flush()


def _emit_call_error(e: CallError) -> None:
    """Write a CallError to stderr as JSON."""
    err: dict[str, object] = {"type": e.error_type, "message": e.error_message}
    if e.remote_traceback:
        err["traceback"] = e.remote_traceback
    typer.echo(json.dumps({"error": err}, default=str), err=True)


def _print_reply(reply: HelloWorldResponse, config: _CliConfig) -> None:
    if config.format == OutputFormat.json:
        typer.echo(json.dumps({"message": reply.message}))
    else:
        typer.echo(reply.message)


def _call_greeter(
    host: str,
    port: int,
    name: str,
    config: _CliConfig,
    timeout: float | None,
    operation: str = OPERATION,
) -> None:
    """Dial, send one greeting request, print the reply; exit 1 on failure."""
    on_log = _log_to_stderr if config.verbose else None
    try:
        with dial(HelloWorldHandler, host, port, on_log=on_log, timeout=timeout) as svc:
            if operation == OPERATION:
                reply = perform_request(svc, name)
            else:
                request = HelloWorldRequest(name=name)
                reply = cast(HelloWorldResponse, svc.call(operation, request=request))  # type: ignore[attr-defined]
    except RpcConnectionError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    except CallError as e:
        _emit_call_error(e)
        raise typer.Exit(1) from None
    _print_reply(reply, config)


def _make_rpc_server(greeting: str | None) -> RpcServer:
    impl = HelloWorldHandlerImpl() if greeting is None else HelloWorldHandlerImpl(greeting)
    return RpcServer(HelloWorldHandler, impl)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("serve-rpc")
def serve_rpc(
    host: Annotated[str, typer.Option("--host", help="Address to bind")] = DEFAULT_HOST,
    port: Annotated[int, typer.Option("--port", "-p", help="TCP port (0 for ephemeral)")] = DEFAULT_RPC_PORT,
    greeting: Annotated[str | None, typer.Option("--greeting", help="Override the reply text")] = None,
) -> None:
    """Serve the HelloWorldHandler service over TCP until interrupted."""
    try:
        serve_tcp(_make_rpc_server(greeting), host, port)
    except RpcConnectionError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        pass


@app.command()
def call(
    ctx: typer.Context,
    operation: Annotated[str, typer.Argument(help="Qualified operation name")] = OPERATION,
    host: Annotated[str, typer.Option("--host", help="Server host")] = DEFAULT_HOST,
    port: Annotated[int, typer.Option("--port", "-p", help="Server port")] = DEFAULT_RPC_PORT,
    name: Annotated[str, typer.Option("--name", "-n", help="Name to send")] = "World",
    timeout: Annotated[float | None, typer.Option("--timeout", help="Connect timeout in seconds")] = None,
) -> None:
    """Call HelloWorld on a running server and print the reply."""
    config: _CliConfig = ctx.obj
    _call_greeter(host, port, name, config, timeout, operation)


@app.command()
def demo(
    ctx: typer.Context,
    host: Annotated[str, typer.Option("--host", help="Address to bind and dial")] = DEFAULT_HOST,
    port: Annotated[int, typer.Option("--port", "-p", help="TCP port (0 for ephemeral)")] = DEFAULT_RPC_PORT,
    name: Annotated[str, typer.Option("--name", "-n", help="Name to send")] = "World",
) -> None:
    """Start the server in the background, call it once, print the reply."""
    config: _CliConfig = ctx.obj
    try:
        with serve_tcp_in_thread(_make_rpc_server(None), host, port) as listener:
            bound_host, bound_port = listener.address
            _call_greeter(bound_host, bound_port, name, config, timeout=5.0)
    except RpcConnectionError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    except TimeoutError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None


@app.command()
def describe() -> None:
    """List the operations of the HelloWorldHandler service."""
    typer.echo(describe_rpc(HelloWorldHandler))


@app.command("serve-http")
def serve_http_command(
    host: Annotated[str, typer.Option("--host", help="Address to bind")] = DEFAULT_HOST,
    port: Annotated[int, typer.Option("--port", "-p", help="HTTP port (0 for ephemeral)")] = DEFAULT_HTTP_PORT,
    path: Annotated[str, typer.Option("--path", help="Route to answer")] = DEFAULT_PATH,
    body: Annotated[str, typer.Option("--body", help="Response body")] = DEFAULT_BODY,
) -> None:
    """Serve the static greeting over HTTP until interrupted."""
    try:
        http_app = make_greeting_app(path, body)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--path") from None
    try:
        serve_http(http_app, host, port)
    except OSError as e:
        typer.echo(f"Error: cannot serve HTTP on {host}:{port}: {e.strerror or e}", err=True)
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        pass


def main() -> None:
    """Console-script entry point."""
    app()


if __name__ == "__main__":
    main()
