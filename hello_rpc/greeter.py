"""The ``HelloWorldHandler`` service: request/response types, protocol and implementation.

The server registers one operation, ``HelloWorldHandler.HelloWorld``.  The
reply is the fixed ``GREETING`` whatever name is sent.

    with dial(HelloWorldHandler, "127.0.0.1", DEFAULT_RPC_PORT) as svc:
        reply = svc.HelloWorld(request=HelloWorldRequest(name="World"))
        print(reply.message)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, cast

from hello_rpc.log import Level
from hello_rpc.rpc import CallContext, RpcConnection
from hello_rpc.utils import ArrowSerializableDataclass

__all__ = [
    "DEFAULT_HTTP_PORT",
    "DEFAULT_RPC_PORT",
    "GREETING",
    "HelloWorldHandler",
    "HelloWorldHandlerImpl",
    "HelloWorldRequest",
    "HelloWorldResponse",
    "OPERATION",
    "perform_request",
]

DEFAULT_RPC_PORT = 1234
DEFAULT_HTTP_PORT = 8080

GREETING = "Hello World"
OPERATION = "HelloWorldHandler.HelloWorld"


@dataclass(frozen=True)
class HelloWorldRequest(ArrowSerializableDataclass):
    """Greeting request."""

    name: str


@dataclass(frozen=True)
class HelloWorldResponse(ArrowSerializableDataclass):
    """Greeting response."""

    message: str


class HelloWorldHandler(Protocol):
    """Greeting service."""

    def HelloWorld(self, request: HelloWorldRequest) -> HelloWorldResponse:  # noqa: N802
        """Return the greeting."""
        ...


class HelloWorldHandlerImpl:
    """Stateless ``HelloWorldHandler`` returning a fixed greeting."""

    def __init__(self, greeting: str = GREETING) -> None:
        """Use *greeting* as the reply text."""
        self._greeting = greeting

    def HelloWorld(self, request: HelloWorldRequest, ctx: CallContext) -> HelloWorldResponse:  # noqa: N802
        """Return the configured greeting; *request.name* is logged, never echoed."""
        ctx.logger.debug("HelloWorld called", extra={"request_name": request.name})
        ctx.client_log(Level.DEBUG, "greeting prepared", name=request.name)
        return HelloWorldResponse(message=self._greeting)


def perform_request(
    connection: RpcConnection[HelloWorldHandler] | HelloWorldHandler, name: str = "World"
) -> HelloWorldResponse:
    """Send ``HelloWorld`` with *name* over *connection* and return the reply.

    *connection* is either an ``RpcConnection`` or the proxy its ``with``
    block yields; both expose ``call``.

    Raises:
        CallError: If the call fails.

    """
    request = HelloWorldRequest(name=name)
    return cast(HelloWorldResponse, connection.call(OPERATION, request=request))  # type: ignore[union-attr]
