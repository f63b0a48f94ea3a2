# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Greeting RPC service over Apache Arrow IPC, plus a static HTTP responder."""

import logging

from hello_rpc.greeter import (
    DEFAULT_HTTP_PORT,
    DEFAULT_RPC_PORT,
    GREETING,
    OPERATION,
    HelloWorldHandler,
    HelloWorldHandlerImpl,
    HelloWorldRequest,
    HelloWorldResponse,
    perform_request,
)
from hello_rpc.http import (
    DEFAULT_BODY,
    DEFAULT_PATH,
    make_greeting_app,
    make_http_server,
    make_test_client,
    serve_http,
)
from hello_rpc.log import Level, Message
from hello_rpc.metadata import REQUEST_VERSION
from hello_rpc.rpc import (
    CallContext,
    CallError,
    CallStatistics,
    ClientLog,
    PipeTransport,
    RpcConnection,
    RpcConnectionError,
    RpcMethodInfo,
    RpcServer,
    RpcTransport,
    TcpRpcServer,
    TcpTransport,
    VersionError,
    describe_rpc,
    dial,
    make_pipe_pair,
    rpc_methods,
    serve_pipe,
    serve_tcp,
    serve_tcp_in_thread,
    tcp_connect,
)
from hello_rpc.utils import ArrowSerializableDataclass, IPCError

__all__ = [
    # Greeter
    "DEFAULT_HTTP_PORT",
    "DEFAULT_RPC_PORT",
    "GREETING",
    "OPERATION",
    "HelloWorldHandler",
    "HelloWorldHandlerImpl",
    "HelloWorldRequest",
    "HelloWorldResponse",
    "perform_request",
    # Core
    "RpcServer",
    "RpcConnection",
    "RpcTransport",
    "RpcMethodInfo",
    "CallError",
    "RpcConnectionError",
    "VersionError",
    "IPCError",
    # Convenience
    "dial",
    "tcp_connect",
    "serve_pipe",
    "serve_tcp",
    "serve_tcp_in_thread",
    # Transports
    "PipeTransport",
    "TcpTransport",
    "TcpRpcServer",
    "make_pipe_pair",
    # Introspection
    "rpc_methods",
    "describe_rpc",
    # Context
    "CallContext",
    "CallStatistics",
    # Logging
    "ClientLog",
    "Level",
    "Message",
    # Serialization
    "ArrowSerializableDataclass",
    # Protocol version
    "REQUEST_VERSION",
    # HTTP
    "DEFAULT_BODY",
    "DEFAULT_PATH",
    "make_greeting_app",
    "make_http_server",
    "make_test_client",
    "serve_http",
]

# Attach NullHandler to the package logger so library users don't get
# "No handler found" warnings.
logging.getLogger("hello_rpc").addHandler(logging.NullHandler())
