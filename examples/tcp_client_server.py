"""Greeting service over TCP: server on a background thread, client in the foreground.

``serve_tcp_in_thread`` binds the socket and waits until the listener is
accepting before handing it over, so the client can dial straight away.

Run::

    python examples/tcp_client_server.py
"""

from __future__ import annotations

from hello_rpc import (
    CallError,
    HelloWorldHandler,
    HelloWorldHandlerImpl,
    RpcConnectionError,
    RpcServer,
    dial,
    perform_request,
    serve_tcp_in_thread,
)


def main() -> None:
    """Run the example."""
    server = RpcServer(HelloWorldHandler, HelloWorldHandlerImpl())

    # Port 0 picks a free port; the bound one is on listener.address.
    with serve_tcp_in_thread(server, "127.0.0.1", 0) as listener:
        host, port = listener.address
        with dial(HelloWorldHandler, host, port) as svc:
            print(perform_request(svc, "World").message)  # Hello World

            try:
                svc.call("HelloWorldHandler.Goodbye")  # type: ignore[attr-defined]
            except CallError as e:
                print(f"Call failed: {e.error_type}")  # Call failed: AttributeError

    # The listener is closed now, so dialing it fails before any call is made.
    try:
        dial(HelloWorldHandler, host, port)
    except RpcConnectionError as e:
        print(f"Connect failed: {e}")


if __name__ == "__main__":
    main()
