"""Minimal hello-rpc example: call the greeting service in-process.

The service runs in a background thread and communicates over an in-process
pipe, no network needed.

Run::

    python examples/hello_world.py
"""

from __future__ import annotations

from hello_rpc import HelloWorldHandler, HelloWorldHandlerImpl, HelloWorldRequest, serve_pipe


def main() -> None:
    """Run the example."""
    with serve_pipe(HelloWorldHandler, HelloWorldHandlerImpl()) as svc:
        reply = svc.HelloWorld(request=HelloWorldRequest(name="World"))
        print(reply.message)  # Hello World


if __name__ == "__main__":
    main()
