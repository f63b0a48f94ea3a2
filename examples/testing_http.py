"""Testing the HTTP responder without a running server.

``make_test_client`` wraps a Falcon ``TestClient`` around the greeting app so
requests are simulated in-process with zero network I/O.

Run::

    python examples/testing_http.py
"""

from __future__ import annotations

from hello_rpc import make_test_client


def main() -> None:
    """Run the example."""
    client = make_test_client()

    for method in ("GET", "POST", "DELETE"):
        result = client.simulate_request(method, "/holamundo")
        print(f"{method} /holamundo -> {result.status_code} {result.text}")

    result = client.simulate_get("/adios")
    print(f"GET /adios -> {result.status_code}")


if __name__ == "__main__":
    main()
