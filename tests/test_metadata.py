"""Tests for hello_rpc.metadata: metadata helpers."""

from __future__ import annotations

from hello_rpc.metadata import (
    REQUEST_VERSION,
    REQUEST_VERSION_KEY,
    RPC_METHOD_KEY,
    encode_metadata,
)

# ---------------------------------------------------------------------------
# encode_metadata
# ---------------------------------------------------------------------------


class TestEncodeMetadata:
    """Tests for encode_metadata."""

    def test_bytes_keys_and_values(self) -> None:
        """String keys and values are stored as UTF-8 bytes."""
        md = encode_metadata({"hello_rpc.method": "HelloWorldHandler.HelloWorld"})
        assert md[RPC_METHOD_KEY] == b"HelloWorldHandler.HelloWorld"

    def test_empty(self) -> None:
        """An empty dict gives empty metadata."""
        assert len(encode_metadata({})) == 0

    def test_unicode(self) -> None:
        """Non-ASCII text is encoded as UTF-8."""
        md = encode_metadata({"k": "héllo"})
        assert md[b"k"] == "héllo".encode()


def test_wire_keys_are_namespaced() -> None:
    """Every well-known key lives under the hello_rpc namespace."""
    assert RPC_METHOD_KEY.startswith(b"hello_rpc.")
    assert REQUEST_VERSION_KEY.startswith(b"hello_rpc.")
    assert REQUEST_VERSION == b"1"
