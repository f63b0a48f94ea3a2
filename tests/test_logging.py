# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for server-side logging infrastructure."""

from __future__ import annotations

import io
import json
import logging
import os
import subprocess
import sys
from collections.abc import Iterator
from typing import Any

import pytest

from hello_rpc.greeter import HelloWorldHandler, HelloWorldHandlerImpl, HelloWorldRequest
from hello_rpc.logging_utils import HelloJsonFormatter, configure_logging
from hello_rpc.rpc import RpcServer, serve_pipe
from hello_rpc.rpc._common import _ContextLoggerAdapter


def _extra(record: logging.LogRecord, key: str) -> Any:
    """Read a dynamic extra field from a log record without ``type: ignore``."""
    return record.__dict__[key]


@pytest.fixture
def restore_package_logger() -> Iterator[logging.Logger]:
    """Undo configure_logging side effects on the ``hello_rpc`` logger."""
    logger = logging.getLogger("hello_rpc")
    handlers = list(logger.handlers)
    level = logger.level
    yield logger
    logger.handlers[:] = handlers
    logger.setLevel(level)


# ---------------------------------------------------------------------------
# HelloJsonFormatter
# ---------------------------------------------------------------------------


class TestJsonFormatter:
    """Tests for HelloJsonFormatter."""

    def _record(self, **extra: object) -> logging.LogRecord:
        record = logging.LogRecord("hello_rpc.rpc", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        record.__dict__.update(extra)
        return record

    def test_core_fields(self) -> None:
        """timestamp, level, logger and message are always present."""
        obj = json.loads(HelloJsonFormatter().format(self._record()))
        assert obj["level"] == "INFO"
        assert obj["logger"] == "hello_rpc.rpc"
        assert obj["message"] == "hello world"
        assert "timestamp" in obj

    def test_extra_fields(self) -> None:
        """Fields attached through extra are included."""
        obj = json.loads(HelloJsonFormatter().format(self._record(server_id="abc", duration_ms=1.5)))
        assert obj["server_id"] == "abc"
        assert obj["duration_ms"] == 1.5

    def test_reserved_not_shadowed(self) -> None:
        """An extra field cannot overwrite a core field."""
        obj = json.loads(HelloJsonFormatter().format(self._record(level="bogus")))
        assert obj["level"] == "INFO"

    def test_unencodable_value(self) -> None:
        """Values json cannot encode are rendered with str."""
        obj = json.loads(HelloJsonFormatter().format(self._record(thing=object())))
        assert obj["thing"].startswith("<object object")

    def test_exception(self) -> None:
        """exc_info is rendered into an exception field."""
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        obj = json.loads(HelloJsonFormatter().format(record))
        assert "RuntimeError: boom" in obj["exception"]


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_text(self, restore_package_logger: logging.Logger) -> None:
        """Plain text lines go to the given stream."""
        stream = io.StringIO()
        configure_logging(logging.INFO, stream=stream)
        logging.getLogger("hello_rpc.rpc").info("plain line")
        assert "INFO hello_rpc.rpc: plain line" in stream.getvalue()

    def test_json(self, restore_package_logger: logging.Logger) -> None:
        """json_format=True writes one JSON object per record."""
        stream = io.StringIO()
        configure_logging(logging.INFO, json_format=True, stream=stream)
        logging.getLogger("hello_rpc.access").info("call", extra={"status": "ok"})
        obj = json.loads(stream.getvalue().strip())
        assert obj["status"] == "ok"
        assert obj["logger"] == "hello_rpc.access"

    def test_replaces_previous_handler(self, restore_package_logger: logging.Logger) -> None:
        """Calling twice leaves a single installed handler."""
        first = configure_logging(stream=io.StringIO())
        second = configure_logging(stream=io.StringIO())
        assert first not in restore_package_logger.handlers
        assert second in restore_package_logger.handlers

    def test_level(self, restore_package_logger: logging.Logger) -> None:
        """Records below the level are dropped."""
        stream = io.StringIO()
        configure_logging(logging.WARNING, stream=stream)
        logging.getLogger("hello_rpc.rpc").info("quiet")
        assert stream.getvalue() == ""


# ---------------------------------------------------------------------------
# Server and service loggers
# ---------------------------------------------------------------------------


class TestServerLogging:
    """Records emitted while serving."""

    def test_server_created(self, caplog: pytest.LogCaptureFixture) -> None:
        """Creating an RpcServer logs its id and method count."""
        with caplog.at_level(logging.INFO, logger="hello_rpc.rpc"):
            server = RpcServer(HelloWorldHandler, HelloWorldHandlerImpl(), server_id="srv-1")
        records = [r for r in caplog.records if "RpcServer created" in r.getMessage()]
        assert len(records) == 1
        assert _extra(records[0], "server_id") == server.server_id
        assert _extra(records[0], "method_count") == 1

    def test_service_logger_bound_fields(self, caplog: pytest.LogCaptureFixture) -> None:
        """ctx.logger records carry server, method and request fields."""
        with caplog.at_level(logging.DEBUG, logger="hello_rpc.service"):
            with serve_pipe(HelloWorldHandler, HelloWorldHandlerImpl()) as svc:
                svc.HelloWorld(request=HelloWorldRequest(name="Ada"))
        records = [r for r in caplog.records if r.name == "hello_rpc.service.HelloWorldHandler"]
        assert len(records) == 1
        record = records[0]
        assert _extra(record, "method") == "HelloWorld"
        assert _extra(record, "request_name") == "Ada"
        assert len(_extra(record, "request_id")) == 16

    def test_adapter_bound_fields_win(self) -> None:
        """Bound fields take precedence over per-call extra on conflict."""
        adapter = _ContextLoggerAdapter(logging.getLogger("t"), {"method": "bound"})
        _, kwargs = adapter.process("m", {"extra": {"method": "call", "other": 1}})
        assert kwargs["extra"] == {"method": "bound", "other": 1}

    def test_wire_debug(self, caplog: pytest.LogCaptureFixture) -> None:
        """Wire loggers describe requests and responses at DEBUG."""
        with caplog.at_level(logging.DEBUG, logger="hello_rpc.wire"):
            with serve_pipe(HelloWorldHandler, HelloWorldHandlerImpl()) as svc:
                svc.HelloWorld(request=HelloWorldRequest(name="World"))
        names = {r.name for r in caplog.records}
        assert "hello_rpc.wire.request" in names
        assert "hello_rpc.wire.response" in names
        messages = [r.getMessage() for r in caplog.records if r.name == "hello_rpc.wire.request"]
        assert any("HelloWorldHandler.HelloWorld" in m for m in messages)

    def test_wire_quiet_by_default(self, caplog: pytest.LogCaptureFixture) -> None:
        """Nothing is logged on the wire loggers at INFO."""
        with caplog.at_level(logging.INFO):
            with serve_pipe(HelloWorldHandler, HelloWorldHandlerImpl()) as svc:
                svc.HelloWorld(request=HelloWorldRequest(name="World"))
        assert not [r for r in caplog.records if r.name.startswith("hello_rpc.wire")]


def test_ipc_debug_env() -> None:
    """HELLO_RPC_IPC_DEBUG=1 traces IPC writes on stderr through structlog."""
    code = "from hello_rpc.greeter import HelloWorldRequest; HelloWorldRequest(name='x').serialize_to_bytes()"
    env = {**os.environ, "HELLO_RPC_IPC_DEBUG": "1"}
    result = subprocess.run([sys.executable, "-c", code], env=env, capture_output=True, text=True, timeout=30)
    assert result.returncode == 0, result.stderr
    assert "ipc_write" in result.stderr
