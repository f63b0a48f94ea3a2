"""Wire protocol read/write helpers and serialization.

Every call is one request IPC stream followed by one response IPC stream:

* request: params schema, one batch whose custom metadata carries
  ``hello_rpc.method`` and ``hello_rpc.request_version``, EOS.
* response: result schema, zero or more zero-row log batches, then either
  the one-row result batch or a zero-row EXCEPTION batch, EOS.
"""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import Callable
from io import IOBase
from typing import Any

import pyarrow as pa
from pyarrow import ipc

from hello_rpc.log import Level, Message
from hello_rpc.metadata import (
    LOG_EXTRA_KEY,
    LOG_LEVEL_KEY,
    LOG_MESSAGE_KEY,
    REQUEST_ID_KEY,
    REQUEST_VERSION,
    REQUEST_VERSION_KEY,
    RPC_METHOD_KEY,
    SERVER_ID_KEY,
    encode_metadata,
)
from hello_rpc.rpc._common import (
    _EMPTY_SCHEMA,
    CallError,
    VersionError,
    _current_request_id,
    _record_input,
    _record_output,
)
from hello_rpc.rpc._debug import (
    fmt_batch,
    fmt_kwargs,
    fmt_metadata,
    fmt_schema,
    wire_batch_logger,
    wire_request_logger,
    wire_response_logger,
)
from hello_rpc.rpc._types import RpcMethodInfo
from hello_rpc.utils import ArrowSerializableDataclass, _is_optional_type, empty_batch

# ---------------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------------


def _convert_for_arrow(val: object) -> object:
    """Dataclasses travel as nested IPC bytes; scalars pass through."""
    if isinstance(val, ArrowSerializableDataclass):
        return val.serialize_to_bytes()
    return val


def _deserialize_value(value: object, type_hint: Any) -> object:
    """Rebuild a typed value from what ``as_py()`` returned."""
    base, _ = _is_optional_type(type_hint)
    if isinstance(base, type) and issubclass(base, ArrowSerializableDataclass) and isinstance(value, bytes):
        return base.deserialize_from_bytes(value)
    return value


def _deserialize_params(kwargs: dict[str, Any], param_types: dict[str, Any]) -> None:
    """Deserialize request parameters in place."""
    for name, value in kwargs.items():
        if value is None:
            continue
        ptype = param_types.get(name)
        if ptype is not None:
            kwargs[name] = _deserialize_value(value, ptype)


def _validate_params(method_name: str, kwargs: dict[str, Any], param_types: dict[str, Any]) -> None:
    """Raise ``TypeError`` when a non-optional parameter is ``None`` or missing."""
    for name, ptype in param_types.items():
        if kwargs.get(name) is not None:
            continue
        _, is_nullable = _is_optional_type(ptype)
        if not is_nullable:
            raise TypeError(f"{method_name}() parameter '{name}' is not optional but got None")


def _validate_result(method_name: str, value: object, result_type: Any) -> None:
    """Raise ``TypeError`` when a non-optional return value is ``None``."""
    if value is not None or result_type is None or result_type is type(None):
        return
    _, is_nullable = _is_optional_type(result_type)
    if not is_nullable:
        raise TypeError(f"{method_name}() expected a non-None return value but got None")


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


def _build_request_batch(
    method_name: str,
    params_schema: pa.Schema,
    kwargs: dict[str, Any],
) -> tuple[pa.RecordBatch, pa.KeyValueMetadata]:
    """Encode *kwargs* as a one-row request batch plus its method/version metadata.

    Raises ``pa.ArrowInvalid`` / ``pa.ArrowTypeError`` when a value does not
    fit its column.  Nothing is written.
    """
    arrays: list[pa.Array[Any]] = [pa.array([_convert_for_arrow(kwargs.get(f.name))], type=f.type) for f in params_schema]
    batch = pa.RecordBatch.from_arrays(arrays, schema=params_schema)
    custom_metadata = pa.KeyValueMetadata({RPC_METHOD_KEY: method_name.encode(), REQUEST_VERSION_KEY: REQUEST_VERSION})
    return batch, custom_metadata


def _write_request(
    writer_stream: IOBase,
    batch: pa.RecordBatch,
    custom_metadata: pa.KeyValueMetadata,
) -> None:
    """Write a prepared request batch as a complete IPC stream."""
    if wire_request_logger.isEnabledFor(logging.DEBUG):
        wire_request_logger.debug(
            "Write request: %s, metadata=%s",
            fmt_batch(batch),
            fmt_metadata(custom_metadata),
        )
    with ipc.new_stream(writer_stream, batch.schema) as writer:
        writer.write_batch(batch, custom_metadata=custom_metadata)


def _prepare_request(info: RpcMethodInfo, kwargs: dict[str, Any]) -> tuple[pa.RecordBatch, pa.KeyValueMetadata]:
    """Merge defaults, validate, and encode a request for *info*."""
    merged = {**info.param_defaults, **kwargs}
    unknown = sorted(set(merged) - set(info.param_types))
    if unknown:
        raise TypeError(f"{info.name}() got unexpected parameter(s): {', '.join(unknown)}")
    if wire_request_logger.isEnabledFor(logging.DEBUG):
        wire_request_logger.debug(
            "Prepare request: method=%s, kwargs={%s}",
            info.qualified_name,
            fmt_kwargs(merged),
        )
    _validate_params(info.name, merged, info.param_types)
    return _build_request_batch(info.qualified_name, info.params_schema, merged)


def _read_request(reader_stream: IOBase) -> tuple[str, dict[str, Any]]:
    """Read a request IPC stream and return ``(method_name, kwargs)``.

    Raises:
        CallError: If ``hello_rpc.method`` is missing or the batch does not
            hold exactly one row.
        VersionError: If ``hello_rpc.request_version`` is missing or
            does not match ``REQUEST_VERSION``.

    """
    reader = ipc.open_stream(reader_stream)
    batch, custom_metadata = reader.read_next_batch_with_custom_metadata()
    _record_input(batch)
    if wire_request_logger.isEnabledFor(logging.DEBUG):
        wire_request_logger.debug(
            "Read request batch: %s, metadata=%s",
            fmt_batch(batch),
            fmt_metadata(custom_metadata),
        )
    _drain_stream(reader)

    method_name_bytes = custom_metadata.get(RPC_METHOD_KEY) if custom_metadata else None
    if method_name_bytes is None:
        raise CallError(
            "ProtocolError",
            "Missing 'hello_rpc.method' in request batch custom_metadata. "
            "Each request batch must carry the qualified method name (Service.Method).",
        )
    version_bytes = custom_metadata.get(REQUEST_VERSION_KEY) if custom_metadata else None
    if version_bytes is None:
        raise VersionError(
            "Missing 'hello_rpc.request_version' in request batch custom_metadata. "
            f"Set it to {REQUEST_VERSION!r}."
        )
    if version_bytes != REQUEST_VERSION:
        raise VersionError(f"Unsupported request version {version_bytes!r}, expected {REQUEST_VERSION!r}.")
    if len(batch.schema) > 0 and batch.num_rows != 1:
        raise CallError(
            "ProtocolError",
            f"Expected 1 row in request batch, got {batch.num_rows}. "
            f"The batch should have exactly 1 row with schema {fmt_schema(batch.schema)}.",
        )
    method_name = method_name_bytes.decode()
    kwargs = {f.name: batch.column(i)[0].as_py() for i, f in enumerate(batch.schema)}
    return method_name, kwargs


def _drain_stream(reader: ipc.RecordBatchStreamReader) -> None:
    """Consume remaining batches so the IPC EOS marker is read."""
    while True:
        try:
            reader.read_next_batch()
        except StopIteration:
            return


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


def _write_message_batch(
    writer: ipc.RecordBatchStreamWriter,
    schema: pa.Schema,
    msg: Message,
    server_id: str | None = None,
) -> None:
    """Write a zero-row batch carrying *msg* on an open IPC stream writer."""
    md = msg.add_to_metadata()
    if server_id is not None:
        md[SERVER_ID_KEY.decode()] = server_id
    request_id = _current_request_id.get()
    if request_id:
        md[REQUEST_ID_KEY.decode()] = request_id
    batch = empty_batch(schema)
    _record_output(batch)
    writer.write_batch(batch, custom_metadata=encode_metadata(md))


def _write_error_batch(
    writer: ipc.RecordBatchStreamWriter,
    schema: pa.Schema,
    exc: BaseException,
    server_id: str | None = None,
) -> None:
    """Write *exc* as a zero-row EXCEPTION batch."""
    if wire_response_logger.isEnabledFor(logging.DEBUG):
        wire_response_logger.debug("Write error batch: %s: %s", type(exc).__name__, str(exc)[:200])
    _write_message_batch(writer, schema, Message.from_exception(exc), server_id=server_id)


def _write_error_stream(
    writer_stream: IOBase, schema: pa.Schema, exc: BaseException, server_id: str | None = None
) -> None:
    """Write a complete IPC stream containing just an error batch."""
    with ipc.new_stream(writer_stream, schema) as writer:
        _write_error_batch(writer, schema, exc, server_id=server_id)


class _ClientLogSink:
    """Buffers client-directed log messages until a writer is attached, then writes directly."""

    __slots__ = ("_buffer", "_schema", "_server_id", "_writer")

    def __init__(self, server_id: str | None = None) -> None:
        self._buffer: list[Message] = []
        self._writer: ipc.RecordBatchStreamWriter | None = None
        self._schema: pa.Schema | None = None
        self._server_id = server_id

    def __call__(self, msg: Message) -> None:
        if self._writer is not None and self._schema is not None:
            _write_message_batch(self._writer, self._schema, msg, server_id=self._server_id)
        else:
            self._buffer.append(msg)

    def flush_contents(self, writer: ipc.RecordBatchStreamWriter, schema: pa.Schema) -> None:
        """Write buffered messages and switch to direct writing."""
        self._writer = writer
        self._schema = schema
        for msg in self._buffer:
            _write_message_batch(writer, schema, msg, server_id=self._server_id)
        self._buffer.clear()


def _write_result_batch(
    writer: ipc.RecordBatchStreamWriter,
    result_schema: pa.Schema,
    value: object,
) -> None:
    """Write a result batch to an open IPC stream writer."""
    if len(result_schema) == 0:
        batch = pa.RecordBatch.from_pydict({}, schema=_EMPTY_SCHEMA)
    else:
        batch = pa.RecordBatch.from_arrays(
            [pa.array([_convert_for_arrow(value)], type=result_schema.field(0).type)], schema=result_schema
        )
    _record_output(batch)
    if wire_response_logger.isEnabledFor(logging.DEBUG):
        wire_response_logger.debug("Write result batch: %s", fmt_batch(batch))
    writer.write_batch(batch)


def _dispatch_log_or_error(
    batch: pa.RecordBatch,
    custom_metadata: pa.KeyValueMetadata | None,
    on_log: Callable[[Message], None] | None = None,
) -> bool:
    """Handle a zero-row log/error batch; return whether the batch was consumed.

    - data batches (rows, or no log keys): ``False``
    - EXCEPTION level: raise ``CallError``
    - any other level: pass a ``Message`` to *on_log*, ``True``
    """
    if custom_metadata is None or batch.num_rows != 0:
        if wire_batch_logger.isEnabledFor(logging.DEBUG):
            wire_batch_logger.debug("Classify batch: rows=%d -> data", batch.num_rows)
        return False
    level_bytes = custom_metadata.get(LOG_LEVEL_KEY)
    message_bytes = custom_metadata.get(LOG_MESSAGE_KEY)
    if level_bytes is None or message_bytes is None:
        return False

    level_str = level_bytes.decode()
    message_str = message_bytes.decode()

    raw_extra_data: dict[str, object] = {}
    raw_extra = custom_metadata.get(LOG_EXTRA_KEY)
    if raw_extra is not None:
        with contextlib.suppress(json.JSONDecodeError):
            raw_extra_data = json.loads(raw_extra.decode())

    request_id_bytes = custom_metadata.get(REQUEST_ID_KEY)
    request_id = request_id_bytes.decode() if request_id_bytes is not None else ""

    if wire_batch_logger.isEnabledFor(logging.DEBUG):
        wire_batch_logger.debug("Classify batch: zero-row -> %s: %s", level_str, message_str[:200])

    if level_str == Level.EXCEPTION.value:
        error_type = str(raw_extra_data.get("exception_type", level_str))
        traceback_str = str(raw_extra_data.get("traceback", ""))
        raise CallError(error_type, message_str, traceback_str, request_id=request_id)

    extra: dict[str, str] = {k: str(v) for k, v in raw_extra_data.items()}
    server_id_bytes = custom_metadata.get(SERVER_ID_KEY)
    if server_id_bytes is not None:
        extra["server_id"] = server_id_bytes.decode()
    if request_id:
        extra["request_id"] = request_id
    if on_log is not None:
        on_log(Message(Level(level_str), message_str, **extra))
    return True


def _read_unary_response(
    reader_stream: IOBase,
    info: RpcMethodInfo,
    on_log: Callable[[Message], None] | None,
) -> object:
    """Read one response stream: dispatch logs, raise errors, return the deserialized result."""
    reader = ipc.open_stream(reader_stream)
    try:
        while True:
            batch, custom_metadata = reader.read_next_batch_with_custom_metadata()
            if wire_response_logger.isEnabledFor(logging.DEBUG):
                wire_response_logger.debug("Read batch: %s, metadata=%s", fmt_batch(batch), fmt_metadata(custom_metadata))
            if not _dispatch_log_or_error(batch, custom_metadata, on_log):
                break
    except CallError:
        _drain_stream(reader)
        raise
    except StopIteration:
        raise CallError(
            "ProtocolError", f"Response stream for {info.qualified_name} ended without a result batch"
        ) from None
    _drain_stream(reader)

    if not info.has_return:
        return None
    value = batch.column("result")[0].as_py()
    _validate_result(info.name, value, info.result_type)
    if value is None:
        return None
    return _deserialize_value(value, info.result_type)
