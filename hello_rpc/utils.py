"""Arrow IPC helpers and the dataclass serialization mixin.

KEY FUNCTIONS
-------------
empty_batch(schema) : Zero-row batch for a schema
serialize_record_batch(dest, batch, metadata) : Write one batch as a full IPC stream
serialize_record_batch_bytes(batch, metadata) : Same, returning bytes
deserialize_record_batch(data) : Read the single batch back from bytes

KEY CLASSES
-----------
ArrowSerializableDataclass : Mixin giving frozen dataclasses an Arrow schema
    derived from their annotations, plus IPC (de)serialization.
IPCError : Raised when an IPC payload is empty or malformed.

Set ``HELLO_RPC_IPC_DEBUG=1`` to trace every IPC read and write on stderr.
"""

import os
import sys
from dataclasses import MISSING
from dataclasses import fields as dataclass_fields
from io import BytesIO, IOBase
from types import UnionType
from typing import Any, ClassVar, Self, Union, get_args, get_origin, get_type_hints

import pyarrow as pa
import structlog
from pyarrow import ipc

__all__ = [
    "ArrowSerializableDataclass",
    "IPCError",
    "deserialize_record_batch",
    "empty_batch",
    "serialize_record_batch",
    "serialize_record_batch_bytes",
]

_IPC_DEBUG = os.environ.get("HELLO_RPC_IPC_DEBUG", "").lower() in ("1", "true", "yes")
_ipc_log: structlog.stdlib.BoundLogger | None = None


def _get_ipc_log() -> structlog.stdlib.BoundLogger:
    """Get or create the IPC debug logger, writing to stderr."""
    global _ipc_log
    if _ipc_log is None:
        structlog.configure(
            processors=[
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(0),
            logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        )
        _ipc_log = structlog.get_logger().bind(component="ipc")
    return _ipc_log


def _schema_to_dict(schema: pa.Schema) -> dict[str, str]:
    return {field.name: str(field.type) for field in schema}


def _metadata_to_dict(metadata: pa.KeyValueMetadata | None) -> dict[str, str]:
    if metadata is None:
        return {}
    return {k.decode(errors="replace"): v.decode(errors="replace") for k, v in metadata.items()}


class IPCError(Exception):
    """Error during IPC message reading or writing."""


def empty_batch(schema: pa.Schema) -> pa.RecordBatch:
    """Return an empty batch conforming to the schema."""
    return pa.RecordBatch.from_arrays(
        [pa.array([], type=field.type) for field in schema],
        schema=schema,
    )


def serialize_record_batch(
    destination: IOBase,
    batch: pa.RecordBatch,
    custom_metadata: pa.KeyValueMetadata | None = None,
) -> None:
    """Write *batch* to *destination* as a complete IPC stream (schema, batch, EOS)."""
    with ipc.RecordBatchStreamWriter(destination, batch.schema) as writer:
        writer.write_batch(batch, custom_metadata=custom_metadata)

    if _IPC_DEBUG:
        _get_ipc_log().debug(
            "ipc_write",
            num_rows=batch.num_rows,
            schema=_schema_to_dict(batch.schema),
            metadata=_metadata_to_dict(custom_metadata),
        )


def serialize_record_batch_bytes(
    batch: pa.RecordBatch,
    custom_metadata: pa.KeyValueMetadata | None = None,
) -> bytes:
    """Serialize *batch* to bytes in Arrow IPC stream format."""
    buffer = BytesIO()
    serialize_record_batch(buffer, batch, custom_metadata)
    return buffer.getvalue()


def deserialize_record_batch(
    data: bytes,
) -> tuple[pa.RecordBatch, pa.KeyValueMetadata | None]:
    """Read the first batch (and its custom metadata) from IPC stream bytes.

    Raises:
        IPCError: If the stream holds no batch.

    """
    with ipc.open_stream(pa.BufferReader(data)) as reader:
        try:
            batch, custom_metadata = reader.read_next_batch_with_custom_metadata()
        except StopIteration:
            raise IPCError("No RecordBatch found in provided data") from None

        if _IPC_DEBUG:
            _get_ipc_log().debug(
                "ipc_read",
                num_rows=batch.num_rows,
                schema=_schema_to_dict(batch.schema),
                metadata=_metadata_to_dict(custom_metadata),
                nbytes=len(data),
            )
        return batch, custom_metadata


# =============================================================================
# ArrowSerializableDataclass
# =============================================================================


def _is_optional_type(python_type: Any) -> tuple[Any, bool]:
    """Split ``X | None`` into ``(X, True)``; anything else is ``(type, False)``."""
    origin = get_origin(python_type)
    args = get_args(python_type)
    if origin is UnionType or origin is Union:
        non_none_types = [t for t in args if t is not type(None)]
        if len(non_none_types) == 1 and len(args) == 2:
            return non_none_types[0], True
    return python_type, False


_SIMPLE_TYPES: dict[type, pa.DataType] = {
    str: pa.string(),
    bytes: pa.binary(),
    int: pa.int64(),
    float: pa.float64(),
    bool: pa.bool_(),
}


def _infer_arrow_type(python_type: Any) -> pa.DataType:
    """Infer the Arrow type for str, bytes, int, float, bool, ``X | None`` and nested dataclasses.

    Raises:
        TypeError: If the type cannot be mapped.

    """
    inner_type, _ = _is_optional_type(python_type)
    if inner_type is not python_type:
        return _infer_arrow_type(inner_type)

    if isinstance(python_type, type) and issubclass(python_type, ArrowSerializableDataclass):
        return pa.struct([pa.field(f.name, f.type, nullable=f.nullable) for f in python_type.ARROW_SCHEMA])

    if python_type in _SIMPLE_TYPES:
        return _SIMPLE_TYPES[python_type]

    raise TypeError(f"Cannot infer Arrow type for: {python_type}")


class _ArrowSchemaDescriptor:
    """Descriptor that builds ``ARROW_SCHEMA`` on first access.

    ``@dataclass`` runs after ``__init_subclass__``, so the fields are only
    known once the class is fully built.
    """

    def __set_name__(self, owner: type, name: str) -> None:
        self._name = name

    def __get__(self, instance: object | None, owner: type["ArrowSerializableDataclass"]) -> pa.Schema:
        cache_attr = f"_cached_{self._name}"
        # Look only at the class itself so subclasses get their own schema.
        cached = owner.__dict__.get(cache_attr)
        if cached is not None:
            return cached
        schema = self._generate_schema(owner)
        setattr(owner, cache_attr, schema)
        return schema

    def _generate_schema(self, cls: type["ArrowSerializableDataclass"]) -> pa.Schema:
        type_hints = get_type_hints(cls)
        arrow_fields: list[pa.Field[Any]] = []
        for field in dataclass_fields(cls):  # type: ignore[arg-type]
            field_type = type_hints.get(field.name, field.type)
            _, nullable = _is_optional_type(field_type)
            try:
                arrow_type = _infer_arrow_type(field_type)
            except TypeError as e:
                raise TypeError(f"Cannot generate Arrow schema for {cls.__name__}.{field.name}: {e}") from e
            arrow_fields.append(pa.field(field.name, arrow_type, nullable=nullable))
        return pa.schema(arrow_fields)


class ArrowSerializableDataclass:
    """Mixin for frozen dataclasses with automatic Arrow IPC serialization.

    ``ARROW_SCHEMA`` is generated from the field annotations; fields
    annotated ``X | None`` become nullable.

    Attributes:
        ARROW_SCHEMA: Arrow schema generated from the field annotations.

    """

    ARROW_SCHEMA: ClassVar[pa.Schema] = _ArrowSchemaDescriptor()  # type: ignore[assignment]

    def _to_row_dict(self) -> dict[str, Any]:
        row: dict[str, Any] = {}
        for field in dataclass_fields(self):  # type: ignore[arg-type]
            value = getattr(self, field.name)
            row[field.name] = value._to_row_dict() if isinstance(value, ArrowSerializableDataclass) else value
        return row

    def to_batch(self) -> pa.RecordBatch:
        """Return this instance as a single-row ``RecordBatch``."""
        return pa.RecordBatch.from_pylist([self._to_row_dict()], schema=self.ARROW_SCHEMA)

    def serialize(self, dest: IOBase) -> None:
        """Write this instance to *dest* as an Arrow IPC stream."""
        serialize_record_batch(dest, self.to_batch())

    def serialize_to_bytes(self) -> bytes:
        """Serialize this instance to Arrow IPC stream bytes."""
        return serialize_record_batch_bytes(self.to_batch())

    @classmethod
    def deserialize_from_batch(cls, batch: pa.RecordBatch) -> Self:
        """Build an instance from a single-row ``RecordBatch``.

        Fields with defaults may be absent from the batch.

        Raises:
            ValueError: If the batch does not hold exactly one row or lacks a
                required field.

        """
        if batch.num_rows != 1:
            raise ValueError(f"Expected single-row RecordBatch for {cls.__name__}, got {batch.num_rows} rows")
        row: dict[str, Any] = batch.to_pylist()[0]
        return cls._from_row_dict(row)

    @classmethod
    def _from_row_dict(cls, row: dict[str, Any]) -> Self:
        type_hints = get_type_hints(cls)
        kwargs: dict[str, Any] = {}
        missing: list[str] = []
        for field in dataclass_fields(cls):  # type: ignore[arg-type]
            if field.name not in row:
                if field.default is MISSING and field.default_factory is MISSING:
                    missing.append(field.name)
                continue
            value = row[field.name]
            inner_type, _ = _is_optional_type(type_hints.get(field.name, field.type))
            if value is not None and isinstance(inner_type, type) and issubclass(inner_type, ArrowSerializableDataclass):
                value = inner_type._from_row_dict(value)
            kwargs[field.name] = value
        if missing:
            raise ValueError(f"Missing fields in {cls.__name__} RecordBatch: {missing}. Found: {sorted(row)}")
        return cls(**kwargs)

    @classmethod
    def deserialize_from_bytes(cls, data: bytes) -> Self:
        """Deserialize an instance from Arrow IPC stream bytes."""
        batch, _ = deserialize_record_batch(data)
        return cls.deserialize_from_batch(batch)
