"""Method metadata and protocol introspection."""

from __future__ import annotations

import functools
import inspect
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, get_type_hints

import pyarrow as pa

from hello_rpc.rpc._common import _EMPTY_SCHEMA
from hello_rpc.utils import ArrowSerializableDataclass, _infer_arrow_type, _is_optional_type

# ---------------------------------------------------------------------------
# RpcMethodInfo
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RpcMethodInfo:
    """Metadata for a single RPC method, derived from Protocol type hints.

    Attributes:
        name: Method name as it appears on the Protocol.
        qualified_name: ``<Protocol>.<method>``; the name sent on the wire.
        params_schema: Arrow schema for the serialized request parameters.
        result_schema: Arrow schema for the serialized response (empty for
            ``-> None`` methods).
        result_type: The raw Python return-type annotation.
        has_return: ``True`` when the method returns a value.
        doc: The method's docstring from the Protocol class, if any.
        param_defaults: Defaults for parameters that declare one.
        param_types: Parameter name to Python annotation (excludes ``self``).

    """

    name: str
    qualified_name: str
    params_schema: pa.Schema
    result_schema: pa.Schema
    result_type: Any
    has_return: bool
    doc: str | None
    param_defaults: dict[str, Any] = field(default_factory=dict)
    param_types: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Protocol introspection
# ---------------------------------------------------------------------------


def _is_dataclass_type(hint: Any) -> bool:
    return isinstance(hint, type) and issubclass(hint, ArrowSerializableDataclass)


def _build_params_schema(hints: dict[str, Any]) -> pa.Schema:
    """Build an Arrow schema from method parameter hints (excluding ``self`` and ``return``).

    Dataclass parameters travel as a binary column holding a nested IPC stream.
    """
    fields: list[pa.Field[pa.DataType]] = []
    for name, hint in hints.items():
        if name in ("self", "return"):
            continue
        inner, is_nullable = _is_optional_type(hint)
        if _is_dataclass_type(inner):
            fields.append(pa.field(name, pa.binary(), nullable=is_nullable))
        else:
            fields.append(pa.field(name, _infer_arrow_type(inner), nullable=is_nullable))
    return pa.schema(fields)


def _build_result_schema(result_type: Any) -> pa.Schema:
    """Build a single-field ``result`` schema for a return annotation."""
    if result_type is type(None) or result_type is None:
        return _EMPTY_SCHEMA
    if _is_dataclass_type(result_type):
        return pa.schema([pa.field("result", pa.binary())])
    inner, is_nullable = _is_optional_type(result_type)
    return pa.schema([pa.field("result", _infer_arrow_type(inner), nullable=is_nullable)])


_UNSUPPORTED_PARAM_KINDS: dict[int, str] = {
    inspect.Parameter.POSITIONAL_ONLY: "positional-only (before '/')",
    inspect.Parameter.VAR_POSITIONAL: "*args",
    inspect.Parameter.VAR_KEYWORD: "**kwargs",
}


def _validate_protocol_params(protocol: type, method_name: str, sig: inspect.Signature) -> None:
    """Reject parameters that cannot be passed by keyword.

    Parameters are identified by name on the wire (Arrow schema columns).

    Raises:
        TypeError: If any parameter uses an unsupported kind.

    """
    errors: list[str] = []
    for name, param in sig.parameters.items():
        if name == "self":
            continue
        label = _UNSUPPORTED_PARAM_KINDS.get(param.kind)
        if label is not None:
            errors.append(f"  - '{name}' is {label}")
    if errors:
        detail = "\n".join(errors)
        raise TypeError(
            f"{protocol.__name__}.{method_name}() has parameters incompatible"
            f" with the RPC wire protocol (all parameters must be keyword-passable):\n{detail}"
        )


def _get_param_defaults(sig: inspect.Signature) -> dict[str, Any]:
    return {
        name: param.default
        for name, param in sig.parameters.items()
        if name != "self" and param.default is not inspect.Parameter.empty
    }


@functools.lru_cache(maxsize=64)
def rpc_methods(protocol: type) -> Mapping[str, RpcMethodInfo]:
    """Introspect a Protocol class and return RpcMethodInfo for each method.

    Skips underscore-prefixed names and non-callable attributes.
    """
    result: dict[str, RpcMethodInfo] = {}

    for name in dir(protocol):
        if name.startswith("_"):
            continue
        attr = getattr(protocol, name, None)
        if attr is None or not callable(attr):
            continue

        try:
            method_hints = get_type_hints(attr)
        except (NameError, AttributeError) as exc:
            raise TypeError(f"Failed to resolve type hints for {protocol.__name__}.{name}(): {exc}") from exc

        sig = inspect.signature(attr)
        _validate_protocol_params(protocol, name, sig)

        return_hint = method_hints.get("return", type(None))
        result[name] = RpcMethodInfo(
            name=name,
            qualified_name=f"{protocol.__name__}.{name}",
            params_schema=_build_params_schema(method_hints),
            result_schema=_build_result_schema(return_hint),
            result_type=return_hint,
            has_return=return_hint is not type(None) and return_hint is not None,
            doc=getattr(attr, "__doc__", None),
            param_defaults=_get_param_defaults(sig),
            param_types={k: v for k, v in method_hints.items() if k not in ("self", "return")},
        )

    return MappingProxyType(result)


# ---------------------------------------------------------------------------
# Implementation validation
# ---------------------------------------------------------------------------


def _format_signature(info: RpcMethodInfo) -> str:
    """Format a protocol method signature for error messages."""
    params = ", ".join(f"{n}: {getattr(t, '__name__', str(t))}" for n, t in info.param_types.items())
    return f"{info.name}({params})"


def _validate_implementation(
    protocol: type,
    implementation: object,
    methods: Mapping[str, RpcMethodInfo],
) -> None:
    """Validate that *implementation* conforms to *protocol*.

    Every protocol method must exist on the implementation, be callable and
    accept the protocol's parameters.  An extra ``ctx`` parameter is allowed.

    Raises:
        TypeError: Listing every problem found.

    """
    errors: list[str] = []

    for name, info in methods.items():
        method = getattr(implementation, name, None)

        if method is None:
            errors.append(f"missing method {_format_signature(info)}")
            continue

        if not callable(method):
            errors.append(f"'{name}' exists but is not callable")
            continue

        impl_params = {k: v for k, v in inspect.signature(method).parameters.items() if k != "self"}
        proto_param_names = set(info.param_types.keys())

        errors.extend(
            f"'{name}()' missing parameter '{param_name}'"
            for param_name in sorted(proto_param_names)
            if param_name not in impl_params
        )

        for param_name, param in impl_params.items():
            if param_name in proto_param_names or param_name == "ctx":
                continue
            if param.default is inspect.Parameter.empty and param.kind not in (
                inspect.Parameter.VAR_POSITIONAL,
                inspect.Parameter.VAR_KEYWORD,
            ):
                errors.append(f"'{name}()' has required parameter '{param_name}' not defined in {protocol.__name__}")

    if errors:
        header = f"{type(implementation).__name__} does not implement {protocol.__name__}:"
        detail = "\n".join(f"  - {e}" for e in errors)
        raise TypeError(f"{header}\n{detail}")
