"""JSON codec for field values and whole player documents.

Every field value is stored as its own JSON text (the "raw" value); a document
is a JSON object mapping field names to those texts. Decoding first parses the
raw text into a generic value, then coerces it to the requested target.
"""

from __future__ import annotations

import dataclasses
import json
import math
import struct
import uuid
from enum import Enum
from typing import Any, Callable, get_args, get_origin

from playerdata.errors import DecodeError


class FieldType(Enum):
    """Tag describing the kind of value a field holds."""

    BOOLEAN = "boolean"
    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    CHAR = "char"
    BYTE = "byte"
    STRING_LIST = "string_list"
    STRUCTURED = "structured"
    NULL = "null"

    @classmethod
    def infer(cls, value: Any) -> FieldType:
        """Tag a plain value. Raises TypeError for values with no tag."""
        if value is None:
            return cls.NULL
        if isinstance(value, bool):
            return cls.BOOLEAN
        if isinstance(value, int):
            return cls.INTEGER
        if isinstance(value, float):
            return cls.FLOAT
        if isinstance(value, (str, uuid.UUID)):
            return cls.STRING
        if isinstance(value, (list, tuple)):
            if all(isinstance(item, str) for item in value):
                return cls.STRING_LIST
            return cls.STRUCTURED
        if isinstance(value, dict) or _is_dataclass_instance(value):
            return cls.STRUCTURED
        raise TypeError(f"Cannot infer a field type for {type(value).__name__}")

    def accepts(self, value: Any) -> bool:
        """Whether a non-null value is a valid instance of this tag."""
        if self is FieldType.NULL:
            return value is None
        if self is FieldType.BOOLEAN:
            return isinstance(value, bool)
        if self is FieldType.INTEGER:
            return isinstance(value, int) and not isinstance(value, bool)
        if self is FieldType.FLOAT:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        if self is FieldType.STRING:
            return isinstance(value, (str, uuid.UUID))
        if self is FieldType.CHAR:
            return isinstance(value, str) and len(value) == 1
        if self is FieldType.BYTE:
            return FieldType.INTEGER.accepts(value) and -128 <= value <= 127
        if self is FieldType.STRING_LIST:
            return isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value)
        return isinstance(value, (list, tuple, dict)) or _is_dataclass_instance(value)


def _is_dataclass_instance(value: Any) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


# ── Encoding ─────────────────────────────────────────────────


def _default(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if _is_dataclass_instance(value):
        return dataclasses.asdict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode(value: Any) -> str:
    """Serialize a value to the raw JSON text stored for a field."""
    return json.dumps(value, indent=2, ensure_ascii=False, default=_default)


def encode_document(fields: dict[str, str | None]) -> bytes:
    return json.dumps(fields, indent=2, ensure_ascii=False).encode("utf-8")


# ── Decoding ─────────────────────────────────────────────────


def _loads(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (ValueError, TypeError, RecursionError) as e:
        raise DecodeError(f"Malformed field value {raw!r}: {e}") from e


def as_number(value: Any) -> int | float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"Expected a number, got {type(value).__name__}")
    return value


def narrow(value: Any, bits: int | None = None) -> int:
    """Truncate a number toward zero, checking it fits a signed ``bits``-wide integer."""
    number = as_number(value)
    if isinstance(number, float) and not math.isfinite(number):
        raise DecodeError(f"{number!r} is not a finite number")
    result = int(number)
    if bits is not None:
        limit = 1 << (bits - 1)
        if not -limit <= result < limit:
            raise DecodeError(f"{value!r} does not fit in a {bits}-bit integer")
    return result


def to_single(value: Any) -> float:
    """Round a number to single precision."""
    number = float(as_number(value))
    try:
        return struct.unpack("f", struct.pack("f", number))[0]
    except OverflowError:
        return math.copysign(math.inf, number)


def _require(value: Any, kind: type | tuple[type, ...], label: str) -> Any:
    if not isinstance(value, kind):
        raise DecodeError(f"Expected {label}, got {type(value).__name__}")
    return value


def _as_char(value: Any) -> str:
    text = _require(value, str, "a character")
    if len(text) != 1:
        raise DecodeError(f"Expected a single character, got {text!r}")
    return text


def _as_string_list(value: Any) -> list[str]:
    items = _require(value, list, "a list of strings")
    for item in items:
        _require(item, str, "a list of strings")
    return list(items)


def _as_uuid(value: Any) -> uuid.UUID:
    try:
        return uuid.UUID(_require(value, str, "a UUID string"))
    except ValueError as e:
        raise DecodeError(f"Invalid UUID {value!r}") from e


def _as_null(value: Any) -> None:
    raise DecodeError(f"Expected null, got {type(value).__name__}")


_COERCERS: dict[Any, Callable[[Any], Any]] = {
    FieldType.BOOLEAN: lambda v: _require(v, bool, "a boolean"),
    FieldType.INTEGER: lambda v: narrow(v, 64),
    FieldType.FLOAT: lambda v: float(as_number(v)),
    FieldType.STRING: lambda v: _require(v, str, "a string"),
    FieldType.CHAR: _as_char,
    FieldType.BYTE: lambda v: narrow(v, 8),
    FieldType.STRING_LIST: _as_string_list,
    FieldType.STRUCTURED: lambda v: _require(v, (dict, list), "a structured value"),
    FieldType.NULL: _as_null,
    bool: lambda v: _require(v, bool, "a boolean"),
    int: narrow,
    float: lambda v: float(as_number(v)),
    str: lambda v: _require(v, str, "a string"),
    list: lambda v: list(_require(v, list, "a list")),
    dict: lambda v: dict(_require(v, dict, "an object")),
    object: lambda v: v,
    uuid.UUID: _as_uuid,
}


def coerce(value: Any, target: Any = object) -> Any:
    """Coerce an already-parsed JSON value to ``target``."""
    if value is None:
        return None

    coercer = _COERCERS.get(target)
    if coercer is not None:
        return coercer(value)

    if get_origin(target) is list:
        args = get_args(target)
        item_type = args[0] if args else object
        return [coerce(item, item_type) for item in _require(value, list, "a list")]

    if isinstance(target, type) and dataclasses.is_dataclass(target):
        data = _require(value, dict, f"an object for {target.__name__}")
        try:
            return target(**data)
        except TypeError as e:
            raise DecodeError(f"Cannot build {target.__name__}: {e}") from e

    if isinstance(target, type):
        if isinstance(value, target):
            return value
        try:
            return target(value)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Cannot convert {value!r} to {target.__name__}: {e}") from e

    raise TypeError(f"Unsupported decode target: {target!r}")


def decode(raw: str | None, target: Any = object) -> Any:
    """Deserialize a raw field value, coercing it to ``target``."""
    return coerce(_loads(raw), target)


def decode_document(data: bytes | str) -> dict[str, str | None]:
    """Parse a stored document. Raises DecodeError on anything but a flat object."""
    # ValueError also covers undecodable bytes and oversized integer literals
    try:
        text = data.decode("utf-8") if isinstance(data, bytes) else data
        fields = json.loads(text)
    except (ValueError, RecursionError) as e:
        raise DecodeError(f"Malformed document: {e}") from e

    if not isinstance(fields, dict):
        raise DecodeError(f"Document must be a JSON object, got {type(fields).__name__}")
    for name, raw in fields.items():
        if raw is not None and not isinstance(raw, str):
            raise DecodeError(f"Field {name!r} holds {type(raw).__name__}, expected encoded text")
    return fields
