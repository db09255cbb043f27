from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Literal

from boto3.dynamodb.types import Binary

from .errors import InvalidParameter

if TYPE_CHECKING:
    from .model import ModelRegistry
    from .schema import Schema

type Direction = Literal["to_wire", "from_wire"]

WIRE_TAGS = frozenset({"S", "N", "B", "BOOL", "NULL", "M", "L", "SS", "NS", "BS"})
SET_TAGS = frozenset({"SS", "NS", "BS"})

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class _Undefined:
    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED: Any = _Undefined()


def wire_tag_of(value: Any) -> str | None:
    if not isinstance(value, Mapping) or len(value) != 1:
        return None
    (tag,) = value.keys()
    return tag if tag in WIRE_TAGS else None


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def to_decimal(value: int | float | Decimal) -> int | Decimal:
    if isinstance(value, float):
        return Decimal(repr(value))
    return value


def from_decimal(value: Decimal) -> int | float:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def normalize_for_wire(value: Any) -> Any:
    """Turn a native value into something ``TypeSerializer`` accepts."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float):
        return to_decimal(value)
    if isinstance(value, datetime):
        return datetime_to_epoch(value, "milliseconds")
    if isinstance(value, bytearray):
        return bytes(value)
    if isinstance(value, Mapping):
        return {str(k): normalize_for_wire(v) for k, v in value.items() if v is not UNDEFINED}
    if isinstance(value, (set, frozenset)):
        if not value:
            return None
        return {normalize_for_wire(v) for v in value}
    if isinstance(value, (list, tuple)):
        return [normalize_for_wire(v) for v in value]
    return value


def normalize_from_wire(value: Any) -> Any:
    if isinstance(value, Decimal):
        return from_decimal(value)
    if isinstance(value, Binary):
        return value.value
    if isinstance(value, Mapping):
        return {k: normalize_from_wire(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return {normalize_from_wire(v) for v in value}
    if isinstance(value, list):
        return [normalize_from_wire(v) for v in value]
    return value


def datetime_to_epoch(value: datetime, storage: str) -> int:
    if value.tzinfo is None:
        value = value.astimezone(UTC)
    delta = value - _EPOCH
    if storage == "seconds":
        return round(delta / timedelta(seconds=1))
    return delta // timedelta(milliseconds=1)


def epoch_to_datetime(value: int | float | Decimal, storage: str) -> datetime:
    if storage == "seconds":
        return _EPOCH + timedelta(seconds=int(value))
    return _EPOCH + timedelta(milliseconds=int(value))


def native_type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (bytes, bytearray, Binary)):
        return "buffer"
    if isinstance(value, datetime):
        return "date"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, (set, frozenset)):
        return "set"
    return type(value).__name__


_TAG_NAMES = {
    "S": "string",
    "N": "number",
    "B": "buffer",
    "BOOL": "boolean",
    "NULL": "null",
    "M": "object",
    "L": "array",
    "SS": "string set",
    "NS": "number set",
    "BS": "buffer set",
}


def wire_type_name(value: Any) -> str:
    tag = wire_tag_of(value)
    if tag is None:
        return native_type_name(value)
    return _TAG_NAMES[tag]


@dataclass(frozen=True)
class TypeContext:
    """Everything a candidate needs to resolve lazily: the root schema, the
    model registry and the ``save_unknown`` patterns in force."""

    root: Schema
    registry: ModelRegistry | None = None
    model_name: str | None = None
    unknown_patterns: tuple[str, ...] = ()

    def enter(self, path: str, schema: Schema | None) -> TypeContext:
        if schema is None or not schema.save_unknown:
            return self
        extra = tuple(f"{path}.{pattern}" for pattern in schema.save_unknown)
        return TypeContext(
            root=self.root,
            registry=self.registry,
            model_name=self.model_name,
            unknown_patterns=self.unknown_patterns + extra,
        )

    def allows_unknown(self, path: str) -> bool:
        from .schema import unknown_allowed

        return unknown_allowed(self.unknown_patterns, path)

    def model_schema(self, name: str) -> Schema:
        if self.registry is None:
            raise InvalidParameter(f"no model registry available to resolve model: {name}")
        return self.registry.get(name).schema


@dataclass(frozen=True)
class Primitive:
    tag: Literal["S", "N", "B", "BOOL", "NULL"]

    def type_name(self, ctx: TypeContext) -> str:
        return _TAG_NAMES[self.tag]

    def wire_tag(self, ctx: TypeContext) -> str:
        return self.tag

    def accepts(self, value: Any, direction: Direction, ctx: TypeContext) -> bool:
        if direction == "from_wire":
            return wire_tag_of(value) == self.tag
        if self.tag == "S":
            return isinstance(value, str)
        if self.tag == "N":
            return is_number(value)
        if self.tag == "B":
            return isinstance(value, (bytes, bytearray, Binary))
        if self.tag == "BOOL":
            return isinstance(value, bool)
        return value is None

    def to_storage(self, value: Any, ctx: TypeContext) -> Any:
        if self.tag == "N":
            return to_decimal(value)
        if self.tag == "B" and isinstance(value, bytearray):
            return bytes(value)
        return value

    def from_storage(self, value: Any, ctx: TypeContext) -> Any:
        return normalize_from_wire(value)


STRING = Primitive("S")
NUMBER = Primitive("N")
BUFFER = Primitive("B")
BOOLEAN = Primitive("BOOL")
NULL = Primitive("NULL")


@dataclass(frozen=True)
class Date:
    """A point in time stored as integral epoch units (wire ``N``).

    Decoding always yields a timezone-aware UTC ``datetime``. A naive
    ``datetime`` is read as local time when written, so it decodes to the same
    instant but not to an equal object; pass aware values for a lossless round
    trip. Plain numbers are taken as already-stored units.
    """

    storage: Literal["milliseconds", "seconds"] = "milliseconds"

    def __post_init__(self) -> None:
        if self.storage not in {"milliseconds", "seconds"}:
            raise InvalidParameter(f"unsupported date storage: {self.storage}")

    def type_name(self, ctx: TypeContext) -> str:
        return "date"

    def wire_tag(self, ctx: TypeContext) -> str:
        return "N"

    def accepts(self, value: Any, direction: Direction, ctx: TypeContext) -> bool:
        if direction == "from_wire":
            return wire_tag_of(value) == "N"
        return isinstance(value, datetime) or is_number(value)

    def to_storage(self, value: Any, ctx: TypeContext) -> Any:
        if isinstance(value, datetime):
            return datetime_to_epoch(value, self.storage)
        return to_decimal(value)

    def from_storage(self, value: Any, ctx: TypeContext) -> Any:
        return epoch_to_datetime(value, self.storage)


@dataclass(frozen=True)
class Combine:
    attributes: tuple[str, ...]
    separator: str = ","

    def __init__(self, attributes: Sequence[str], separator: str = ",") -> None:
        if isinstance(attributes, str) or not attributes:
            raise InvalidParameter("Combine requires a non-empty list of attributes")
        object.__setattr__(self, "attributes", tuple(attributes))
        object.__setattr__(self, "separator", separator)

    def type_name(self, ctx: TypeContext) -> str:
        return "combine"

    def wire_tag(self, ctx: TypeContext) -> str:
        return "S"

    def accepts(self, value: Any, direction: Direction, ctx: TypeContext) -> bool:
        if direction == "from_wire":
            return wire_tag_of(value) == "S"
        return isinstance(value, str)

    def to_storage(self, value: Any, ctx: TypeContext) -> Any:
        return value

    def from_storage(self, value: Any, ctx: TypeContext) -> Any:
        return value


@dataclass(frozen=True)
class Constant:
    value: str | int | float | Decimal | bool

    def __post_init__(self) -> None:
        if not isinstance(self.value, (str, bool)) and not is_number(self.value):
            raise InvalidParameter(f"constant value must be a string, number or boolean: {self.value!r}")

    def _kind(self) -> str:
        return native_type_name(self.value)

    def type_name(self, ctx: TypeContext) -> str:
        return f"constant {self._kind()} ({self.value})"

    def wire_tag(self, ctx: TypeContext) -> str:
        return {"string": "S", "boolean": "BOOL", "number": "N"}[self._kind()]

    def accepts(self, value: Any, direction: Direction, ctx: TypeContext) -> bool:
        if direction == "from_wire":
            if wire_tag_of(value) != self.wire_tag(ctx):
                return False
            (raw,) = value.values()
            if self._kind() == "number":
                return Decimal(raw) == Decimal(str(self.value))
            return raw == self.value
        return native_type_name(value) == self._kind() and value == self.value

    def to_storage(self, value: Any, ctx: TypeContext) -> Any:
        return to_decimal(value) if self._kind() == "number" else value

    def from_storage(self, value: Any, ctx: TypeContext) -> Any:
        return normalize_from_wire(value)


@dataclass(frozen=True)
class ObjectType:
    schema: Schema | None = None

    def type_name(self, ctx: TypeContext) -> str:
        return "object"

    def wire_tag(self, ctx: TypeContext) -> str:
        return "M"

    def accepts(self, value: Any, direction: Direction, ctx: TypeContext) -> bool:
        if direction == "from_wire":
            return wire_tag_of(value) == "M"
        return isinstance(value, Mapping)

    def to_storage(self, value: Any, ctx: TypeContext) -> Any:
        return normalize_for_wire(dict(value))

    def from_storage(self, value: Any, ctx: TypeContext) -> Any:
        return normalize_from_wire(value)


@dataclass(frozen=True)
class ArrayType:
    element: tuple[CandidateType, ...] = ()

    def type_name(self, ctx: TypeContext) -> str:
        return "array"

    def wire_tag(self, ctx: TypeContext) -> str:
        return "L"

    def accepts(self, value: Any, direction: Direction, ctx: TypeContext) -> bool:
        if direction == "from_wire":
            return wire_tag_of(value) == "L"
        return isinstance(value, (list, tuple))

    def to_storage(self, value: Any, ctx: TypeContext) -> Any:
        return normalize_for_wire(list(value))

    def from_storage(self, value: Any, ctx: TypeContext) -> Any:
        return normalize_from_wire(value)


@dataclass(frozen=True)
class SetType:
    element: Primitive

    def __post_init__(self) -> None:
        if not isinstance(self.element, Primitive) or self.element.tag not in {"S", "N", "B"}:
            raise InvalidParameter(f"set element must be a string, number or buffer type: {self.element!r}")

    def type_name(self, ctx: TypeContext) -> str:
        return f"{self.element.type_name(ctx)} set"

    def wire_tag(self, ctx: TypeContext) -> str:
        return f"{self.element.tag}S"

    def accepts(self, value: Any, direction: Direction, ctx: TypeContext) -> bool:
        if direction == "from_wire":
            tag = wire_tag_of(value)
            return tag == self.wire_tag(ctx) or tag == "NULL"
        if isinstance(value, (set, frozenset)):
            return all(self.element.accepts(v, direction, ctx) for v in value)
        if isinstance(value, (list, tuple)):
            if not all(self.element.accepts(v, direction, ctx) for v in value):
                return False
            return len({normalize_for_wire(v) for v in value}) == len(value)
        return False

    def to_storage(self, value: Any, ctx: TypeContext) -> Any:
        if not value:
            return None
        return {self.element.to_storage(v, ctx) for v in value}

    def from_storage(self, value: Any, ctx: TypeContext) -> Any:
        if value is None:
            return set()
        return {self.element.from_storage(v, ctx) for v in value}


@dataclass(frozen=True)
class _Reference:
    def target(self, ctx: TypeContext) -> Schema:
        raise NotImplementedError

    def wire_tag(self, ctx: TypeContext) -> str:
        target = self.target(ctx)
        if target.range_key is not None:
            return "M"
        return target.hash_key.types[0].wire_tag(ctx)

    def accepts(self, value: Any, direction: Direction, ctx: TypeContext) -> bool:
        if direction == "from_wire":
            return wire_tag_of(value) == self.wire_tag(ctx)
        target = self.target(ctx)
        keys = [target.hash_key] + ([target.range_key] if target.range_key is not None else [])
        if isinstance(value, Mapping):
            return all(_pick_key(value, attr) is not None for attr in keys)
        if target.range_key is not None:
            return False
        return any(c.accepts(value, "to_wire", ctx) for c in target.hash_key.types)

    def to_storage(self, value: Any, ctx: TypeContext) -> Any:
        target = self.target(ctx)
        if target.range_key is not None:
            return {
                attr.name: normalize_for_wire(_pick_key(value, attr))
                for attr in (target.hash_key, target.range_key)
            }
        if isinstance(value, Mapping):
            value = _pick_key(value, target.hash_key)
        for candidate in target.hash_key.types:
            if candidate.accepts(value, "to_wire", ctx):
                return candidate.to_storage(value, ctx)
        return normalize_for_wire(value)

    def from_storage(self, value: Any, ctx: TypeContext) -> Any:
        return normalize_from_wire(value)


def _pick_key(value: Mapping[str, Any], attr: Any) -> Any:
    if attr.native_name in value:
        return value[attr.native_name]
    return value.get(attr.name)


@dataclass(frozen=True)
class SelfReference(_Reference):
    def type_name(self, ctx: TypeContext) -> str:
        return ctx.model_name or "self"

    def target(self, ctx: TypeContext) -> Schema:
        return ctx.root


@dataclass(frozen=True)
class ModelReference(_Reference):
    model: str = field(default="")

    def __post_init__(self) -> None:
        if not self.model:
            raise InvalidParameter("ModelReference requires a model name")

    def type_name(self, ctx: TypeContext) -> str:
        return self.model

    def target(self, ctx: TypeContext) -> Schema:
        return ctx.model_schema(self.model)


SELF = SelfReference()

type CandidateType = (
    Primitive | Date | Combine | Constant | ObjectType | ArrayType | SetType | SelfReference | ModelReference
)

CANDIDATE_CLASSES: tuple[type, ...] = (
    Primitive,
    Date,
    Combine,
    Constant,
    ObjectType,
    ArrayType,
    SetType,
    SelfReference,
    ModelReference,
)

CONTAINER_CLASSES: tuple[type, ...] = (ObjectType, ArrayType, SetType)
