from __future__ import annotations

import re
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import MISSING, dataclass, field
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any

from .errors import InvalidParameter
from .types import (
    BOOLEAN,
    BUFFER,
    CANDIDATE_CLASSES,
    NULL,
    NUMBER,
    STRING,
    ArrayType,
    CandidateType,
    Combine,
    Date,
    ObjectType,
    Primitive,
    SetType,
)
from .validation import validate_attribute_name

_INDEX_RE = re.compile(r"\[(\d+)\]")


@dataclass(frozen=True)
class AttributeSpec:
    types: tuple[Any, ...]
    settings: Mapping[str, Any] = field(default_factory=dict)


def attribute(
    *types: Any,
    required: bool = False,
    default: Any = MISSING,
    force_default: bool = False,
    validate: Any = None,
    enum: Sequence[Any] | None = None,
    get: Callable[..., Any] | Sequence[Callable[..., Any]] | None = None,
    set_: Callable[..., Any] | Sequence[Callable[..., Any]] | None = None,
    alias: str | None = None,
    hash_key: bool = False,
    range_key: bool = False,
) -> AttributeSpec:
    if not types:
        raise InvalidParameter("attribute requires at least one type")
    return AttributeSpec(
        types=types,
        settings={
            "required": required,
            "default": default,
            "force_default": force_default,
            "validate": validate,
            "enum": tuple(enum) if enum is not None else None,
            "get": _hooks(get),
            "set": _hooks(set_),
            "alias": alias,
            "hash_key": hash_key,
            "range_key": range_key,
        },
    )


def _hooks(value: Any) -> tuple[Callable[..., Any], ...]:
    if value is None:
        return ()
    if callable(value):
        return (value,)
    return tuple(value)


@dataclass(frozen=True)
class AttributeDefinition:
    name: str
    types: tuple[CandidateType, ...]
    required: bool = False
    default: Any = MISSING
    force_default: bool = False
    validate: Any = None
    enum: tuple[Any, ...] | None = None
    get: tuple[Callable[..., Any], ...] = ()
    set: tuple[Callable[..., Any], ...] = ()
    alias: str | None = None
    hash_key: bool = False
    range_key: bool = False

    @property
    def native_name(self) -> str:
        return self.alias or self.name

    @property
    def has_default(self) -> bool:
        return self.default is not MISSING

    @property
    def nullable(self) -> bool:
        return NULL in self.types

    @property
    def combine(self) -> Combine | None:
        for candidate in self.types:
            if isinstance(candidate, Combine):
                return candidate
        return None


@dataclass(frozen=True)
class Timestamps:
    created_at: tuple[str, ...] = ()
    updated_at: tuple[str, ...] = ()


@dataclass(frozen=True)
class PathLookup:
    """Result of walking a dotted path through a schema.

    ``candidates`` is empty when the path runs into a free-form container.
    """

    wire_path: tuple[str, ...]
    attribute: AttributeDefinition | None
    candidates: tuple[CandidateType, ...]
    free_form: bool = False


def split_path(path: str | Sequence[str]) -> tuple[str, ...]:
    if isinstance(path, str):
        return tuple(_INDEX_RE.sub(r".\1", path).split("."))
    return tuple(str(part) for part in path)


def unknown_allowed(patterns: Sequence[str], path: str) -> bool:
    """Check a dotted path against ``save_unknown`` patterns.

    ``*`` matches exactly one segment, ``**`` matches any number of them. A
    path shorter than the pattern is allowed so parents of permitted keys
    survive.
    """
    parts = path.split(".")
    for pattern in patterns:
        pattern_parts = pattern.split(".")
        matched = True
        for index, part in enumerate(parts):
            if index >= len(pattern_parts):
                matched = pattern_parts[-1] == "**"
                break
            token = pattern_parts[index]
            if token == "**":
                break
            if token != "*" and token != part:
                matched = False
                break
        if matched:
            return True
    return False


def _timestamp_names(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def _timestamps(value: bool | Mapping[str, Any] | None) -> Timestamps:
    if not value:
        return Timestamps()
    if value is True:
        return Timestamps(created_at=("createdAt",), updated_at=("updatedAt",))
    if not isinstance(value, Mapping):
        raise InvalidParameter("timestamps must be a boolean or a mapping")
    return Timestamps(
        created_at=_timestamp_names(value.get("created_at")),
        updated_at=_timestamp_names(value.get("updated_at")),
    )


def _save_unknown(value: bool | Sequence[str]) -> tuple[str, ...]:
    if value is True:
        return ("**",)
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


_PRIMITIVE_TYPES: dict[Any, Primitive] = {
    str: STRING,
    int: NUMBER,
    float: NUMBER,
    Decimal: NUMBER,
    bytes: BUFFER,
    bytearray: BUFFER,
    bool: BOOLEAN,
    None: NULL,
    type(None): NULL,
}


def _nested_schema(schema: Schema, *, key: str) -> Schema:
    for attr in schema.values():
        if attr.hash_key or attr.range_key:
            raise InvalidParameter(f"{key}: hash_key and range_key must be at the root schema, not nested in an object or array.")
    return schema


def to_candidate(spec: Any, *, key: str) -> CandidateType:
    """Map a Python type or literal to a candidate type descriptor."""
    if isinstance(spec, CANDIDATE_CLASSES):
        if isinstance(spec, ObjectType) and spec.schema is not None:
            _nested_schema(spec.schema, key=key)
        return spec
    if _hashable(spec) and spec in _PRIMITIVE_TYPES:
        return _PRIMITIVE_TYPES[spec]
    if spec is datetime:
        return Date()
    if spec is dict:
        return ObjectType()
    if spec is list:
        return ArrayType()
    if spec is set or spec is frozenset:
        raise InvalidParameter(f"{key} with type: set requires an element type, for example {{str}}")
    if isinstance(spec, Schema):
        return ObjectType(_nested_schema(spec, key=key))
    if isinstance(spec, Mapping):
        return ObjectType(_nested_schema(Schema(spec), key=key))
    if isinstance(spec, list):
        elements = tuple(to_candidate(item, key=f"{key}.0") for item in spec)
        if any(isinstance(e, Combine) for e in elements):
            raise InvalidParameter(f"{key} contains an invalid type: Combine is not allowed inside an array")
        return ArrayType(elements)
    if isinstance(spec, (set, frozenset)):
        if len(spec) != 1:
            raise InvalidParameter(f"{key} set type must declare exactly one element type")
        (element,) = spec
        candidate = to_candidate(element, key=key)
        if not isinstance(candidate, Primitive) or candidate.tag not in {"S", "N", "B"}:
            raise InvalidParameter(f"{key} with type: {element!r} is not allowed to be a set")
        return SetType(candidate)
    raise InvalidParameter(f"{key} contains an invalid type: {spec!r}")


def _hashable(value: Any) -> bool:
    try:
        hash(value)
    except TypeError:
        return False
    return True


def _definition(key: str, spec: Any) -> AttributeDefinition:
    if isinstance(spec, AttributeDefinition):
        if spec.name != key:
            raise InvalidParameter(f"attribute definition {spec.name} registered under key {key}")
        return spec
    if isinstance(spec, AttributeSpec):
        raw_types, settings = spec.types, dict(spec.settings)
    else:
        raw_types, settings = (spec,), {}

    candidates = tuple(to_candidate(t, key=key) for t in raw_types)
    if len(candidates) > 1 and any(isinstance(c, Combine) for c in candidates):
        raise InvalidParameter("Combine type is not allowed to be used with multiple types.")

    alias = settings.get("alias")
    if alias is not None:
        validate_attribute_name(alias)
    return AttributeDefinition(name=key, types=candidates, **settings)


class Schema(Mapping[str, AttributeDefinition]):
    """An immutable description of the attributes of an item.

    Keys are the stored (wire) attribute names; each value is an
    ``AttributeDefinition`` listing the candidate types in declaration order.
    """

    def __init__(
        self,
        attributes: Mapping[str, Any],
        *,
        save_unknown: bool | Sequence[str] = False,
        timestamps: bool | Mapping[str, Any] | None = None,
    ) -> None:
        if not isinstance(attributes, Mapping):
            raise InvalidParameter("Schema initialization parameter must be a mapping.")
        if not attributes:
            raise InvalidParameter("Schema initialization parameter must not be an empty mapping.")

        stamps = _timestamps(timestamps)
        definitions: dict[str, AttributeDefinition] = {}
        for key, spec in attributes.items():
            validate_attribute_name(key)
            definitions[key] = _definition(key, spec)

        for name in stamps.created_at + stamps.updated_at:
            if name in definitions:
                raise InvalidParameter(f"Timestamp attribute {name} must not be defined in the schema.")
            definitions[name] = AttributeDefinition(name=name, types=(Date(),))

        self._attributes = MappingProxyType(definitions)
        self._save_unknown = _save_unknown(save_unknown)
        self._timestamps = stamps
        self._by_native = self._index_native_names()
        self._hash_key, self._range_key = self._key_attributes()
        self._check_combines()

    def _index_native_names(self) -> Mapping[str, AttributeDefinition]:
        by_native: dict[str, AttributeDefinition] = {}
        for attr in self._attributes.values():
            clashes = attr.alias is not None and attr.alias in self._attributes
            if attr.native_name in by_native or clashes:
                raise InvalidParameter(f"attribute name {attr.native_name} is used more than once")
            by_native[attr.native_name] = attr
        return MappingProxyType(by_native)

    def _key_attributes(self) -> tuple[AttributeDefinition, AttributeDefinition | None]:
        hash_keys = [a for a in self._attributes.values() if a.hash_key]
        range_keys = [a for a in self._attributes.values() if a.range_key]
        if len(hash_keys) > 1:
            raise InvalidParameter("Only one hash_key allowed per schema.")
        if len(range_keys) > 1:
            raise InvalidParameter("Only one range_key allowed per schema.")
        for attr in hash_keys:
            if attr.range_key:
                raise InvalidParameter(f"{attr.name} can not be both a hash_key and a range_key.")
        hash_key = hash_keys[0] if hash_keys else next(iter(self._attributes.values()))
        range_key = range_keys[0] if range_keys else None
        if range_key is hash_key:
            raise InvalidParameter(f"{hash_key.name} can not be both a hash_key and a range_key.")
        return hash_key, range_key

    def _check_combines(self) -> None:
        for attr in self._attributes.values():
            combine = attr.combine
            if combine is None:
                continue
            for source in combine.attributes:
                target = self.attribute_for(source)
                if target is None:
                    raise InvalidParameter(f"{attr.name} combines unknown attribute: {source}")
                if target.combine is not None:
                    raise InvalidParameter(f"{attr.name} can not combine another combine attribute: {source}")

    def __getitem__(self, name: str) -> AttributeDefinition:
        return self._attributes[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._attributes)

    def __len__(self) -> int:
        return len(self._attributes)

    def __repr__(self) -> str:
        return f"Schema({list(self._attributes)!r})"

    def __eq__(self, other: object) -> bool:
        return self is other

    __hash__ = object.__hash__

    @property
    def attributes(self) -> Mapping[str, AttributeDefinition]:
        return self._attributes

    @property
    def save_unknown(self) -> tuple[str, ...]:
        return self._save_unknown

    @property
    def timestamps(self) -> Timestamps:
        return self._timestamps

    @property
    def hash_key(self) -> AttributeDefinition:
        return self._hash_key

    @property
    def range_key(self) -> AttributeDefinition | None:
        return self._range_key

    @property
    def key_attributes(self) -> tuple[AttributeDefinition, ...]:
        if self._range_key is None:
            return (self._hash_key,)
        return (self._hash_key, self._range_key)

    @property
    def combine_attributes(self) -> tuple[AttributeDefinition, ...]:
        return tuple(a for a in self._attributes.values() if a.combine is not None)

    def attribute_for(self, name: str) -> AttributeDefinition | None:
        """Find an attribute by its native name, falling back to the stored name."""
        attr = self._by_native.get(name)
        if attr is not None:
            return attr
        return self._attributes.get(name)

    def allows_unknown(self, path: str) -> bool:
        return unknown_allowed(self._save_unknown, path)

    def extend(self, attributes: Mapping[str, Any]) -> Schema:
        merged: dict[str, Any] = {
            name: attr
            for name, attr in self._attributes.items()
            if name not in self._timestamps.created_at + self._timestamps.updated_at
        }
        for key, spec in attributes.items():
            if key in merged:
                raise InvalidParameter(f"attribute {key} is already defined")
            merged[key] = spec
        timestamps: dict[str, Any] | None = None
        if self._timestamps.created_at or self._timestamps.updated_at:
            timestamps = {"created_at": self._timestamps.created_at, "updated_at": self._timestamps.updated_at}
        return Schema(merged, save_unknown=self._save_unknown, timestamps=timestamps)

    def lookup(self, path: str | Sequence[str]) -> PathLookup | None:
        """Walk a dotted path (``address.street``, ``friends.0.name`` or
        ``friends[0].name``) and return the stored path and candidate types.

        Returns ``None`` when the path is not declared.
        """
        parts = split_path(path)
        if not parts or not parts[0] or parts[0].isdigit():
            return None

        attr = self.attribute_for(parts[0])
        if attr is None:
            return None
        wire: list[str] = [attr.name]
        candidates: tuple[CandidateType, ...] = attr.types

        for index, part in enumerate(parts[1:], start=1):
            if part.isdigit():
                arrays = [c for c in candidates if isinstance(c, ArrayType)]
                if any(not c.element for c in arrays):
                    return PathLookup(tuple(wire) + parts[index:], None, (), free_form=True)
                if not arrays:
                    return None
                wire.append(part)
                candidates = tuple(e for c in arrays for e in c.element)
                continue

            objects = [c for c in candidates if isinstance(c, ObjectType)]
            found: AttributeDefinition | None = None
            for candidate in objects:
                if candidate.schema is not None:
                    found = candidate.schema.attribute_for(part)
                    if found is not None:
                        break
            if found is None:
                if any(c.schema is None for c in objects):
                    return PathLookup(tuple(wire) + parts[index:], None, (), free_form=True)
                return None
            attr = found
            wire.append(found.name)
            candidates = found.types

        return PathLookup(tuple(wire), attr, candidates)
