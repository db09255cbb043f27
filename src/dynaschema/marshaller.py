from __future__ import annotations

import asyncio
import copy
import inspect
import logging
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import MISSING, dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

from .errors import InvalidParameter, ValidationError
from .model import ModelDefinition, ModelRegistry, context_for
from .resolver import resolve
from .schema import AttributeDefinition, Schema
from .types import (
    UNDEFINED,
    ArrayType,
    CandidateType,
    ObjectType,
    TypeContext,
    normalize_for_wire,
    normalize_from_wire,
    wire_tag_of,
)

log = logging.getLogger(__name__)

_SERIALIZER = TypeSerializer()


@dataclass(frozen=True)
class MarshalOptions:
    defaults: bool = False
    force_default: bool = False
    validate: bool = False
    required: bool | Literal["nested"] = False
    enum: bool = False
    combine: bool = False
    modifiers: tuple[str, ...] = ()
    save_unknown: bool = False
    check_expired: bool = False
    update_timestamps: bool = False


SAVE = MarshalOptions(
    defaults=True,
    force_default=True,
    validate=True,
    required=True,
    enum=True,
    combine=True,
    modifiers=("set",),
    save_unknown=True,
    update_timestamps=True,
)
READ = MarshalOptions(modifiers=("get",), save_unknown=True, check_expired=True)
VALUE = MarshalOptions()
UPDATE = MarshalOptions(
    force_default=True,
    validate=True,
    required="nested",
    enum=True,
    modifiers=("set",),
    save_unknown=True,
)


async def call_hook(hook: Callable[..., Any], *args: Any) -> Any:
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def evaluate_default(attr: AttributeDefinition) -> Any:
    if callable(attr.default):
        return await call_hook(attr.default)
    return copy.deepcopy(attr.default)


def pick(obj: Mapping[str, Any], attr: AttributeDefinition) -> tuple[str | None, Any]:
    if attr.native_name in obj:
        return attr.native_name, obj[attr.native_name]
    if attr.name in obj:
        return attr.name, obj[attr.name]
    return None, MISSING


def join_path(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else key


def is_absent(attr: AttributeDefinition, value: Any) -> bool:
    return value is MISSING or (value is None and not attr.nullable)


def _combine_part(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def combine_value(
    schema: Schema, attr: AttributeDefinition, natives: Mapping[str, Any], *, supplied: bool
) -> str | None:
    """Join the source values of a combine attribute.

    ``natives`` is keyed by stored attribute name. A supplied combine value is
    only accepted when every source is present; it is then replaced by the
    recomputed value.
    """
    combine = attr.combine
    if combine is None:
        raise InvalidParameter(f"{attr.name} is not a combine attribute")
    present: list[Any] = []
    missing: list[str] = []
    for source in combine.attributes:
        source_attr = schema.attribute_for(source)
        if source_attr is None or source_attr.name not in natives:
            missing.append(source)
        else:
            present.append(natives[source_attr.name])
    if missing and supplied:
        raise InvalidParameter(
            f"You must provide all combine attributes for {attr.name}. Missing combine attributes: {', '.join(missing)}."
        )
    if not present:
        return None
    return combine.separator.join(_combine_part(v) for v in present)


def encode_plain(candidate: CandidateType, value: Any, *, path: str, ctx: TypeContext) -> dict[str, Any]:
    """Encode a value against an already resolved candidate without running hooks."""
    if isinstance(candidate, ObjectType) and candidate.schema is not None:
        nested = ctx.enter(path, candidate.schema)
        out: dict[str, Any] = {}
        consumed: set[str] = set()
        for attr in candidate.schema.values():
            key, item = pick(value, attr)
            if key is not None:
                consumed.add(key)
            if item is UNDEFINED or is_absent(attr, item):
                continue
            item_path = join_path(path, attr.name)
            chosen = resolve(item, attr.types, "to_wire", path=item_path, ctx=nested)
            out[attr.name] = encode_plain(chosen, item, path=item_path, ctx=nested)
        for key, item in value.items():
            if key not in consumed and item is not UNDEFINED and nested.allows_unknown(join_path(path, key)):
                out[key] = _SERIALIZER.serialize(normalize_for_wire(item))
        return {"M": out}
    if isinstance(candidate, ArrayType) and candidate.element:
        items = []
        for index, item in enumerate(value):
            item_path = f"{path}.{index}"
            chosen = resolve(item, candidate.element, "to_wire", path=item_path, ctx=ctx)
            items.append(encode_plain(chosen, item, path=item_path, ctx=ctx))
        return {"L": items}
    return _SERIALIZER.serialize(candidate.to_storage(value, ctx))


def encode_value(
    value: Any, candidates: Sequence[CandidateType], *, path: str, ctx: TypeContext
) -> dict[str, Any]:
    """Encode a bare value (condition operand, update value) for the attribute
    whose candidate types are given; undeclared attributes encode generically."""
    if not candidates:
        return _SERIALIZER.serialize(normalize_for_wire(value))
    chosen = resolve(value, candidates, "to_wire", path=path, ctx=ctx)
    return encode_plain(chosen, value, path=path, ctx=ctx)


def is_wire_object(value: Any) -> bool | None:
    """``None`` for an empty mapping, otherwise whether every value is a wire
    attribute value."""
    if not isinstance(value, Mapping):
        return False
    if not value:
        return None
    return all(_is_attribute_value(v) for v in value.values())


def _is_attribute_value(value: Any) -> bool:
    tag = wire_tag_of(value)
    if tag is None:
        return False
    inner = value[tag]
    if tag == "M":
        return isinstance(inner, Mapping) and all(_is_attribute_value(v) for v in inner.values())
    if tag == "L":
        return isinstance(inner, list) and all(_is_attribute_value(v) for v in inner)
    return True


class Marshaller:
    """Walks a schema converting items between native and wire shape.

    Hooks (``default``, ``set``, ``get``, ``validate``) are awaited one at a
    time in attribute declaration order.
    """

    def __init__(self, ctx: TypeContext, options: MarshalOptions) -> None:
        self._ctx = ctx
        self._options = options
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    @property
    def options(self) -> MarshalOptions:
        return self._options

    def required(self, attr: AttributeDefinition, *, present: bool, nested: bool) -> bool:
        if not attr.required:
            return False
        if self._options.required == "nested":
            return nested or present
        return bool(self._options.required)

    async def prepare(self, attr: AttributeDefinition, value: Any, path: str, *, present: bool, nested: bool) -> Any:
        """Apply removal, defaults, required and ``set`` hooks; ``MISSING`` means omit."""
        opts = self._options
        if value is UNDEFINED:
            if self.required(attr, present=True, nested=nested):
                raise ValidationError(f"{path} is a required property but has no value when trying to save item")
            return MISSING

        if opts.force_default and attr.force_default and attr.has_default:
            value = await evaluate_default(attr)
        elif is_absent(attr, value) and opts.defaults and attr.has_default:
            value = await evaluate_default(attr)

        if is_absent(attr, value):
            if self.required(attr, present=present, nested=nested):
                raise ValidationError(f"{path} is a required property but has no value when trying to save item")
            return MISSING

        if "set" in opts.modifiers:
            for hook in attr.set:
                value = await call_hook(hook, value)
        return value

    async def attribute_to_wire(self, attr: AttributeDefinition, value: Any, path: str, ctx: TypeContext) -> dict[str, Any]:
        candidate = resolve(value, attr.types, "to_wire", path=path, ctx=ctx)
        if self._options.validate and attr.validate is not None:
            await self._validate(attr, value, path)
        if self._options.enum and attr.enum is not None and value not in attr.enum:
            raise ValidationError(f"{path} must equal {list(attr.enum)!r}, but is set to {value!r}")
        return await self._encode(candidate, value, path, ctx)

    async def _validate(self, attr: AttributeDefinition, value: Any, path: str) -> None:
        rule = attr.validate
        if isinstance(rule, re.Pattern):
            ok = isinstance(value, str) and rule.search(value) is not None
        elif callable(rule):
            ok = await call_hook(rule, value)
        else:
            ok = value == rule
        if not ok:
            raise ValidationError(f"{path} with a value of {value!r} had a validation error when trying to save the item")

    async def _encode(self, candidate: CandidateType, value: Any, path: str, ctx: TypeContext) -> dict[str, Any]:
        if isinstance(candidate, ObjectType) and candidate.schema is not None:
            return {"M": await self.object_to_wire(candidate.schema, value, path, ctx)}
        if isinstance(candidate, ArrayType) and candidate.element:
            items = []
            for index, item in enumerate(value):
                item_path = f"{path}.{index}"
                chosen = resolve(item, candidate.element, "to_wire", path=item_path, ctx=ctx)
                items.append(await self._encode(chosen, item, item_path, ctx))
            return {"L": items}
        return self._serializer.serialize(candidate.to_storage(value, ctx))

    def serialize_unknown(self, value: Any) -> dict[str, Any]:
        return self._serializer.serialize(normalize_for_wire(value))

    async def object_to_wire(self, schema: Schema, obj: Mapping[str, Any], prefix: str, ctx: TypeContext) -> dict[str, Any]:
        if prefix:
            ctx = ctx.enter(prefix, schema)
        opts = self._options
        out: dict[str, Any] = {}
        natives: dict[str, Any] = {}
        consumed: set[str] = set()

        for attr in schema.values():
            path = join_path(prefix, attr.name)
            key, value = pick(obj, attr)
            if key is not None:
                consumed.add(key)
            if opts.combine and attr.combine is not None:
                continue
            value = await self.prepare(attr, value, path, present=key is not None, nested=bool(prefix))
            if value is MISSING:
                continue
            natives[attr.name] = value
            out[attr.name] = await self.attribute_to_wire(attr, value, path, ctx)

        if opts.combine:
            for attr in schema.combine_attributes:
                _, supplied = pick(obj, attr)
                joined = combine_value(schema, attr, natives, supplied=not is_absent(attr, supplied) and supplied is not UNDEFINED)
                if joined is not None:
                    out[attr.name] = self._serializer.serialize(joined)

        if opts.save_unknown:
            for key, value in obj.items():
                if key in consumed or value is UNDEFINED:
                    continue
                if ctx.allows_unknown(join_path(prefix, key)):
                    out[key] = self.serialize_unknown(value)
        return out

    async def _decode(self, candidate: CandidateType, av: Mapping[str, Any], path: str, ctx: TypeContext) -> Any:
        if isinstance(candidate, ObjectType) and candidate.schema is not None:
            return await self.object_from_wire(candidate.schema, av["M"], path, ctx)
        if isinstance(candidate, ArrayType) and candidate.element:
            values = []
            for index, item in enumerate(av["L"]):
                item_path = f"{path}.{index}"
                chosen = resolve(item, candidate.element, "from_wire", path=item_path, ctx=ctx)
                values.append(await self._decode(chosen, item, item_path, ctx))
            return values
        return candidate.from_storage(self._deserializer.deserialize(av), ctx)

    async def object_from_wire(self, schema: Schema, item: Mapping[str, Any], prefix: str, ctx: TypeContext) -> dict[str, Any]:
        if prefix:
            ctx = ctx.enter(prefix, schema)
        opts = self._options
        out: dict[str, Any] = {}

        for attr in schema.values():
            path = join_path(prefix, attr.name)
            av = item.get(attr.name, MISSING)
            if av is MISSING:
                if opts.defaults and attr.has_default:
                    out[attr.native_name] = await evaluate_default(attr)
                continue
            candidate = resolve(av, attr.types, "from_wire", path=path, ctx=ctx)
            value = await self._decode(candidate, av, path, ctx)
            if "get" in opts.modifiers:
                for hook in attr.get:
                    value = await call_hook(hook, value)
            out[attr.native_name] = value

        if opts.save_unknown:
            for key, av in item.items():
                if key in schema.attributes:
                    continue
                if ctx.allows_unknown(join_path(prefix, key)):
                    out[key] = normalize_from_wire(self._deserializer.deserialize(av))
        return out


def _stamp(schema: Schema, obj: Mapping[str, Any]) -> dict[str, Any]:
    now = datetime.now(UTC)
    stamped = dict(obj)
    for name in schema.timestamps.created_at:
        if stamped.get(name) is None:
            stamped[name] = now
    for name in schema.timestamps.updated_at:
        stamped[name] = now
    return stamped


async def to_wire(
    obj: Mapping[str, Any],
    schema: Schema | ModelDefinition,
    options: MarshalOptions = SAVE,
    *,
    registry: ModelRegistry | None = None,
) -> dict[str, Any]:
    """Convert a native item into a wire attribute map."""
    if not isinstance(obj, Mapping):
        raise InvalidParameter(f"to_wire expects a mapping, got {type(obj).__name__}")
    ctx = context_for(schema, registry)
    if options.update_timestamps:
        obj = _stamp(ctx.root, obj)
    return await Marshaller(ctx, options).object_to_wire(ctx.root, obj, "", ctx)


async def from_wire(
    item: Mapping[str, Any],
    schema: Schema | ModelDefinition,
    options: MarshalOptions = READ,
    *,
    registry: ModelRegistry | None = None,
) -> dict[str, Any] | None:
    """Convert a wire attribute map into a native item.

    Returns ``None`` for an expired item when the model does not return
    expired items.
    """
    if not isinstance(item, Mapping):
        raise InvalidParameter(f"from_wire expects a mapping, got {type(item).__name__}")
    if (
        options.check_expired
        and isinstance(schema, ModelDefinition)
        and schema.expires is not None
        and not schema.expires.return_expired
        and schema.is_expired(item)
    ):
        log.debug("dropping expired %s item", schema.name)
        return None
    ctx = context_for(schema, registry)
    return await Marshaller(ctx, options).object_from_wire(ctx.root, item, "", ctx)


def to_wire_sync(
    obj: Mapping[str, Any],
    schema: Schema | ModelDefinition,
    options: MarshalOptions = SAVE,
    *,
    registry: ModelRegistry | None = None,
) -> dict[str, Any]:
    return asyncio.run(to_wire(obj, schema, options, registry=registry))


def from_wire_sync(
    item: Mapping[str, Any],
    schema: Schema | ModelDefinition,
    options: MarshalOptions = READ,
    *,
    registry: ModelRegistry | None = None,
) -> dict[str, Any] | None:
    return asyncio.run(from_wire(item, schema, options, registry=registry))
