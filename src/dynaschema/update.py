from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import MISSING
from datetime import UTC, datetime
from itertools import pairwise
from typing import Any

from .errors import InvalidParameter, TypeMismatch, UnknownAttribute, ValidationError
from .marshaller import UPDATE, Marshaller, combine_value, encode_plain, encode_value, evaluate_default, is_absent
from .model import ModelDefinition, ModelRegistry, context_for
from .placeholders import PlaceholderTable
from .resolver import resolve
from .schema import AttributeDefinition, PathLookup, Schema, split_path
from .types import (
    NUMBER,
    UNDEFINED,
    ArrayType,
    CandidateType,
    SetType,
    TypeContext,
    native_type_name,
)
from .validation import validate_expression

log = logging.getLogger(__name__)

BUCKETS = ("$SET", "$ADD", "$REMOVE", "$DELETE")
CLAUSE_ORDER = ("ADD", "REMOVE", "SET", "DELETE")


def _entries(update: Mapping[str, Any]) -> Iterator[tuple[str, str, Any]]:
    for key, value in update.items():
        if key in BUCKETS:
            if key == "$REMOVE" and not isinstance(value, Mapping):
                names = [value] if isinstance(value, str) else value
                for name in names:
                    yield "$REMOVE", name, None
                continue
            if not isinstance(value, Mapping):
                raise InvalidParameter(f"{key} must map attribute names to values")
            for name, item in value.items():
                if key == "$SET" and item is UNDEFINED:
                    yield "$REMOVE", name, UNDEFINED
                else:
                    yield key, name, item
        elif key.startswith("$"):
            raise InvalidParameter(f"unknown update operator: {key}")
        elif value is UNDEFINED:
            yield "$REMOVE", key, UNDEFINED
        else:
            yield "$SET", key, value


def _as_collection(value: Any, candidates: tuple[CandidateType, ...]) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return value
    if any(isinstance(c, SetType) for c in candidates):
        return {value}
    if any(isinstance(c, ArrayType) for c in candidates):
        return [value]
    return value


class UpdateCompiler:
    """Compiles one partial update into ``ADD``/``REMOVE``/``SET``/``DELETE``
    clauses. One instance per update; it owns the clause lists."""

    def __init__(self, ctx: TypeContext, table: PlaceholderTable) -> None:
        self._ctx = ctx
        self._schema = ctx.root
        self._table = table
        self._marshaller = Marshaller(ctx, UPDATE)
        self._clauses: dict[str, list[str]] = {clause: [] for clause in CLAUSE_ORDER}
        self._natives: dict[str, Any] = {}
        self._removed: set[str] = set()
        self._touched: set[str] = set()
        self._supplied_combines: set[str] = set()

    async def compile(self, update: Mapping[str, Any]) -> str:
        if not isinstance(update, Mapping):
            raise InvalidParameter(f"update must be a mapping, got {type(update).__name__}")

        for bucket, key, value in _entries(update):
            if len(split_path(key)) > 1:
                await self._nested(bucket, key, value)
                continue
            attr = self._schema.attribute_for(key)
            if attr is None:
                self._unknown(bucket, key, value)
                continue
            self._check_key(attr)
            self._touched.add(attr.name)

            if attr.combine is not None and bucket == "$SET":
                self._supplied_combines.add(attr.name)
                continue
            if bucket == "$SET":
                await self._set(attr, value)
            elif bucket == "$REMOVE":
                await self._remove(attr, sentinel=value is UNDEFINED)
            elif bucket == "$ADD":
                self._add(attr.name, attr.name, attr.types, value)
            else:
                self._delete(attr.name, attr.name, attr.types, value)

        self._recompute_combines()
        await self._apply_force_defaults()
        self._apply_timestamps()

        parts = [f"{clause} {', '.join(self._clauses[clause])}" for clause in CLAUSE_ORDER if self._clauses[clause]]
        if not parts:
            raise ValidationError("no updates provided")
        expression = " ".join(parts)
        validate_expression(expression)
        log.debug("compiled update: %s", expression)
        return expression

    def _check_key(self, attr: AttributeDefinition) -> None:
        if any(attr is k for k in self._schema.key_attributes):
            raise InvalidParameter(f"cannot update key attribute: {attr.name}")

    def _emit_set(self, attr: AttributeDefinition, attribute_value: dict[str, Any]) -> None:
        self._emit_set_path(attr.name, attribute_value)

    def _emit_set_path(self, wire_path: str | Sequence[str], attribute_value: dict[str, Any]) -> None:
        name = self._table.name(wire_path)
        self._clauses["SET"].append(f"{name} = {self._table.value(attribute_value)}")

    async def _nested(self, bucket: str, key: str, value: Any) -> None:
        """Update one document path such as ``address.city`` or ``reps[0].name``."""
        parts = split_path(key)
        path = ".".join(parts)
        root = self._schema.attribute_for(parts[0])
        if root is not None:
            self._check_key(root)
            self._touched.add(root.name)
        if bucket == "$REMOVE" and value is not UNDEFINED:
            if any(a.isdigit() and not b.isdigit() for a, b in pairwise(parts)):
                raise InvalidParameter(
                    f"cannot remove {path}: properties of objects inside a list can not be removed, "
                    "set the whole list element instead"
                )

        lookup = self._schema.lookup(parts)
        if lookup is None:
            if not self._ctx.allows_unknown(path):
                raise UnknownAttribute(path=path)
            lookup = PathLookup(parts, None, ())
        attr = lookup.attribute
        # an indexed path addresses a list element, not the attribute itself
        if attr is not None and lookup.wire_path[-1] != attr.name:
            attr = None

        if attr is None and not lookup.candidates:
            self._free_form(bucket, path, lookup.wire_path, value)
        elif bucket == "$SET":
            await self._set_path(lookup, attr, path, value)
        elif bucket == "$REMOVE":
            await self._remove_path(lookup, attr, path, sentinel=value is UNDEFINED)
        elif bucket == "$ADD":
            self._add(path, lookup.wire_path, lookup.candidates, value)
        else:
            self._delete(path, lookup.wire_path, lookup.candidates, value)

    async def _set_path(self, lookup: PathLookup, attr: AttributeDefinition | None, path: str, value: Any) -> None:
        if attr is None:
            if value is None:
                self._clauses["REMOVE"].append(self._table.name(lookup.wire_path))
                return
            self._emit_set_path(lookup.wire_path, encode_value(value, lookup.candidates, path=path, ctx=self._ctx))
            return
        if is_absent(attr, value) and not (attr.force_default and attr.has_default):
            await self._remove_path(lookup, attr, path, sentinel=False)
            return
        prepared = await self._marshaller.prepare(attr, value, path, present=True, nested=True)
        if prepared is MISSING:
            self._clauses["REMOVE"].append(self._table.name(lookup.wire_path))
            return
        self._emit_set_path(lookup.wire_path, await self._marshaller.attribute_to_wire(attr, prepared, path, self._ctx))

    async def _remove_path(
        self, lookup: PathLookup, attr: AttributeDefinition | None, path: str, *, sentinel: bool
    ) -> None:
        if attr is not None:
            if not sentinel and attr.has_default:
                value = await evaluate_default(attr)
                if not is_absent(attr, value):
                    await self._set_path(lookup, attr, path, value)
                    return
            if attr.required:
                raise ValidationError(f"{path} is a required property but has no value when trying to save item")
        self._clauses["REMOVE"].append(self._table.name(lookup.wire_path))

    async def _set(self, attr: AttributeDefinition, value: Any) -> None:
        if is_absent(attr, value) and not (attr.force_default and attr.has_default):
            await self._remove(attr, sentinel=False)
            return
        await self._emit_value(attr, value)

    async def _emit_value(self, attr: AttributeDefinition, value: Any) -> None:
        prepared = await self._marshaller.prepare(attr, value, attr.name, present=True, nested=False)
        if prepared is MISSING:
            self._emit_remove(attr)
            return
        self._natives[attr.name] = prepared
        self._emit_set(attr, await self._marshaller.attribute_to_wire(attr, prepared, attr.name, self._ctx))

    async def _remove(self, attr: AttributeDefinition, *, sentinel: bool) -> None:
        if not sentinel and attr.has_default:
            value = await evaluate_default(attr)
            if not is_absent(attr, value):
                await self._emit_value(attr, value)
                return
        if attr.required:
            raise ValidationError(f"{attr.name} is a required property but has no value when trying to save item")
        self._emit_remove(attr)

    def _emit_remove(self, attr: AttributeDefinition) -> None:
        self._removed.add(attr.name)
        self._clauses["REMOVE"].append(self._table.name(attr.name))

    def _add(
        self, path: str, wire_path: str | Sequence[str], candidates: tuple[CandidateType, ...], value: Any
    ) -> None:
        value = _as_collection(value, candidates)
        addable = tuple(c for c in candidates if isinstance(c, (ArrayType, SetType)) or c == NUMBER)
        if not addable:
            raise TypeMismatch(
                path=path,
                expected=["number", "set", "array"],
                actual=native_type_name(value),
            )
        chosen = resolve(value, addable, "to_wire", path=path, ctx=self._ctx)
        if isinstance(chosen, (ArrayType, SetType)) and not value:
            return
        name = self._table.name(wire_path)
        if isinstance(chosen, ArrayType):
            token = self._table.value(encode_plain(chosen, list(value), path=path, ctx=self._ctx))
            self._clauses["SET"].append(f"{name} = list_append({name}, {token})")
            return
        token = self._table.value(encode_plain(chosen, value, path=path, ctx=self._ctx))
        self._clauses["ADD"].append(f"{name} {token}")

    def _delete(
        self, path: str, wire_path: str | Sequence[str], candidates: tuple[CandidateType, ...], value: Any
    ) -> None:
        sets = tuple(c for c in candidates if isinstance(c, SetType))
        if not sets:
            raise TypeMismatch(
                path=path,
                expected=[c.type_name(self._ctx) for c in candidates],
                actual="set",
            )
        if not isinstance(value, (list, tuple, set, frozenset)):
            value = {value}
        chosen = resolve(value, sets, "to_wire", path=path, ctx=self._ctx)
        if not value:
            return
        name = self._table.name(wire_path)
        token = self._table.value(encode_plain(chosen, value, path=path, ctx=self._ctx))
        self._clauses["DELETE"].append(f"{name} {token}")

    def _unknown(self, bucket: str, key: str, value: Any) -> None:
        if not self._ctx.allows_unknown(key):
            raise UnknownAttribute(path=key)
        self._free_form(bucket, key, key, value)

    def _free_form(self, bucket: str, path: str, wire_path: str | Sequence[str], value: Any) -> None:
        name = self._table.name(wire_path)
        if bucket == "$REMOVE" or (bucket == "$SET" and value is None):
            self._clauses["REMOVE"].append(name)
            return

        if bucket == "$SET":
            self._clauses["SET"].append(f"{name} = {self._table.value(self._marshaller.serialize_unknown(value))}")
        elif bucket == "$ADD" and isinstance(value, (list, tuple)):
            token = self._table.value(self._marshaller.serialize_unknown(list(value)))
            self._clauses["SET"].append(f"{name} = list_append({name}, {token})")
        elif bucket == "$ADD" and (isinstance(value, (set, frozenset)) or native_type_name(value) == "number"):
            self._clauses["ADD"].append(f"{name} {self._table.value(self._marshaller.serialize_unknown(value))}")
        elif bucket == "$DELETE" and isinstance(value, (set, frozenset)):
            self._clauses["DELETE"].append(f"{name} {self._table.value(self._marshaller.serialize_unknown(value))}")
        else:
            raise TypeMismatch(
                path=path,
                expected=["number", "set", "array"] if bucket == "$ADD" else ["set"],
                actual=native_type_name(value),
            )

    def _recompute_combines(self) -> None:
        for attr in self._schema.combine_attributes:
            combine = attr.combine
            if combine is None:
                continue
            sources = [self._schema.attribute_for(s) for s in combine.attributes]
            names = [s.name for s in sources if s is not None]
            supplied = attr.name in self._supplied_combines
            if not supplied and not any(n in self._touched for n in names):
                continue
            if names and all(n in self._removed for n in names):
                if attr.name not in self._removed:
                    self._emit_remove(attr)
                continue
            missing = [
                declared
                for declared, source in zip(combine.attributes, sources, strict=True)
                if source is None or source.name not in self._natives
            ]
            if missing:
                raise InvalidParameter(
                    f"You must update all or none of the combine attributes when updating {attr.name}. "
                    f"Missing combine attributes: {', '.join(missing)}."
                )
            joined = combine_value(self._schema, attr, self._natives, supplied=False)
            self._emit_set(attr, {"S": joined})

    async def _apply_force_defaults(self) -> None:
        for attr in self._schema.values():
            if not (attr.force_default and attr.has_default) or attr.name in self._touched:
                continue
            if attr.combine is not None or any(attr is k for k in self._schema.key_attributes):
                continue
            self._touched.add(attr.name)
            await self._set(attr, await evaluate_default(attr))

    def _apply_timestamps(self) -> None:
        now = datetime.now(UTC)
        for name in self._schema.timestamps.updated_at:
            if name in self._touched:
                continue
            attr = self._schema[name]
            self._emit_set(attr, encode_plain(attr.types[0], now, path=name, ctx=self._ctx))


async def render_update(
    schema: Schema | ModelDefinition,
    update: Mapping[str, Any],
    table: PlaceholderTable,
    *,
    registry: ModelRegistry | None = None,
) -> str:
    ctx = context_for(schema, registry)
    return await UpdateCompiler(ctx, table).compile(update)


async def compile_update(
    schema: Schema | ModelDefinition,
    update: Mapping[str, Any],
    *,
    registry: ModelRegistry | None = None,
) -> dict[str, Any]:
    """Compile a flattened or ``$SET``/``$ADD``/``$REMOVE``/``$DELETE`` update.

    Returns ``UpdateExpression`` plus the placeholder maps.
    """
    table = PlaceholderTable()
    expression = await render_update(schema, update, table, registry=registry)
    return table.attach({"UpdateExpression": expression})


def compile_update_sync(
    schema: Schema | ModelDefinition,
    update: Mapping[str, Any],
    *,
    registry: ModelRegistry | None = None,
) -> dict[str, Any]:
    return asyncio.run(compile_update(schema, update, registry=registry))
