"""Pure builders for DynamoDB request dictionaries.

Nothing here performs I/O: each builder returns the keyword arguments a
boto3 client call expects, with every expression sharing one placeholder
table per request.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from .condition import Condition, ConditionNode, render_condition
from .errors import InvalidParameter, UnknownAttribute, ValidationError
from .marshaller import READ, SAVE, MarshalOptions, encode_value, from_wire, pick, to_wire
from .model import ModelDefinition, ModelRegistry
from .placeholders import PlaceholderTable
from .schema import split_path
from .update import render_update

type ConditionLike = Condition | ConditionNode


def _key(model: ModelDefinition, key: Any, registry: ModelRegistry | None) -> dict[str, Any]:
    schema = model.schema
    if not isinstance(key, Mapping):
        if schema.range_key is not None:
            raise InvalidParameter(f"{model.name} has a range key, pass the key as a mapping")
        key = {schema.hash_key.native_name: key}

    ctx = model.context(registry)
    out: dict[str, Any] = {}
    for attr in schema.key_attributes:
        found, value = pick(key, attr)
        if found is None or value is None:
            raise ValidationError(f"missing key attribute: {attr.native_name}")
        out[attr.name] = encode_value(value, attr.types, path=attr.name, ctx=ctx)
    return out


def _projection(model: ModelDefinition, attributes: Sequence[str], table: PlaceholderTable) -> str:
    refs = []
    for attribute in attributes:
        path = ".".join(split_path(attribute))
        lookup = model.schema.lookup(path)
        if lookup is None:
            if not model.schema.allows_unknown(path):
                raise UnknownAttribute(path=path)
            refs.append(table.name(path))
        else:
            refs.append(table.name(lookup.wire_path))
    return ", ".join(refs)


def _combine_conditions(parts: Sequence[str]) -> str:
    if len(parts) == 1:
        return parts[0]
    return " AND ".join(f"({part})" for part in parts)


def build_get_request(
    model: ModelDefinition,
    key: Any,
    *,
    attributes: Sequence[str] | None = None,
    consistent_read: bool = False,
    registry: ModelRegistry | None = None,
) -> dict[str, Any]:
    req: dict[str, Any] = {"TableName": model.table_name, "Key": _key(model, key, registry)}
    if consistent_read:
        req["ConsistentRead"] = True
    if attributes:
        table = PlaceholderTable()
        req["ProjectionExpression"] = _projection(model, attributes, table)
        table.attach(req)
    return req


async def build_put_request(
    model: ModelDefinition,
    item: Mapping[str, Any],
    *,
    condition: ConditionLike | None = None,
    overwrite: bool = True,
    options: MarshalOptions = SAVE,
    registry: ModelRegistry | None = None,
) -> dict[str, Any]:
    req: dict[str, Any] = {
        "TableName": model.table_name,
        "Item": await to_wire(item, model, options, registry=registry),
    }
    table = PlaceholderTable()
    parts: list[str] = []
    expression = await render_condition(model, condition, table, registry=registry)
    if expression:
        parts.append(expression)
    if not overwrite:
        parts.append(f"attribute_not_exists({table.name(model.hash_key)})")
    if parts:
        req["ConditionExpression"] = _combine_conditions(parts)
    return table.attach(req)


async def build_delete_request(
    model: ModelDefinition,
    key: Any,
    *,
    condition: ConditionLike | None = None,
    registry: ModelRegistry | None = None,
) -> dict[str, Any]:
    req: dict[str, Any] = {"TableName": model.table_name, "Key": _key(model, key, registry)}
    table = PlaceholderTable()
    expression = await render_condition(model, condition, table, registry=registry)
    if expression:
        req["ConditionExpression"] = expression
    return table.attach(req)


async def build_update_request(
    model: ModelDefinition,
    key: Any,
    update: Mapping[str, Any],
    *,
    condition: ConditionLike | None = None,
    return_values: str = "ALL_NEW",
    registry: ModelRegistry | None = None,
) -> dict[str, Any]:
    table = PlaceholderTable()
    req: dict[str, Any] = {
        "TableName": model.table_name,
        "Key": _key(model, key, registry),
        "UpdateExpression": await render_update(model, update, table, registry=registry),
    }
    expression = await render_condition(model, condition, table, registry=registry)
    if expression:
        req["ConditionExpression"] = expression
    if return_values:
        req["ReturnValues"] = return_values
    return table.attach(req)


def _apply_read_options(
    req: dict[str, Any],
    *,
    index_name: str | None,
    limit: int | None,
    consistent_read: bool,
) -> None:
    if index_name:
        req["IndexName"] = index_name
    if limit is not None:
        if limit <= 0:
            raise ValidationError("limit must be > 0")
        req["Limit"] = limit
    if consistent_read:
        req["ConsistentRead"] = True


async def build_query_request(
    model: ModelDefinition,
    key_condition: ConditionLike,
    *,
    filter: ConditionLike | None = None,
    index_name: str | None = None,
    limit: int | None = None,
    scan_forward: bool = True,
    consistent_read: bool = False,
    attributes: Sequence[str] | None = None,
    registry: ModelRegistry | None = None,
) -> dict[str, Any]:
    table = PlaceholderTable()
    key_expression = await render_condition(model, key_condition, table, registry=registry)
    if not key_expression:
        raise InvalidParameter("query requires a key condition")

    req: dict[str, Any] = {"TableName": model.table_name, "KeyConditionExpression": key_expression}
    filter_expression = await render_condition(model, filter, table, registry=registry)
    if filter_expression:
        req["FilterExpression"] = filter_expression
    _apply_read_options(req, index_name=index_name, limit=limit, consistent_read=consistent_read)
    if not scan_forward:
        req["ScanIndexForward"] = False
    if attributes:
        req["ProjectionExpression"] = _projection(model, attributes, table)
    return table.attach(req)


async def build_scan_request(
    model: ModelDefinition,
    *,
    filter: ConditionLike | None = None,
    index_name: str | None = None,
    limit: int | None = None,
    consistent_read: bool = False,
    attributes: Sequence[str] | None = None,
    segment: int | None = None,
    total_segments: int | None = None,
    registry: ModelRegistry | None = None,
) -> dict[str, Any]:
    table = PlaceholderTable()
    req: dict[str, Any] = {"TableName": model.table_name}
    filter_expression = await render_condition(model, filter, table, registry=registry)
    if filter_expression:
        req["FilterExpression"] = filter_expression
    _apply_read_options(req, index_name=index_name, limit=limit, consistent_read=consistent_read)

    if (segment is None) != (total_segments is None):
        raise ValidationError("segment and total_segments must be provided together")
    if segment is not None and total_segments is not None:
        if segment < 0 or total_segments <= 0 or segment >= total_segments:
            raise ValidationError("invalid segment/total_segments")
        req["Segment"] = segment
        req["TotalSegments"] = total_segments

    if attributes:
        req["ProjectionExpression"] = _projection(model, attributes, table)
    return table.attach(req)


async def decode_items(
    model: ModelDefinition,
    items: Sequence[Mapping[str, Any]],
    *,
    options: MarshalOptions = READ,
    registry: ModelRegistry | None = None,
) -> list[dict[str, Any]]:
    """Decode the ``Items`` of a query or scan response, skipping expired items."""
    out: list[dict[str, Any]] = []
    for item in items:
        decoded = await from_wire(item, model, options, registry=registry)
        if decoded is not None:
            out.append(decoded)
    return out
