from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from .errors import TypeMismatch, UnknownAttribute
from .model import ModelDefinition, ModelRegistry, context_for
from .schema import Schema, split_path
from .types import (
    CONTAINER_CLASSES,
    UNDEFINED,
    ArrayType,
    CandidateType,
    Direction,
    ObjectType,
    TypeContext,
    native_type_name,
    wire_type_name,
)

log = logging.getLogger(__name__)

MATCHED = 1.0
UNKNOWN_KEPT = 0.5
MISMATCHED = 0.0


def resolve(
    value: Any,
    candidates: Sequence[CandidateType],
    direction: Direction,
    *,
    path: str,
    ctx: TypeContext,
) -> CandidateType:
    """Pick the candidate type for ``value``.

    Candidates whose shape cannot hold the value are discarded first. If one
    remains it wins outright; otherwise containers are scored and the highest
    average wins, ties going to the earlier declaration.
    """
    shaped = [c for c in candidates if c.accepts(value, direction, ctx)]
    if not shaped:
        raise _mismatch(value, candidates, direction, path=path, ctx=ctx)
    if len(shaped) == 1 or not any(isinstance(c, CONTAINER_CLASSES) for c in shaped):
        return shaped[0]

    best: CandidateType | None = None
    best_score = MISMATCHED
    for candidate in shaped:
        current = score(value, candidate, direction, path=path, ctx=ctx)
        if best is None or current > best_score:
            best, best_score = candidate, current
    if best is None or best_score <= MISMATCHED:
        raise _mismatch(value, candidates, direction, path=path, ctx=ctx)
    log.debug("resolved %s to %s (score %.2f)", path, best.type_name(ctx), best_score)
    return best


def score(value: Any, candidate: CandidateType, direction: Direction, *, path: str, ctx: TypeContext) -> float:
    if not candidate.accepts(value, direction, ctx):
        return MISMATCHED
    if isinstance(candidate, ObjectType):
        return _score_object(value, candidate, direction, path=path, ctx=ctx)
    if isinstance(candidate, ArrayType):
        return _score_array(value, candidate, direction, path=path, ctx=ctx)
    return MATCHED


def _best(value: Any, candidates: Sequence[CandidateType], direction: Direction, *, path: str, ctx: TypeContext) -> float:
    return max((score(value, c, direction, path=path, ctx=ctx) for c in candidates), default=MISMATCHED)


def _average(scores: list[float]) -> float:
    if not scores:
        return MATCHED
    return sum(scores) / len(scores)


def _score_object(
    value: Any, candidate: ObjectType, direction: Direction, *, path: str, ctx: TypeContext
) -> float:
    entries: Mapping[str, Any] = value["M"] if direction == "from_wire" else value
    if candidate.schema is None:
        return _average([UNKNOWN_KEPT for _ in entries])

    nested = ctx.enter(path, candidate.schema)
    scores: list[float] = []
    for key, item in entries.items():
        entry_path = f"{path}.{key}"
        if direction == "from_wire":
            attr = candidate.schema.attributes.get(key)
        else:
            attr = candidate.schema.attribute_for(key)
        if attr is not None:
            if direction == "to_wire" and (item is UNDEFINED or (item is None and not attr.nullable)):
                continue
            scores.append(_best(item, attr.types, direction, path=entry_path, ctx=nested))
        elif nested.allows_unknown(entry_path):
            scores.append(UNKNOWN_KEPT)
        else:
            scores.append(MISMATCHED)
    return _average(scores)


def _score_array(
    value: Any, candidate: ArrayType, direction: Direction, *, path: str, ctx: TypeContext
) -> float:
    elements: Sequence[Any] = value["L"] if direction == "from_wire" else value
    if not candidate.element:
        return _average([UNKNOWN_KEPT for _ in elements])
    return _average(
        [_best(item, candidate.element, direction, path=f"{path}.{i}", ctx=ctx) for i, item in enumerate(elements)]
    )


def _mismatch(
    value: Any, candidates: Sequence[CandidateType], direction: Direction, *, path: str, ctx: TypeContext
) -> TypeMismatch:
    actual = wire_type_name(value) if direction == "from_wire" else native_type_name(value)
    return TypeMismatch(path=path, expected=[c.type_name(ctx) for c in candidates], actual=actual)


def resolve_type(
    value: Any,
    schema: Schema | ModelDefinition,
    path: str | Sequence[str],
    *,
    direction: Direction = "to_wire",
    registry: ModelRegistry | None = None,
) -> CandidateType:
    """Resolve which declared type of the attribute at ``path`` fits ``value``."""
    ctx = context_for(schema, registry)
    dotted = ".".join(split_path(path))
    lookup = ctx.root.lookup(dotted)
    if lookup is None or lookup.free_form:
        raise UnknownAttribute(path=dotted)
    return resolve(value, lookup.candidates, direction, path=dotted, ctx=ctx)
