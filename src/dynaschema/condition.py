from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any, Literal

from .errors import InvalidParameter, UnknownAttribute
from .marshaller import call_hook, encode_value
from .model import ModelDefinition, ModelRegistry, context_for
from .placeholders import PlaceholderTable
from .schema import PathLookup, Schema, split_path
from .types import ArrayType, CandidateType, SetType, TypeContext
from .validation import validate_expression, validate_in_values

log = logging.getLogger(__name__)

type Joiner = Literal["AND", "OR"]

_COMPLEMENTS = {
    "EQ": "NE",
    "NE": "EQ",
    "LT": "GE",
    "GE": "LT",
    "LE": "GT",
    "GT": "LE",
    "EXISTS": "NOT_EXISTS",
    "NOT_EXISTS": "EXISTS",
    "CONTAINS": "NOT_CONTAINS",
    "NOT_CONTAINS": "CONTAINS",
}

_SYMBOLS = {"EQ": "=", "NE": "<>", "LT": "<", "LE": "<=", "GT": ">", "GE": ">="}

_OPERATORS = frozenset(_COMPLEMENTS) | {"BEGINS_WITH", "IN", "BETWEEN"}


@dataclass(frozen=True)
class Comparison:
    path: str
    operator: str
    operands: tuple[Any, ...] = ()
    negated: bool = False

    def __post_init__(self) -> None:
        if self.operator not in _OPERATORS:
            raise InvalidParameter(f"unknown comparison operator: {self.operator}")
        if self.negated and self.operator not in _COMPLEMENTS:
            raise InvalidParameter(f"{self.operator} can not follow not()")


@dataclass(frozen=True)
class Group:
    children: tuple[ConditionNode, ...]
    joiners: tuple[Joiner, ...] = ()

    def __post_init__(self) -> None:
        if not self.children:
            raise InvalidParameter("a condition group needs at least one child")
        if len(self.joiners) != len(self.children) - 1:
            raise InvalidParameter("a condition group needs one joiner between each pair of children")


type ConditionNode = Comparison | Group


@dataclass(frozen=True)
class BuilderState:
    children: tuple[ConditionNode, ...] = ()
    joiners: tuple[Joiner, ...] = ()
    pending: str | None = None
    negate: bool = False
    joiner: Joiner = "AND"


class Condition:
    """Immutable condition builder.

    Every call returns a new ``Condition``; the receiver is left untouched, so
    partially built conditions can be shared and extended independently.

        Condition().where("age").gt(18).and_().where("name").begins_with("C")
    """

    __slots__ = ("_state",)

    def __init__(self, initial: str | Mapping[str, Any] | Condition | None = None) -> None:
        if initial is None:
            state = BuilderState()
        elif isinstance(initial, Condition):
            state = initial._state
        elif isinstance(initial, str):
            state = BuilderState(pending=initial)
        elif isinstance(initial, Mapping):
            state = _from_mapping(initial)._state
        else:
            raise InvalidParameter(f"cannot build a condition from {type(initial).__name__}")
        self._state = state

    @classmethod
    def _of(cls, state: BuilderState) -> Condition:
        condition = cls.__new__(cls)
        condition._state = state
        return condition

    @property
    def state(self) -> BuilderState:
        return self._state

    @property
    def tree(self) -> Group | None:
        if not self._state.children:
            return None
        return Group(children=self._state.children, joiners=self._state.joiners)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Condition):
            return NotImplemented
        return self._state == other._state

    def __repr__(self) -> str:
        return f"Condition({self.tree!r})"

    def where(self, path: str) -> Condition:
        if not isinstance(path, str) or not path:
            raise InvalidParameter("where() requires an attribute path")
        return Condition._of(replace(self._state, pending=path, negate=False))

    filter = where
    attribute = where

    def not_(self) -> Condition:
        return Condition._of(replace(self._state, negate=not self._state.negate))

    def and_(self) -> Condition:
        return Condition._of(replace(self._state, joiner="AND"))

    def or_(self) -> Condition:
        return Condition._of(replace(self._state, joiner="OR"))

    def eq(self, value: Any) -> Condition:
        return self._compare("EQ", (value,))

    def ne(self, value: Any) -> Condition:
        return self._compare("NE", (value,))

    def lt(self, value: Any) -> Condition:
        return self._compare("LT", (value,))

    def le(self, value: Any) -> Condition:
        return self._compare("LE", (value,))

    def gt(self, value: Any) -> Condition:
        return self._compare("GT", (value,))

    def ge(self, value: Any) -> Condition:
        return self._compare("GE", (value,))

    def exists(self) -> Condition:
        return self._compare("EXISTS", ())

    def contains(self, value: Any) -> Condition:
        return self._compare("CONTAINS", (value,))

    def begins_with(self, value: Any) -> Condition:
        return self._compare("BEGINS_WITH", (value,))

    def in_(self, values: Sequence[Any]) -> Condition:
        return self._compare("IN", validate_in_values(values))

    def between(self, low: Any, high: Any) -> Condition:
        return self._compare("BETWEEN", (low, high))

    def parenthesis(self, value: Condition | Callable[[Condition], Condition]) -> Condition:
        inner = value(Condition()) if callable(value) and not isinstance(value, Condition) else value
        if not isinstance(inner, Condition):
            raise InvalidParameter("parenthesis() expects a Condition or a function returning one")
        group = inner.tree
        if group is None:
            raise InvalidParameter("parenthesis() requires at least one comparison")
        return self._append(group)

    group = parenthesis

    def _compare(self, operator: str, operands: tuple[Any, ...]) -> Condition:
        state = self._state
        if state.pending is None:
            raise InvalidParameter(f"{operator} requires an attribute, call where() first")
        if state.negate:
            complement = _COMPLEMENTS.get(operator)
            if complement is None:
                raise InvalidParameter(f"{operator} can not follow not()")
            node = Comparison(path=state.pending, operator=complement, operands=operands, negated=True)
        else:
            node = Comparison(path=state.pending, operator=operator, operands=operands)
        return self._append(node)

    def _append(self, node: ConditionNode) -> Condition:
        state = self._state
        joiners = state.joiners + (state.joiner,) if state.children else state.joiners
        return Condition._of(
            BuilderState(children=state.children + (node,), joiners=joiners)
        )


def where(path: str) -> Condition:
    return Condition().where(path)


_MAPPING_OPERATORS: dict[str, Callable[[Condition, Any], Condition]] = {
    "eq": lambda c, v: c.eq(v),
    "ne": lambda c, v: c.ne(v),
    "lt": lambda c, v: c.lt(v),
    "le": lambda c, v: c.le(v),
    "gt": lambda c, v: c.gt(v),
    "ge": lambda c, v: c.ge(v),
    "contains": lambda c, v: c.contains(v),
    "begins_with": lambda c, v: c.begins_with(v),
    "beginsWith": lambda c, v: c.begins_with(v),
    "in": lambda c, v: c.in_(v),
    "exists": lambda c, v: c.exists() if v else c.not_().exists(),
    "between": lambda c, v: _between(c, v),
}


def _between(condition: Condition, value: Any) -> Condition:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence) or len(value) != 2:
        raise InvalidParameter("between expects a pair of values")
    return condition.between(value[0], value[1])


def _from_mapping(conditions: Mapping[str, Any]) -> Condition:
    condition = Condition()
    for path, value in conditions.items():
        if isinstance(value, Mapping) and value:
            for name, operand in value.items():
                apply = _MAPPING_OPERATORS.get(name)
                if apply is None:
                    raise InvalidParameter(f"The type: {name} is invalid.")
                condition = apply(condition.where(path), operand)
        else:
            condition = condition.where(path).eq(value)
    return condition


def _element_candidates(candidates: Sequence[CandidateType]) -> tuple[CandidateType, ...]:
    elements: list[CandidateType] = []
    for candidate in candidates:
        if isinstance(candidate, SetType):
            elements.append(candidate.element)
        elif isinstance(candidate, ArrayType):
            if not candidate.element:
                return ()
            elements.extend(candidate.element)
        else:
            elements.append(candidate)
    return tuple(dict.fromkeys(elements))


class _ConditionCompiler:
    def __init__(self, ctx: TypeContext, table: PlaceholderTable) -> None:
        self._ctx = ctx
        self._table = table

    async def render(self, node: ConditionNode, *, top: bool = False) -> str:
        if isinstance(node, Comparison):
            return await self._comparison(node)
        parts = [await self.render(child) for child in node.children]
        expression = parts[0]
        for joiner, part in zip(node.joiners, parts[1:], strict=True):
            expression = f"{expression} {joiner} {part}"
        if len(parts) > 1 and not top:
            return f"({expression})"
        return expression

    def _lookup(self, path: str) -> PathLookup:
        lookup = self._ctx.root.lookup(path)
        if lookup is not None:
            return lookup
        if self._ctx.allows_unknown(path):
            return PathLookup(split_path(path), None, ())
        raise UnknownAttribute(path=path)

    def _set_hooks(self, lookup: PathLookup, operator: str) -> tuple[Callable[..., Any], ...]:
        attr = lookup.attribute
        # list indexes address an element, not the attribute the hooks belong to
        if attr is None or lookup.wire_path[-1] != attr.name:
            return ()
        if operator in {"CONTAINS", "NOT_CONTAINS"} and any(isinstance(c, (ArrayType, SetType)) for c in attr.types):
            return ()
        return attr.set

    async def _encode(self, lookup: PathLookup, value: Any, path: str, operator: str) -> dict[str, Any]:
        for hook in self._set_hooks(lookup, operator):
            value = await call_hook(hook, value)
        candidates = lookup.candidates
        if operator in {"CONTAINS", "NOT_CONTAINS"}:
            candidates = _element_candidates(candidates)
        return encode_value(value, candidates, path=path, ctx=self._ctx)

    async def _comparison(self, node: Comparison) -> str:
        path = ".".join(split_path(node.path))
        lookup = self._lookup(path)
        name = self._table.name(lookup.wire_path)
        op = node.operator

        if op == "EXISTS":
            return f"attribute_exists({name})"
        if op == "NOT_EXISTS":
            return f"attribute_not_exists({name})"
        if op in {"IN", "BETWEEN"}:
            tokens = self._table.value_list([await self._encode(lookup, v, path, op) for v in node.operands])
            if op == "BETWEEN":
                return f"{name} BETWEEN {tokens[0]} AND {tokens[1]}"
            return f"{name} IN ({', '.join(tokens)})"

        value = self._table.value(await self._encode(lookup, node.operands[0], path, op))
        if op in _SYMBOLS:
            return f"{name} {_SYMBOLS[op]} {value}"
        if op == "BEGINS_WITH":
            return f"begins_with({name},{value})"
        if op == "CONTAINS":
            return f"contains({name},{value})"
        return f"NOT contains({name},{value})"


def _tree_of(condition: Condition | ConditionNode | None) -> ConditionNode | None:
    if condition is None:
        return None
    if isinstance(condition, Condition):
        return condition.tree
    if isinstance(condition, (Comparison, Group)):
        return condition
    raise InvalidParameter(f"expected a Condition, got {type(condition).__name__}")


async def render_condition(
    schema: Schema | ModelDefinition,
    condition: Condition | ConditionNode | None,
    table: PlaceholderTable,
    *,
    registry: ModelRegistry | None = None,
) -> str:
    """Render ``condition`` into an expression string, allocating placeholders
    from ``table``. Returns an empty string for an empty condition.

    Operands pass through the attribute's ``set`` hooks before encoding so
    they compare equal to stored values.
    """
    tree = _tree_of(condition)
    if tree is None:
        return ""
    ctx = context_for(schema, registry)
    expression = await _ConditionCompiler(ctx, table).render(tree, top=True)
    validate_expression(expression)
    log.debug("compiled condition: %s", expression)
    return expression


async def compile_condition(
    schema: Schema | ModelDefinition,
    condition: Condition | ConditionNode | None,
    *,
    expression_key: str = "FilterExpression",
    registry: ModelRegistry | None = None,
) -> dict[str, Any]:
    table = PlaceholderTable()
    expression = await render_condition(schema, condition, table, registry=registry)
    if not expression:
        return {}
    return table.attach({expression_key: expression})


def compile_condition_sync(
    schema: Schema | ModelDefinition,
    condition: Condition | ConditionNode | None,
    *,
    expression_key: str = "FilterExpression",
    registry: ModelRegistry | None = None,
) -> dict[str, Any]:
    return asyncio.run(compile_condition(schema, condition, expression_key=expression_key, registry=registry))
