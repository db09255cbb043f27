from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from .errors import InvalidParameter
from .schema import Schema, attribute
from .types import Date, TypeContext
from .validation import validate_attribute_name

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Expires:
    ttl: timedelta
    attribute: str = "ttl"
    return_expired: bool = True

    def __post_init__(self) -> None:
        if self.ttl <= timedelta(0):
            raise InvalidParameter("expires ttl must be positive")
        validate_attribute_name(self.attribute)


@dataclass(frozen=True)
class ModelDefinition:
    name: str
    schema: Schema
    table_name: str | None = None
    expires: Expires | None = None

    @staticmethod
    def define(
        name: str,
        schema: Schema | Mapping[str, Any],
        *,
        table_name: str | None = None,
        expires: Expires | timedelta | None = None,
        registry: ModelRegistry | None = None,
    ) -> ModelDefinition:
        """Build a model and register it so references to ``name`` resolve."""
        if not name:
            raise InvalidParameter("model name is required")
        if not isinstance(schema, Schema):
            schema = Schema(schema)
        if isinstance(expires, timedelta):
            expires = Expires(ttl=expires)
        if expires is not None:
            schema = schema.extend({expires.attribute: attribute(Date("seconds"), default=_expiry_default(expires))})

        model = ModelDefinition(name=name, schema=schema, table_name=table_name or name, expires=expires)
        (registry if registry is not None else default_registry).register(model)
        return model

    @property
    def hash_key(self) -> str:
        return self.schema.hash_key.name

    @property
    def range_key(self) -> str | None:
        return None if self.schema.range_key is None else self.schema.range_key.name

    def context(self, registry: ModelRegistry | None = None) -> TypeContext:
        return TypeContext(
            root=self.schema,
            registry=registry if registry is not None else default_registry,
            model_name=self.name,
            unknown_patterns=self.schema.save_unknown,
        )

    def is_expired(self, item: Mapping[str, Any], *, now: float | None = None) -> bool:
        if self.expires is None:
            return False
        stored = item.get(self.expires.attribute)
        if not isinstance(stored, Mapping) or "N" not in stored:
            return False
        current = time.time() if now is None else now
        return float(stored["N"]) < current


def _expiry_default(expires: Expires) -> Any:
    def default() -> int:
        return int(time.time() + expires.ttl.total_seconds())

    return default


class ModelRegistry:
    """Name to model lookup used to resolve ``ModelReference`` lazily."""

    def __init__(self) -> None:
        self._models: dict[str, ModelDefinition] = {}

    def register(self, model: ModelDefinition) -> None:
        existing = self._models.get(model.name)
        if existing is not None and existing is not model:
            log.debug("replacing model definition: %s", model.name)
        self._models[model.name] = model

    def get(self, name: str) -> ModelDefinition:
        model = self._models.get(name)
        if model is None:
            raise InvalidParameter(f"unknown model: {name}")
        return model

    def __contains__(self, name: object) -> bool:
        return name in self._models

    def clear(self) -> None:
        self._models.clear()


default_registry = ModelRegistry()


def context_for(target: Schema | ModelDefinition, registry: ModelRegistry | None = None) -> TypeContext:
    if isinstance(target, ModelDefinition):
        return target.context(registry)
    if not isinstance(target, Schema):
        raise InvalidParameter(f"expected a Schema or ModelDefinition, got {type(target).__name__}")
    return TypeContext(
        root=target,
        registry=registry if registry is not None else default_registry,
        unknown_patterns=target.save_unknown,
    )


def schema_of(target: Schema | ModelDefinition) -> Schema:
    if isinstance(target, ModelDefinition):
        return target.schema
    if not isinstance(target, Schema):
        raise InvalidParameter(f"expected a Schema or ModelDefinition, got {type(target).__name__}")
    return target
