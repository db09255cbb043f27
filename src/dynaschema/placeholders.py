from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from .schema import split_path
from .validation import validate_attribute_path


class PlaceholderTable:
    """Allocates ``#aN`` name tokens and ``:vN`` value tokens for one request.

    A path seen before reuses its name token. Value tokens always advance;
    multi-value operators share one index and append ``_1``, ``_2``, ...
    """

    def __init__(self, *, name_prefix: str = "#a", value_prefix: str = ":v") -> None:
        self._name_prefix = name_prefix
        self._value_prefix = value_prefix
        self._names: dict[str, str] = {}
        self._values: dict[str, Any] = {}
        self._paths: dict[tuple[str, ...], str] = {}
        self._name_counter = 0
        self._value_counter = 0

    @property
    def names(self) -> Mapping[str, str]:
        return dict(self._names)

    @property
    def values(self) -> Mapping[str, Any]:
        return dict(self._values)

    def name(self, path: str | Sequence[str]) -> str:
        parts = split_path(path)
        validate_attribute_path(parts)
        existing = self._paths.get(parts)
        if existing is not None:
            return existing

        index = self._name_counter
        self._name_counter += 1
        named = [p for p in parts if not p.isdigit()]

        rendered: list[str] = []
        position = 0
        for part in parts:
            if part.isdigit():
                rendered[-1] = f"{rendered[-1]}[{part}]"
                continue
            token = f"{self._name_prefix}{index}" if len(named) == 1 else f"{self._name_prefix}{index}_{position}"
            self._names[token] = part
            rendered.append(token)
            position += 1

        reference = ".".join(rendered)
        self._paths[parts] = reference
        return reference

    def value(self, attribute_value: Any) -> str:
        token = f"{self._value_prefix}{self._value_counter}"
        self._value_counter += 1
        self._values[token] = attribute_value
        return token

    def value_list(self, attribute_values: Sequence[Any]) -> list[str]:
        index = self._value_counter
        self._value_counter += 1
        tokens = []
        for position, attribute_value in enumerate(attribute_values, start=1):
            token = f"{self._value_prefix}{index}_{position}"
            self._values[token] = attribute_value
            tokens.append(token)
        return tokens

    def attach(self, request: dict[str, Any]) -> dict[str, Any]:
        """Add the name and value maps to ``request`` when they are not empty."""
        if self._names:
            request["ExpressionAttributeNames"] = self.names
        if self._values:
            request["ExpressionAttributeValues"] = self.values
        return request
