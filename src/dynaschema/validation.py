from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from .errors import InvalidParameter, ValidationError

MaxAttributeNameLength = 255
MaxNestedDepth = 32
MaxInValues = 100
MaxExpressionLength = 4096


def validate_attribute_name(name: str) -> None:
    if not isinstance(name, str):
        raise InvalidParameter(f"attribute name must be a string: {name!r}")
    if not name:
        raise InvalidParameter("attribute name cannot be empty")
    if len(name) > MaxAttributeNameLength:
        raise InvalidParameter(f"attribute name exceeds maximum length of {MaxAttributeNameLength}: {name[:32]}...")
    if "." in name:
        raise InvalidParameter(f"Attributes must not contain dots: {name}")
    if _contains_control_characters(name):
        raise InvalidParameter("attribute name contains control characters")


def validate_attribute_path(parts: Sequence[str]) -> None:
    if not parts:
        raise InvalidParameter("attribute path cannot be empty")
    if len(parts) > MaxNestedDepth:
        raise InvalidParameter(f"attribute path depth exceeds maximum of {MaxNestedDepth}")
    if parts[0].isdigit():
        raise InvalidParameter("attribute path must start with an attribute name")
    for part in parts:
        if not part:
            raise InvalidParameter("attribute path contains an empty segment")
        if len(part) > MaxAttributeNameLength:
            raise InvalidParameter(f"attribute path segment exceeds maximum length of {MaxAttributeNameLength}")


def validate_in_values(values: Any) -> tuple[Any, ...]:
    if isinstance(values, (str, bytes, bytearray)) or not isinstance(values, (Sequence, set, frozenset)):
        raise InvalidParameter("IN requires a list of values")
    if not values:
        raise InvalidParameter("IN requires at least one value")
    if len(values) > MaxInValues:
        raise InvalidParameter(f"IN supports at most {MaxInValues} values")
    return tuple(values)


def validate_expression(expression: str) -> None:
    if len(expression) > MaxExpressionLength:
        raise ValidationError(f"expression exceeds maximum length of {MaxExpressionLength}")


def _contains_control_characters(value: str) -> bool:
    for ch in value:
        code = ord(ch)
        if 0 <= code <= 0x1F or code == 0x7F:
            return True
    return False
