from __future__ import annotations

from collections.abc import Sequence


class DynaschemaError(Exception):
    pass


class TypeMismatch(DynaschemaError):
    def __init__(self, *, path: str, expected: Sequence[str], actual: str) -> None:
        super().__init__(
            f"Expected {path} to be of type {', '.join(expected)}, instead found type {actual}."
        )
        self.path = path
        self.expected = tuple(expected)
        self.actual = actual


class ValidationError(DynaschemaError):
    pass


class InvalidParameter(DynaschemaError):
    pass


class UnknownAttribute(DynaschemaError):
    def __init__(self, *, path: str) -> None:
        super().__init__(f"Invalid Attribute: {path}")
        self.path = path
