from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Any


class _AnySentinel:
    def __repr__(self) -> str:  # pragma: no cover
        return "ANY"


ANY: Any = _AnySentinel()


def _assert_match(expected: Any, actual: Any, *, path: str) -> None:
    if expected is ANY:
        return

    if isinstance(expected, dict):
        if not isinstance(actual, dict):
            raise AssertionError(f"{path}: expected dict, got {type(actual).__name__}")
        for k, v in expected.items():
            if k not in actual:
                raise AssertionError(f"{path}: missing key {k!r}")
            _assert_match(v, actual[k], path=f"{path}.{k}")
        return

    if isinstance(expected, list):
        if not isinstance(actual, list):
            raise AssertionError(f"{path}: expected list, got {type(actual).__name__}")
        if len(expected) != len(actual):
            raise AssertionError(f"{path}: expected {len(expected)} items, got {len(actual)}")
        for i, (e, a) in enumerate(zip(expected, actual, strict=True)):
            _assert_match(e, a, path=f"{path}[{i}]")
        return

    if expected != actual:
        raise AssertionError(f"{path}: expected {expected!r}, got {actual!r}")


def assert_match(expected: Any, actual: Any, *, path: str = "request") -> None:
    """Partially match a compiled request: keys missing from ``expected`` are
    ignored and ``ANY`` matches any value."""
    _assert_match(expected, actual, path=path)


def run[T](awaitable: Awaitable[T]) -> T:
    async def _wait() -> T:
        return await awaitable

    return asyncio.run(_wait())


__all__ = [
    "ANY",
    "assert_match",
    "run",
]
