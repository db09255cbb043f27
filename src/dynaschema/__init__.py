from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .condition import Comparison, Condition, Group, compile_condition, compile_condition_sync, where
from .errors import (
    DynaschemaError,
    InvalidParameter,
    TypeMismatch,
    UnknownAttribute,
    ValidationError,
)
from .marshaller import (
    READ,
    SAVE,
    VALUE,
    MarshalOptions,
    from_wire,
    from_wire_sync,
    is_wire_object,
    to_wire,
    to_wire_sync,
)
from .model import Expires, ModelDefinition, ModelRegistry, default_registry
from .resolver import resolve_type
from .schema import AttributeDefinition, Schema, attribute
from .types import (
    BOOLEAN,
    BUFFER,
    NULL,
    NUMBER,
    SELF,
    STRING,
    UNDEFINED,
    ArrayType,
    Combine,
    Constant,
    Date,
    ModelReference,
    ObjectType,
    SetType,
)
from .update import compile_update, compile_update_sync

if TYPE_CHECKING:
    from .placeholders import PlaceholderTable
    from .requests import (
        build_delete_request,
        build_get_request,
        build_put_request,
        build_query_request,
        build_scan_request,
        build_update_request,
        decode_items,
    )
    from .validation import (
        MaxAttributeNameLength,
        MaxExpressionLength,
        MaxInValues,
        MaxNestedDepth,
    )


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name in {
        "build_delete_request",
        "build_get_request",
        "build_put_request",
        "build_query_request",
        "build_scan_request",
        "build_update_request",
        "decode_items",
    }:
        from . import requests

        return getattr(requests, name)
    if name == "PlaceholderTable":
        from .placeholders import PlaceholderTable

        return PlaceholderTable
    if name in {"MaxAttributeNameLength", "MaxExpressionLength", "MaxInValues", "MaxNestedDepth"}:
        from . import validation

        return getattr(validation, name)
    raise AttributeError(name)


__all__ = [
    "ArrayType",
    "AttributeDefinition",
    "attribute",
    "BOOLEAN",
    "BUFFER",
    "build_delete_request",
    "build_get_request",
    "build_put_request",
    "build_query_request",
    "build_scan_request",
    "build_update_request",
    "Combine",
    "Comparison",
    "compile_condition",
    "compile_condition_sync",
    "compile_update",
    "compile_update_sync",
    "Condition",
    "Constant",
    "Date",
    "decode_items",
    "default_registry",
    "DynaschemaError",
    "Expires",
    "from_wire",
    "from_wire_sync",
    "Group",
    "InvalidParameter",
    "is_wire_object",
    "MarshalOptions",
    "MaxAttributeNameLength",
    "MaxExpressionLength",
    "MaxInValues",
    "MaxNestedDepth",
    "ModelDefinition",
    "ModelReference",
    "ModelRegistry",
    "NULL",
    "NUMBER",
    "ObjectType",
    "PlaceholderTable",
    "READ",
    "resolve_type",
    "SAVE",
    "Schema",
    "SELF",
    "SetType",
    "STRING",
    "to_wire",
    "to_wire_sync",
    "TypeMismatch",
    "UNDEFINED",
    "UnknownAttribute",
    "ValidationError",
    "VALUE",
    "where",
]
