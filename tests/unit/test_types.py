from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from boto3.dynamodb.types import Binary

from dynaschema import NUMBER, STRING, Combine, Constant, Date, InvalidParameter, SetType
from dynaschema.types import (
    UNDEFINED,
    datetime_to_epoch,
    epoch_to_datetime,
    from_decimal,
    native_type_name,
    normalize_for_wire,
    normalize_from_wire,
    wire_tag_of,
    wire_type_name,
)


def test_wire_tag_of_requires_a_single_known_tag() -> None:
    assert wire_tag_of({"S": "x"}) == "S"
    assert wire_tag_of({"NULL": True}) == "NULL"
    assert wire_tag_of({"X": 1}) is None
    assert wire_tag_of({"S": "x", "N": "1"}) is None
    assert wire_tag_of("S") is None


def test_number_normalization_round_trip() -> None:
    assert normalize_for_wire(1.5) == Decimal("1.5")
    assert normalize_for_wire(0.1) == Decimal("0.1")
    assert normalize_for_wire(True) is True
    assert from_decimal(Decimal("3")) == 3
    assert isinstance(from_decimal(Decimal("3")), int)
    assert from_decimal(Decimal("3.25")) == 3.25


def test_normalize_handles_containers() -> None:
    assert normalize_for_wire({"a": [1.5, {"b": bytearray(b"x")}], "skip": UNDEFINED}) == {
        "a": [Decimal("1.5"), {"b": b"x"}]
    }
    assert normalize_for_wire(set()) is None
    assert normalize_from_wire({"n": Decimal("2"), "b": Binary(b"\x01"), "s": {Decimal("1")}}) == {
        "n": 2,
        "b": b"\x01",
        "s": {1},
    }


def test_epoch_conversions() -> None:
    moment = datetime(2020, 1, 2, 3, 4, 5, 678000, tzinfo=UTC)
    assert datetime_to_epoch(moment, "milliseconds") == 1577934245678
    assert datetime_to_epoch(moment, "seconds") == 1577934246
    assert epoch_to_datetime(1577934245678, "milliseconds") == moment
    assert epoch_to_datetime(Decimal("1577934245"), "seconds") == moment.replace(microsecond=0)

    offset = datetime(2020, 1, 2, 5, 4, 5, 678000, tzinfo=timezone(timedelta(hours=2)))
    assert datetime_to_epoch(offset, "milliseconds") == 1577934245678


def test_naive_datetimes_are_read_as_local_time() -> None:
    naive = datetime(2020, 1, 2, 3, 4, 5, 678000)
    decoded = epoch_to_datetime(datetime_to_epoch(naive, "milliseconds"), "milliseconds")

    assert decoded.tzinfo is UTC
    assert decoded == naive.astimezone(UTC)
    assert decoded != naive


def test_type_names() -> None:
    assert native_type_name("x") == "string"
    assert native_type_name(True) == "boolean"
    assert native_type_name(1) == "number"
    assert native_type_name(None) == "null"
    assert native_type_name([1]) == "array"
    assert native_type_name({"a": 1}) == "object"
    assert native_type_name({1}) == "set"
    assert wire_type_name({"SS": ["a"]}) == "string set"
    assert wire_type_name({"M": {}}) == "object"


def test_candidate_constructors_validate_arguments() -> None:
    with pytest.raises(InvalidParameter):
        Date("minutes")  # type: ignore[arg-type]
    with pytest.raises(InvalidParameter):
        Combine([])
    with pytest.raises(InvalidParameter):
        Constant([1])  # type: ignore[arg-type]
    with pytest.raises(InvalidParameter):
        SetType(SetType(STRING))  # type: ignore[arg-type]

    combine = Combine(("a", "b"), "#")
    assert combine.attributes == ("a", "b")
    assert combine.separator == "#"
    assert SetType(NUMBER).element is NUMBER
