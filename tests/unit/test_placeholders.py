from __future__ import annotations

import pytest

from dynaschema import InvalidParameter, PlaceholderTable


def test_name_tokens_are_reused_per_path() -> None:
    table = PlaceholderTable()

    assert table.name("id") == "#a0"
    assert table.name("age") == "#a1"
    assert table.name("id") == "#a0"
    assert table.name(("age",)) == "#a1"
    assert table.names == {"#a0": "id", "#a1": "age"}


def test_nested_paths_render_one_token_per_segment() -> None:
    table = PlaceholderTable()

    assert table.name("address.street") == "#a0_0.#a0_1"
    assert table.name("friends[1]") == "#a1[1]"
    assert table.name("friends.2.name") == "#a2_0[2].#a2_1"
    assert table.names == {
        "#a0_0": "address",
        "#a0_1": "street",
        "#a1": "friends",
        "#a2_0": "friends",
        "#a2_1": "name",
    }


def test_value_tokens_always_advance() -> None:
    table = PlaceholderTable()

    assert table.value({"N": "1"}) == ":v0"
    assert table.value({"N": "1"}) == ":v1"
    assert table.value_list([{"N": "2"}, {"N": "3"}]) == [":v2_1", ":v2_2"]
    assert table.value({"S": "x"}) == ":v3"
    assert table.values[":v2_2"] == {"N": "3"}


def test_attach_only_adds_non_empty_maps() -> None:
    table = PlaceholderTable()
    assert table.attach({"TableName": "t"}) == {"TableName": "t"}

    table.name("id")
    assert table.attach({}) == {"ExpressionAttributeNames": {"#a0": "id"}}

    table.value({"N": "1"})
    assert table.attach({}) == {
        "ExpressionAttributeNames": {"#a0": "id"},
        "ExpressionAttributeValues": {":v0": {"N": "1"}},
    }


def test_returned_maps_are_copies() -> None:
    table = PlaceholderTable()
    table.name("id")
    names = table.names
    names["#a9"] = "x"  # type: ignore[index]
    assert "#a9" not in table.names


def test_custom_prefixes() -> None:
    table = PlaceholderTable(name_prefix="#u", value_prefix=":u")
    assert table.name("id") == "#u0"
    assert table.value({"S": "x"}) == ":u0"


def test_invalid_paths_are_rejected() -> None:
    table = PlaceholderTable()
    with pytest.raises(InvalidParameter):
        table.name("0.name")
    with pytest.raises(InvalidParameter):
        table.name("a..b")
    with pytest.raises(InvalidParameter, match="depth exceeds maximum of 32"):
        table.name(".".join(["a"] * 33))
