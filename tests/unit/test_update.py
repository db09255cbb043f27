from __future__ import annotations

import pytest

from dynaschema import (
    UNDEFINED,
    Combine,
    InvalidParameter,
    Schema,
    TypeMismatch,
    UnknownAttribute,
    ValidationError,
    attribute,
    compile_update,
    compile_update_sync,
)
from dynaschema.testkit import ANY, assert_match, run


@pytest.fixture
def schema() -> Schema:
    return Schema(
        {
            "id": str,
            "name": attribute(str, alias="displayName"),
            "age": attribute(int, default=21),
            "nick": str,
            "count": int,
            "friends": [str],
            "tags": {str},
            "email": attribute(str, required=True),
        }
    )


def test_flattened_update_sets_values(schema: Schema) -> None:
    assert compile_update_sync(schema, {"displayName": "Bob"}) == {
        "UpdateExpression": "SET #a0 = :v0",
        "ExpressionAttributeNames": {"#a0": "name"},
        "ExpressionAttributeValues": {":v0": {"S": "Bob"}},
    }


def test_async_compile(schema: Schema) -> None:
    out = run(compile_update(schema, {"$SET": {"count": 2}}))
    assert out["UpdateExpression"] == "SET #a0 = :v0"
    assert out["ExpressionAttributeValues"] == {":v0": {"N": "2"}}


def test_remove_restores_declared_default(schema: Schema) -> None:
    assert compile_update_sync(schema, {"$REMOVE": {"age": None}}) == {
        "UpdateExpression": "SET #a0 = :v0",
        "ExpressionAttributeNames": {"#a0": "age"},
        "ExpressionAttributeValues": {":v0": {"N": "21"}},
    }
    assert compile_update_sync(schema, {"age": None})["UpdateExpression"] == "SET #a0 = :v0"


def test_remove_forms(schema: Schema) -> None:
    out = compile_update_sync(schema, {"$REMOVE": ["nick", "count"]})
    assert out == {"UpdateExpression": "REMOVE #a0, #a1", "ExpressionAttributeNames": {"#a0": "nick", "#a1": "count"}}

    assert compile_update_sync(schema, {"$REMOVE": "nick"})["UpdateExpression"] == "REMOVE #a0"
    assert compile_update_sync(schema, {"nick": UNDEFINED})["UpdateExpression"] == "REMOVE #a0"
    assert compile_update_sync(schema, {"$SET": {"nick": UNDEFINED}})["UpdateExpression"] == "REMOVE #a0"
    assert compile_update_sync(schema, {"age": UNDEFINED})["UpdateExpression"] == "REMOVE #a0"


def test_add_numbers_lists_and_sets(schema: Schema) -> None:
    assert compile_update_sync(schema, {"$ADD": {"count": 1}}) == {
        "UpdateExpression": "ADD #a0 :v0",
        "ExpressionAttributeNames": {"#a0": "count"},
        "ExpressionAttributeValues": {":v0": {"N": "1"}},
    }

    out = compile_update_sync(schema, {"$ADD": {"friends": "bob"}})
    assert out["UpdateExpression"] == "SET #a0 = list_append(#a0, :v0)"
    assert out["ExpressionAttributeValues"] == {":v0": {"L": [{"S": "bob"}]}}

    out = compile_update_sync(schema, {"$ADD": {"tags": "a"}})
    assert out["UpdateExpression"] == "ADD #a0 :v0"
    assert out["ExpressionAttributeValues"] == {":v0": {"SS": ["a"]}}

    out = compile_update_sync(schema, {"$ADD": {"friends": []}, "nick": "x"})
    assert out["UpdateExpression"] == "SET #a0 = :v0"


def test_delete_from_set(schema: Schema) -> None:
    out = compile_update_sync(schema, {"$DELETE": {"tags": ["a"]}})
    assert out == {
        "UpdateExpression": "DELETE #a0 :v0",
        "ExpressionAttributeNames": {"#a0": "tags"},
        "ExpressionAttributeValues": {":v0": {"SS": ["a"]}},
    }


def test_clauses_are_emitted_in_fixed_order(schema: Schema) -> None:
    out = compile_update_sync(
        schema,
        {"nick": "Bob", "$ADD": {"count": 1}, "$REMOVE": ["friends"], "$DELETE": {"tags": "x"}},
    )

    assert out["UpdateExpression"] == "ADD #a1 :v1 REMOVE #a2 SET #a0 = :v0 DELETE #a3 :v2"
    assert out["ExpressionAttributeNames"] == {"#a0": "nick", "#a1": "count", "#a2": "friends", "#a3": "tags"}


def test_required_attributes_can_not_be_removed(schema: Schema) -> None:
    with pytest.raises(ValidationError, match="email is a required property"):
        compile_update_sync(schema, {"$REMOVE": ["email"]})
    with pytest.raises(ValidationError):
        compile_update_sync(schema, {"email": None})
    with pytest.raises(ValidationError):
        compile_update_sync(schema, {"email": UNDEFINED})

    assert compile_update_sync(schema, {"email": "a@b.c"})["UpdateExpression"] == "SET #a0 = :v0"


def test_invalid_updates(schema: Schema) -> None:
    with pytest.raises(InvalidParameter, match="cannot update key attribute: id"):
        compile_update_sync(schema, {"id": "x"})
    with pytest.raises(ValidationError, match="no updates provided"):
        compile_update_sync(schema, {})
    with pytest.raises(InvalidParameter, match="unknown update operator: \\$FOO"):
        compile_update_sync(schema, {"$FOO": {"nick": "x"}})
    with pytest.raises(InvalidParameter):
        compile_update_sync(schema, {"$SET": ["nick"]})


def test_add_and_delete_require_compatible_types(schema: Schema) -> None:
    with pytest.raises(TypeMismatch) as exc:
        compile_update_sync(schema, {"$ADD": {"nick": "x"}})
    assert str(exc.value) == "Expected nick to be of type number, set, array, instead found type string."

    with pytest.raises(TypeMismatch) as exc:
        compile_update_sync(schema, {"$DELETE": {"count": 1}})
    assert exc.value.expected == ("number",)
    assert exc.value.actual == "set"


@pytest.fixture
def combined() -> Schema:
    return Schema({"id": str, "first": str, "last": str, "full": Combine(["first", "last"])})


def test_combine_is_recomputed_when_all_sources_change(combined: Schema) -> None:
    out = compile_update_sync(combined, {"first": "A", "last": "B"})

    assert out["UpdateExpression"] == "SET #a0 = :v0, #a1 = :v1, #a2 = :v2"
    assert out["ExpressionAttributeNames"] == {"#a0": "first", "#a1": "last", "#a2": "full"}
    assert out["ExpressionAttributeValues"][":v2"] == {"S": "A,B"}


def test_combine_requires_every_source(combined: Schema) -> None:
    with pytest.raises(InvalidParameter) as exc:
        compile_update_sync(combined, {"first": "A"})
    assert str(exc.value) == (
        "You must update all or none of the combine attributes when updating full. "
        "Missing combine attributes: last."
    )

    with pytest.raises(InvalidParameter):
        compile_update_sync(combined, {"full": "A,B"})


def test_combine_is_removed_with_its_sources(combined: Schema) -> None:
    out = compile_update_sync(combined, {"$REMOVE": ["first", "last"]})
    assert out["UpdateExpression"] == "REMOVE #a0, #a1, #a2"
    assert out["ExpressionAttributeNames"]["#a2"] == "full"


def test_force_default_is_always_written() -> None:
    schema = Schema({"id": str, "version": attribute(int, default=1, force_default=True), "name": str})

    out = compile_update_sync(schema, {"name": "x"})
    assert out["UpdateExpression"] == "SET #a0 = :v0, #a1 = :v1"
    assert out["ExpressionAttributeNames"] == {"#a0": "name", "#a1": "version"}
    assert out["ExpressionAttributeValues"][":v1"] == {"N": "1"}

    out = compile_update_sync(schema, {"name": "x", "version": 5})
    assert out["ExpressionAttributeValues"][":v1"] == {"N": "1"}


def test_updated_at_is_stamped() -> None:
    schema = Schema({"id": str, "name": str}, timestamps=True)

    out = compile_update_sync(schema, {"name": "x"})
    assert_match(
        {
            "UpdateExpression": "SET #a0 = :v0, #a1 = :v1",
            "ExpressionAttributeNames": {"#a0": "name", "#a1": "updatedAt"},
            "ExpressionAttributeValues": {":v0": {"S": "x"}, ":v1": {"N": ANY}},
        },
        out,
    )
    assert "createdAt" not in out["ExpressionAttributeNames"].values()

    out = compile_update_sync(schema, {"updatedAt": 5})
    assert out["UpdateExpression"] == "SET #a0 = :v0"
    assert out["ExpressionAttributeValues"] == {":v0": {"N": "5"}}


def test_unknown_attributes(schema: Schema) -> None:
    with pytest.raises(UnknownAttribute, match="Invalid Attribute: nope"):
        compile_update_sync(schema, {"nope": 1})

    loose = Schema({"id": str}, save_unknown=True)
    out = compile_update_sync(loose, {"nope": 1, "$ADD": {"hits": 2}, "$REMOVE": ["gone"]})
    assert out["UpdateExpression"] == "ADD #a1 :v1 REMOVE #a2 SET #a0 = :v0"
    assert out["ExpressionAttributeNames"] == {"#a0": "nope", "#a1": "hits", "#a2": "gone"}

    with pytest.raises(TypeMismatch):
        compile_update_sync(loose, {"$ADD": {"hits": "x"}})


def test_values_pass_hooks_and_checks() -> None:
    schema = Schema(
        {
            "id": str,
            "name": attribute(str, set_=str.upper),
            "age": attribute(int, validate=lambda v: v > 0),
            "status": attribute(str, enum=["a", "b"]),
        }
    )

    out = compile_update_sync(schema, {"name": "bob"})
    assert out["ExpressionAttributeValues"] == {":v0": {"S": "BOB"}}

    with pytest.raises(ValidationError, match="age with a value of -1"):
        compile_update_sync(schema, {"age": -1})
    with pytest.raises(ValidationError, match="status must equal"):
        compile_update_sync(schema, {"status": "c"})
    with pytest.raises(TypeMismatch):
        compile_update_sync(schema, {"age": "x"})


def test_nested_required_attributes_are_enforced() -> None:
    schema = Schema({"id": str, "address": {"street": str, "zip": attribute(int, required=True)}})

    with pytest.raises(ValidationError, match="address.zip is a required property"):
        compile_update_sync(schema, {"address": {"street": "Main"}})

    out = compile_update_sync(schema, {"address": {"street": "Main", "zip": 1}})
    assert out["ExpressionAttributeValues"] == {":v0": {"M": {"street": {"S": "Main"}, "zip": {"N": "1"}}}}


@pytest.fixture
def documents() -> Schema:
    return Schema(
        {
            "id": str,
            "address": {
                "city": attribute(str, set_=str.title),
                "zip": attribute(int, required=True),
                "country": attribute(str, default="ES"),
            },
            "reps": [{"firstName": str, "tags": {str}}],
            "visits": [int],
            "meta": dict,
        }
    )


def test_nested_set_targets_the_document_path(documents: Schema) -> None:
    assert compile_update_sync(documents, {"address.city": "madrid"}) == {
        "UpdateExpression": "SET #a0_0.#a0_1 = :v0",
        "ExpressionAttributeNames": {"#a0_0": "address", "#a0_1": "city"},
        "ExpressionAttributeValues": {":v0": {"S": "Madrid"}},
    }

    out = compile_update_sync(documents, {"$SET": {"reps[0].firstName": "John"}})
    assert out == {
        "UpdateExpression": "SET #a0_0[0].#a0_1 = :v0",
        "ExpressionAttributeNames": {"#a0_0": "reps", "#a0_1": "firstName"},
        "ExpressionAttributeValues": {":v0": {"S": "John"}},
    }


def test_nested_values_are_type_checked(documents: Schema) -> None:
    with pytest.raises(TypeMismatch, match="Expected address.zip to be of type number"):
        compile_update_sync(documents, {"address.zip": "x"})
    with pytest.raises(UnknownAttribute, match="Invalid Attribute: address.nope"):
        compile_update_sync(documents, {"address.nope": 1})
    with pytest.raises(InvalidParameter, match="cannot update key attribute: id"):
        compile_update_sync(documents, {"id.part": "x"})


def test_indexed_remove(documents: Schema) -> None:
    assert compile_update_sync(documents, {"$REMOVE": ["visits[1]"]}) == {
        "UpdateExpression": "REMOVE #a0[1]",
        "ExpressionAttributeNames": {"#a0": "visits"},
    }


def test_properties_of_list_elements_can_not_be_removed(documents: Schema) -> None:
    with pytest.raises(InvalidParameter, match="properties of objects inside a list can not be removed"):
        compile_update_sync(documents, {"$REMOVE": ["reps[0].firstName"]})

    out = compile_update_sync(documents, {"$SET": {"reps[0].firstName": UNDEFINED}})
    assert out["UpdateExpression"] == "REMOVE #a0_0[0].#a0_1"


def test_nested_remove_honours_required_and_default(documents: Schema) -> None:
    with pytest.raises(ValidationError, match="address.zip is a required property"):
        compile_update_sync(documents, {"$REMOVE": ["address.zip"]})

    out = compile_update_sync(documents, {"$REMOVE": ["address.country"]})
    assert out["UpdateExpression"] == "SET #a0_0.#a0_1 = :v0"
    assert out["ExpressionAttributeValues"] == {":v0": {"S": "ES"}}


def test_nested_add_and_free_form_paths(documents: Schema) -> None:
    out = compile_update_sync(documents, {"$ADD": {"reps[0].tags": "x"}})
    assert out["UpdateExpression"] == "ADD #a0_0[0].#a0_1 :v0"
    assert out["ExpressionAttributeValues"] == {":v0": {"SS": ["x"]}}

    out = compile_update_sync(documents, {"meta.source": "web"})
    assert out == {
        "UpdateExpression": "SET #a0_0.#a0_1 = :v0",
        "ExpressionAttributeNames": {"#a0_0": "meta", "#a0_1": "source"},
        "ExpressionAttributeValues": {":v0": {"S": "web"}},
    }
