from __future__ import annotations

from dynaschema import ModelDefinition, attribute, from_wire_sync

MODEL = ModelDefinition.define(
    "Note",
    {"pk": str, "sk": attribute(str, range_key=True), "value": int, "tags": {str}},
)


def handler(event, context):  # noqa: ANN001, ARG001
    records = event.get("Records", [])
    for record in records:
        image = record.get("dynamodb", {}).get("NewImage")
        if not image:
            continue
        note = from_wire_sync(image, MODEL)
        if note is None:
            continue
        print("note:", note)
