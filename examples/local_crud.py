from __future__ import annotations

import asyncio
import os
import uuid

import boto3

from dynaschema import (
    ModelDefinition,
    attribute,
    build_get_request,
    build_put_request,
    build_query_request,
    build_update_request,
    decode_items,
    from_wire,
    where,
)


def _client():
    return boto3.client(
        "dynamodb",
        endpoint_url=os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"),
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


async def _run(client, model: ModelDefinition) -> None:
    for sk, value in (("001", 1), ("010", 10), ("100", 100)):
        client.put_item(**await build_put_request(model, {"pk": "A", "sk": sk, "value": value, "tags": {"note"}}))

    got = client.get_item(**build_get_request(model, {"pk": "A", "sk": "010"}, consistent_read=True))
    print("get:", await from_wire(got["Item"], model))

    updated = client.update_item(
        **await build_update_request(
            model,
            {"pk": "A", "sk": "010"},
            {"$ADD": {"value": 5, "tags": "edited"}},
            condition=where("value").lt(100),
        )
    )
    print("update:", await from_wire(updated["Attributes"], model))

    page = client.query(**await build_query_request(model, where("pk").eq("A").and_().where("sk").begins_with("0")))
    print("query begins_with('0'):", await decode_items(model, page["Items"]))


def main() -> None:
    client = _client()
    table_name = f"dynaschema_example_{uuid.uuid4().hex[:12]}"

    client.create_table(
        TableName=table_name,
        KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}, {"AttributeName": "sk", "KeyType": "RANGE"}],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    client.get_waiter("table_exists").wait(TableName=table_name)

    try:
        model = ModelDefinition.define(
            "Note",
            {"pk": str, "sk": attribute(str, range_key=True), "value": int, "tags": {str}},
            table_name=table_name,
        )
        asyncio.run(_run(client, model))
    finally:
        client.delete_table(TableName=table_name)


if __name__ == "__main__":
    main()
