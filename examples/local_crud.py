from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass

import boto3

from dynamap_py import Dynamap, TableDefinition, between, increment


@dataclass
class Project:
    name: str
    version: str
    revision: int
    date: int | None = None


def _client():
    return boto3.client(
        "dynamodb",
        endpoint_url=os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"),
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


def main() -> None:
    logging.basicConfig(level=logging.DEBUG)
    client = _client()
    table_name = f"dynamap_py_example_{uuid.uuid4().hex[:12]}"

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
        db = Dynamap(client, tables=[TableDefinition(table_name)])
        db.register(
            Project,
            table=table_name,
            partition_key="{{name}}",
            sort_key="VER:{{version}}#REV:{{revision}}",
        )
        projects = db.get_repository(Project)

        projects.put({"name": "PROJECT_A", "version": "Initial", "revision": 515, "date": 1662541189})
        projects.put({"name": "PROJECT_A", "version": "Initial", "revision": 516, "date": 1662541300})

        print("get:", projects.get({"name": "PROJECT_A", "version": "Initial", "revision": 515}))
        print("query name:", projects.query({"name": "PROJECT_A"}))
        print(
            "query date between:",
            projects.query({"name": "PROJECT_A", "date": between(1662541000, 1662541200)}),
        )
        print(
            "update:",
            projects.update({"name": "PROJECT_A", "version": "Initial", "revision": 515, "date": increment(10)}),
        )
    finally:
        client.delete_table(TableName=table_name)


if __name__ == "__main__":
    main()
