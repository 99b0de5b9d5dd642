import copy
import importlib
import sys
from pathlib import Path
from typing import Any

import pytest
from botocore.exceptions import ClientError

LAMBDA_DIR = str(Path(__file__).resolve().parents[1] / "lambda")


def load_lambda_module(name: str):
    if LAMBDA_DIR not in sys.path:
        sys.path.insert(0, LAMBDA_DIR)
    mod = importlib.import_module(name)
    return importlib.reload(mod)


def _conditional_failure(operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {
                "Code": "ConditionalCheckFailedException",
                "Message": "The conditional request failed",
            }
        },
        operation,
    )


class FakeTasksTable:
    """In-memory stand-in for a boto3 ``dynamodb.Table`` keyed by (id, ownerId).

    Supports the calls the task store makes, including ``attribute_exists``
    conditions, and pages scans so ``LastEvaluatedKey`` handling is exercised.
    """

    def __init__(self, *, page_size: int = 2) -> None:
        self.items: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: list[str] = []
        self.page_size = page_size

    @staticmethod
    def _key(key: dict[str, Any]) -> tuple[str, str]:
        return str(key["id"]), str(key["ownerId"])

    def _check_exists(self, key: tuple[str, str], condition: str | None, operation: str) -> None:
        if condition == "attribute_exists(id)" and key not in self.items:
            raise _conditional_failure(operation)

    def get_item(self, *, Key, ConsistentRead=False):
        self.calls.append("get_item")
        item = self.items.get(self._key(Key))
        if item is None:
            return {}
        return {"Item": copy.deepcopy(item)}

    def put_item(self, *, Item):
        self.calls.append("put_item")
        self.items[self._key(Item)] = copy.deepcopy(Item)
        return {}

    def scan(self, *, FilterExpression=None, ExclusiveStartKey=None):
        self.calls.append("scan")
        keys = sorted(self.items)
        start = 0
        if ExclusiveStartKey:
            start = keys.index(self._key(ExclusiveStartKey)) + 1
        page_keys = keys[start : start + self.page_size]

        matched: list[dict[str, Any]] = []
        for key in page_keys:
            item = self.items[key]
            if FilterExpression is not None:
                expr = FilterExpression.get_expression()
                attr, value = expr["values"]
                if item.get(attr.name) != value:
                    continue
            matched.append(copy.deepcopy(item))

        out: dict[str, Any] = {"Items": matched}
        if start + self.page_size < len(keys):
            last_id, last_owner = page_keys[-1]
            out["LastEvaluatedKey"] = {"id": last_id, "ownerId": last_owner}
        return out

    def update_item(
        self,
        *,
        Key,
        UpdateExpression,
        ExpressionAttributeValues,
        ExpressionAttributeNames=None,
        ConditionExpression=None,
        ReturnValues="NONE",
    ):
        self.calls.append("update_item")
        key = self._key(Key)
        self._check_exists(key, ConditionExpression, "UpdateItem")

        names = ExpressionAttributeNames or {}
        assert UpdateExpression.startswith("SET ")
        item = self.items.setdefault(key, {"id": key[0], "ownerId": key[1]})
        for assignment in UpdateExpression[len("SET ") :].split(", "):
            name_ref, value_ref = [part.strip() for part in assignment.split("=")]
            item[names.get(name_ref, name_ref)] = ExpressionAttributeValues[value_ref]

        if ReturnValues == "ALL_NEW":
            return {"Attributes": copy.deepcopy(item)}
        return {}

    def delete_item(self, *, Key, ConditionExpression=None):
        self.calls.append("delete_item")
        key = self._key(Key)
        self._check_exists(key, ConditionExpression, "DeleteItem")
        self.items.pop(key, None)
        return {}


class ThrottledTasksTable:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def _fail(self, operation: str):
        self.calls.append(operation)
        raise ClientError(
            {
                "Error": {
                    "Code": "ProvisionedThroughputExceededException",
                    "Message": "Rate of requests exceeds the allowed throughput",
                }
            },
            operation,
        )

    def get_item(self, **_kwargs):
        self._fail("GetItem")

    def put_item(self, **_kwargs):
        self._fail("PutItem")

    def scan(self, **_kwargs):
        self._fail("Scan")

    def update_item(self, **_kwargs):
        self._fail("UpdateItem")

    def delete_item(self, **_kwargs):
        self._fail("DeleteItem")


@pytest.fixture()
def fake_table() -> FakeTasksTable:
    return FakeTasksTable()
