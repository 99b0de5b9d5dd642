from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError
from task_model import UPDATABLE_FIELDS

PARTITION_KEY = "id"
SORT_KEY = "ownerId"


def _is_conditional_failure(e: ClientError) -> bool:
    code = str(e.response.get("Error", {}).get("Code") or "")
    return code == "ConditionalCheckFailedException"


class DynamoTaskStore:
    """Task persistence keyed by (id, ownerId).

    ``table`` is a boto3 ``dynamodb.Table`` resource. Update and delete are
    single conditional calls so the existence check and the write are atomic.
    """

    def __init__(self, table: Any) -> None:
        self._table = table

    @staticmethod
    def _key(task_id: str, owner_id: str) -> dict[str, str]:
        return {PARTITION_KEY: task_id, SORT_KEY: owner_id}

    def get(self, task_id: str, owner_id: str) -> dict[str, Any] | None:
        resp = self._table.get_item(Key=self._key(task_id, owner_id), ConsistentRead=True)
        item = resp.get("Item") if isinstance(resp, dict) else None
        return item or None

    def put(self, task: dict[str, Any]) -> None:
        self._table.put_item(Item=task)

    def scan_by_owner(self, owner_id: str) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        start_key: dict[str, Any] | None = None
        while True:
            kwargs: dict[str, Any] = {
                "FilterExpression": Attr(SORT_KEY).eq(owner_id),
            }
            if start_key:
                kwargs["ExclusiveStartKey"] = start_key
            page = self._table.scan(**kwargs)
            for item in page.get("Items", []) or []:
                if isinstance(item, dict):
                    out.append(item)
            start_key = page.get("LastEvaluatedKey")
            if not start_key:
                return out

    def conditional_update(
        self,
        task_id: str,
        owner_id: str,
        changes: dict[str, Any],
        updated_at: str,
    ) -> dict[str, Any] | None:
        unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValueError(f"fields are not updatable: {', '.join(unknown)}")

        expr_names = {"#updatedAt": "updatedAt"}
        expr_values: dict[str, Any] = {":updatedAt": updated_at}
        assignments = ["#updatedAt = :updatedAt"]
        # Placeholders for every attribute; "status" is a DynamoDB reserved word.
        for field in UPDATABLE_FIELDS:
            if field not in changes:
                continue
            expr_names[f"#{field}"] = field
            expr_values[f":{field}"] = changes[field]
            assignments.append(f"#{field} = :{field}")

        try:
            out = self._table.update_item(
                Key=self._key(task_id, owner_id),
                UpdateExpression="SET " + ", ".join(assignments),
                ConditionExpression=f"attribute_exists({PARTITION_KEY})",
                ExpressionAttributeNames=expr_names,
                ExpressionAttributeValues=expr_values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                return None
            raise
        return out.get("Attributes") or {}

    def conditional_delete(self, task_id: str, owner_id: str) -> bool:
        try:
            self._table.delete_item(
                Key=self._key(task_id, owner_id),
                ConditionExpression=f"attribute_exists({PARTITION_KEY})",
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            raise
        return True
