import pytest
from botocore.exceptions import ClientError

from conftest import FakeTasksTable
from conftest import ThrottledTasksTable
from conftest import load_lambda_module


def _store(table):
    mod = load_lambda_module("task_store")
    return mod.DynamoTaskStore(table)


def _seed(table: FakeTasksTable, task_id: str, owner_id: str, **fields):
    item = {
        "id": task_id,
        "ownerId": owner_id,
        "title": "seeded",
        "status": "pending",
        "priority": "medium",
        "createdAt": "2025-01-01T00:00:00.000000Z",
        "updatedAt": "2025-01-01T00:00:00.000000Z",
    }
    item.update(fields)
    table.items[(task_id, owner_id)] = item
    return item


def test_get_uses_compound_key_with_consistent_read():
    captured: dict = {}

    class FakeTasks:
        def get_item(self, *, Key, ConsistentRead):
            captured["key"] = Key
            captured["consistent"] = ConsistentRead
            return {}

    store = _store(FakeTasks())

    assert store.get("task-1", "sub-1") is None
    assert captured["key"] == {"id": "task-1", "ownerId": "sub-1"}
    assert captured["consistent"] is True


def test_scan_by_owner_follows_pagination():
    table = FakeTasksTable(page_size=1)
    for i in range(3):
        _seed(table, f"a-{i}", "sub-1")
    _seed(table, "b-0", "sub-2")
    store = _store(table)

    items = store.scan_by_owner("sub-1")

    assert sorted(i["id"] for i in items) == ["a-0", "a-1", "a-2"]
    assert table.calls.count("scan") == 4


def test_conditional_update_sends_placeholders_and_condition():
    captured: dict = {}

    class FakeTasks:
        def update_item(self, **kwargs):
            captured.update(kwargs)
            return {"Attributes": {"id": "task-1", "ownerId": "sub-1", "status": "completed"}}

    store = _store(FakeTasks())

    out = store.conditional_update(
        "task-1",
        "sub-1",
        {"status": "completed", "title": "renamed"},
        "2025-02-01T00:00:00.000000Z",
    )

    assert out["status"] == "completed"
    assert captured["Key"] == {"id": "task-1", "ownerId": "sub-1"}
    assert captured["ConditionExpression"] == "attribute_exists(id)"
    assert captured["ReturnValues"] == "ALL_NEW"
    assert captured["UpdateExpression"] == (
        "SET #updatedAt = :updatedAt, #title = :title, #status = :status"
    )
    assert captured["ExpressionAttributeNames"] == {
        "#updatedAt": "updatedAt",
        "#title": "title",
        "#status": "status",
    }
    assert captured["ExpressionAttributeValues"] == {
        ":updatedAt": "2025-02-01T00:00:00.000000Z",
        ":title": "renamed",
        ":status": "completed",
    }


def test_conditional_update_rejects_fields_outside_whitelist():
    store = _store(FakeTasksTable())

    with pytest.raises(ValueError, match="ownerId"):
        store.conditional_update("task-1", "sub-1", {"ownerId": "sub-2"}, "2025-02-01T00:00:00.000000Z")


def test_conditional_update_returns_none_when_missing():
    table = FakeTasksTable()
    store = _store(table)

    assert store.conditional_update("task-1", "sub-1", {"title": "x"}, "2025-02-01T00:00:00.000000Z") is None
    assert table.items == {}


def test_conditional_update_only_touches_changed_fields():
    table = FakeTasksTable()
    _seed(table, "task-1", "sub-1", description="keep")
    store = _store(table)

    out = store.conditional_update("task-1", "sub-1", {"priority": "low"}, "2025-02-01T00:00:00.000000Z")

    assert out["priority"] == "low"
    assert out["description"] == "keep"
    assert out["title"] == "seeded"
    assert out["updatedAt"] == "2025-02-01T00:00:00.000000Z"
    assert out["createdAt"] == "2025-01-01T00:00:00.000000Z"


def test_conditional_delete_reports_existence():
    table = FakeTasksTable()
    _seed(table, "task-1", "sub-1")
    store = _store(table)

    assert store.conditional_delete("task-1", "sub-2") is False
    assert store.conditional_delete("task-1", "sub-1") is True
    assert store.conditional_delete("task-1", "sub-1") is False
    assert table.items == {}


@pytest.mark.parametrize(
    "call",
    [
        lambda s: s.get("task-1", "sub-1"),
        lambda s: s.put({"id": "task-1", "ownerId": "sub-1"}),
        lambda s: s.scan_by_owner("sub-1"),
        lambda s: s.conditional_update("task-1", "sub-1", {}, "2025-02-01T00:00:00.000000Z"),
        lambda s: s.conditional_delete("task-1", "sub-1"),
    ],
)
def test_other_client_errors_propagate(call):
    store = _store(ThrottledTasksTable())

    with pytest.raises(ClientError):
        call(store)
