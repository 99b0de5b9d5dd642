from __future__ import annotations

from typing import Any

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_COMPLETED)

PRIORITY_HIGH = "high"
PRIORITY_MEDIUM = "medium"
PRIORITY_LOW = "low"
PRIORITIES = (PRIORITY_HIGH, PRIORITY_MEDIUM, PRIORITY_LOW)

DEFAULT_STATUS = STATUS_PENDING
DEFAULT_PRIORITY = PRIORITY_MEDIUM

# The only fields a client may change after creation.
UPDATABLE_FIELDS = ("title", "description", "status", "priority")

_ENUM_FIELDS = {
    "status": STATUSES,
    "priority": PRIORITIES,
}


def _present(body: dict[str, Any], field: str) -> bool:
    return field in body and body[field] is not None


def validate_fields(body: dict[str, Any]) -> str | None:
    """Return a message for the first present field with an unusable value.

    Empty strings are accepted everywhere; for ``status`` and ``priority`` an
    empty string means "use the default" on create.
    """
    for field in UPDATABLE_FIELDS:
        if not _present(body, field):
            continue
        value = body[field]
        if not isinstance(value, str):
            return f"{field} must be a string"
        allowed = _ENUM_FIELDS.get(field)
        if allowed and value and value not in allowed:
            return f"{field} must be one of: {', '.join(allowed)}"
    return None


def new_task(body: dict[str, Any], *, task_id: str, owner_id: str, now: str) -> dict[str, Any]:
    item: dict[str, Any] = {
        "id": task_id,
        "ownerId": owner_id,
        "title": body.get("title") or "",
        "status": body.get("status") or DEFAULT_STATUS,
        "priority": body.get("priority") or DEFAULT_PRIORITY,
        "createdAt": now,
        "updatedAt": now,
    }
    if _present(body, "description"):
        item["description"] = body["description"]
    return item


def change_set(body: dict[str, Any]) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for field in UPDATABLE_FIELDS:
        if not _present(body, field):
            continue
        value = body[field]
        if field in _ENUM_FIELDS and not value:
            continue
        changes[field] = value
    return changes


def task_to_json(item: dict[str, Any]) -> dict[str, Any]:
    out = {
        "id": str(item.get("id") or ""),
        "ownerId": str(item.get("ownerId") or ""),
        "title": str(item.get("title") or ""),
        "status": str(item.get("status") or DEFAULT_STATUS),
        "priority": str(item.get("priority") or DEFAULT_PRIORITY),
        "createdAt": str(item.get("createdAt") or ""),
        "updatedAt": str(item.get("updatedAt") or ""),
    }
    if item.get("description") is not None:
        out["description"] = str(item["description"])
    return out
