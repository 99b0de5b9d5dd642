from __future__ import annotations

import base64
import json
import os
import time
from datetime import datetime, timezone
from typing import Any

import boto3
from id58 import uuid4_base58_22
from task_model import change_set
from task_model import new_task
from task_model import task_to_json
from task_model import validate_fields
from task_store import DynamoTaskStore


TABLE_NAME = os.environ.get("TABLE_NAME", "")
SCHEMA_VERSION = os.environ.get("TASKS_SCHEMA_VERSION", "2025-01-01")

RESOURCE_SEGMENT = "tasks"
INTERNAL_ERROR_MESSAGE = "internal server error"

CORS_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization",
    "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
    "Cache-Control": "no-store",
}


class MisconfiguredError(RuntimeError):
    """Raised when the function is deployed without its required environment."""


_ddb_resource: Any | None = None
_task_store: DynamoTaskStore | None = None


def _ddb() -> Any:
    global _ddb_resource
    if _ddb_resource is None:
        _ddb_resource = boto3.resource("dynamodb")
    return _ddb_resource


def _store() -> DynamoTaskStore:
    global _task_store
    if _task_store is None:
        _task_store = DynamoTaskStore(_ddb().Table(TABLE_NAME))
    return _task_store


def _now_iso() -> str:
    # Fixed-format UTC timestamp for lexicographic ordering.
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _response(status_code: int, body: Any) -> dict[str, Any]:
    return {
        "statusCode": int(status_code),
        "headers": dict(CORS_HEADERS),
        "body": json.dumps(body),
    }


def _error(status_code: int, code: str, message: str, request_id: str) -> dict[str, Any]:
    return _response(
        status_code,
        {"errorCode": code, "message": message, "requestId": request_id},
    )


def _not_found(request_id: str) -> dict[str, Any]:
    # Same answer for missing and foreign-owned tasks.
    return _error(404, "TASK_NOT_FOUND", "task not found", request_id)


def _preflight() -> dict[str, Any]:
    return {
        "statusCode": 200,
        "headers": dict(CORS_HEADERS),
        "body": "",
    }


def _request_id(event: dict[str, Any]) -> str:
    rc = event.get("requestContext") or {}
    if isinstance(rc, dict):
        rid = str(rc.get("requestId") or "").strip()
        if rid:
            return rid
    return uuid4_base58_22()


def _parse_body(event: dict[str, Any]) -> dict[str, Any]:
    """Decode the JSON object body; anything unusable reads as ``{}``."""
    raw = event.get("body")
    if not isinstance(raw, str):
        return {}
    if bool(event.get("isBase64Encoded")):
        try:
            raw = base64.b64decode(raw.encode("utf-8")).decode("utf-8")
        except ValueError:
            return {}
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except (ValueError, RecursionError):
        return {}
    if not isinstance(parsed, dict):
        return {}
    return parsed


def _claims(event: dict[str, Any]) -> dict[str, Any]:
    rc = event.get("requestContext") or {}
    if not isinstance(rc, dict):
        return {}
    auth = rc.get("authorizer") or {}
    if not isinstance(auth, dict):
        return {}
    claims = auth.get("claims")
    if isinstance(claims, dict):
        return claims
    jwt = auth.get("jwt")
    jwt_claims = jwt.get("claims") if isinstance(jwt, dict) else None
    if isinstance(jwt_claims, dict):
        return jwt_claims
    return {}


def _caller_identity(event: dict[str, Any]) -> str:
    return str(_claims(event).get("sub") or "").strip()


def _resource_segments(path: str) -> list[str] | None:
    # Tolerates stage and custom-domain prefixes ahead of /tasks.
    segments = [s for s in path.split("/") if s]
    if RESOURCE_SEGMENT not in segments:
        return None
    idx = segments.index(RESOURCE_SEGMENT)
    return segments[idx + 1 :]


def _path_task_id(event: dict[str, Any], segments: list[str]) -> str:
    params = event.get("pathParameters") or {}
    if isinstance(params, dict):
        tid = str(params.get("id") or "").strip()
        if tid:
            return tid
    return segments[0].strip() if segments else ""


def _list_tasks(store: DynamoTaskStore, owner_id: str) -> dict[str, Any]:
    items = store.scan_by_owner(owner_id)
    return _response(200, [task_to_json(item) for item in items])


def _get_task(store: DynamoTaskStore, owner_id: str, task_id: str, request_id: str) -> dict[str, Any]:
    item = store.get(task_id, owner_id)
    if not item:
        return _not_found(request_id)
    return _response(200, task_to_json(item))


def _create_task(
    store: DynamoTaskStore,
    owner_id: str,
    body: dict[str, Any],
    request_id: str,
) -> dict[str, Any]:
    invalid = validate_fields(body)
    if invalid:
        return _error(400, "INVALID_FIELD", invalid, request_id)

    task = new_task(body, task_id=uuid4_base58_22(), owner_id=owner_id, now=_now_iso())
    store.put(task)
    return _response(201, task_to_json(task))


def _update_task(
    store: DynamoTaskStore,
    owner_id: str,
    task_id: str,
    body: dict[str, Any],
    request_id: str,
) -> dict[str, Any]:
    invalid = validate_fields(body)
    if invalid:
        return _error(400, "INVALID_FIELD", invalid, request_id)

    updated = store.conditional_update(task_id, owner_id, change_set(body), _now_iso())
    if updated is None:
        return _not_found(request_id)
    return _response(200, task_to_json(updated))


def _delete_task(store: DynamoTaskStore, owner_id: str, task_id: str, request_id: str) -> dict[str, Any]:
    if not store.conditional_delete(task_id, owner_id):
        return _not_found(request_id)
    return _response(
        200,
        {"message": "task deleted", "taskId": task_id, "requestId": request_id},
    )


def _route(event: dict[str, Any], request_id: str, wide_event: dict[str, Any]) -> dict[str, Any]:
    method = str(event.get("httpMethod") or "").upper()
    path = str(event.get("path") or "").strip()

    if method == "OPTIONS":
        wide_event["operation"] = "preflight"
        return _preflight()

    owner_id = _caller_identity(event)
    if not owner_id:
        return _error(401, "UNAUTHORIZED", "missing authorizer claims", request_id)
    wide_event["owner_sub"] = owner_id

    segments = _resource_segments(path)
    if segments is None or len(segments) > 1:
        return _error(404, "ROUTE_NOT_FOUND", f"route not found: {method} {path}", request_id)

    task_id = _path_task_id(event, segments)

    # /tasks
    if not task_id:
        if method == "GET":
            wide_event["operation"] = "list"
            return _list_tasks(_store(), owner_id)
        if method == "POST":
            wide_event["operation"] = "create"
            return _create_task(_store(), owner_id, _parse_body(event), request_id)
        if method in {"PUT", "DELETE"}:
            return _error(400, "TASK_ID_REQUIRED", "task id is required", request_id)
        return _error(405, "METHOD_NOT_ALLOWED", f"method not allowed: {method}", request_id)

    # /tasks/{id}
    wide_event["task_id"] = task_id
    if method == "GET":
        wide_event["operation"] = "get"
        return _get_task(_store(), owner_id, task_id, request_id)
    if method == "PUT":
        wide_event["operation"] = "update"
        return _update_task(_store(), owner_id, task_id, _parse_body(event), request_id)
    if method == "DELETE":
        wide_event["operation"] = "delete"
        return _delete_task(_store(), owner_id, task_id, request_id)
    return _error(405, "METHOD_NOT_ALLOWED", f"method not allowed: {method}", request_id)


def _outcome(resp: dict[str, Any]) -> str:
    if int(resp["statusCode"]) < 400:
        return "success"
    try:
        body = json.loads(resp.get("body") or "{}")
    except ValueError:
        return "error"
    return str(body.get("errorCode") or "error").lower()


def handler(event: dict[str, Any], _context: Any) -> dict[str, Any]:
    start = time.time()
    request_id = _request_id(event)
    wide_event: dict[str, Any] = {
        "event": "tasks_api_request",
        "schema_version": SCHEMA_VERSION,
        "ts": _now_iso(),
        "request_id": request_id,
        "method": str(event.get("httpMethod") or "").upper(),
        "path": str(event.get("path") or ""),
    }

    try:
        if not TABLE_NAME:
            wide_event["outcome"] = "misconfigured"
            raise MisconfiguredError("TABLE_NAME environment variable is not set")

        try:
            resp = _route(event, request_id, wide_event)
            wide_event["outcome"] = _outcome(resp)
        except Exception as exc:
            wide_event["outcome"] = "error"
            wide_event["error"] = {"type": type(exc).__name__, "message": str(exc)}
            resp = _error(500, "INTERNAL_ERROR", INTERNAL_ERROR_MESSAGE, request_id)

        wide_event["status_code"] = int(resp["statusCode"])
        return resp
    finally:
        wide_event["duration_ms"] = int((time.time() - start) * 1000)
        print(json.dumps(wide_event, separators=(",", ":"), sort_keys=True))
