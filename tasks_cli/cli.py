from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

import click
import typer
from rich.console import Console
from rich.markup import escape

from . import __version__
from .auth_inputs import AuthInputError
from .auth_inputs import resolve_tasks_request_auth
from .cli_shared import TASKS_API_ENDPOINT
from .cli_shared import TASKS_ID_TOKEN
from .cli_shared import GlobalOpts
from .cli_shared import OpError
from .cli_shared import UsageError
from .cli_shared import _eprint
from .cli_shared import _env_or_none
from .cli_shared import _print_json

_ERROR_CONSOLE = Console(stderr=True)

TASK_FIELDS = ("title", "description", "status", "priority")


def _http_request(
    *,
    method: str,
    url: str,
    headers: dict[str, str],
    body: bytes | None = None,
    timeout_seconds: int = 30,
) -> tuple[int, dict[str, str], bytes]:
    req = Request(url, data=body, method=str(method).upper())
    for k, v in headers.items():
        req.add_header(k, v)
    try:
        with urlopen(req, timeout=timeout_seconds) as resp:
            status = getattr(resp, "status", 200)
            hdrs = {k.lower(): v for k, v in dict(resp.headers).items()}
            data = resp.read()
            return int(status), hdrs, data
    except HTTPError as e:
        hdrs = {k.lower(): v for k, v in dict(e.headers or {}).items()}
        data = e.read() if hasattr(e, "read") else b""
        return int(getattr(e, "code", 0) or 0), hdrs, data
    except URLError as e:
        raise OpError(f"http request failed: {e}") from e


def _tasks_auth(g: GlobalOpts) -> tuple[str, str]:
    try:
        auth = resolve_tasks_request_auth(
            endpoint=g.endpoint,
            id_token=g.id_token,
            env_or_none=_env_or_none,
            endpoint_env_names=(TASKS_API_ENDPOINT,),
            id_token_env_names=(TASKS_ID_TOKEN,),
        )
    except AuthInputError as e:
        raise UsageError(str(e)) from e
    return auth.endpoint, auth.id_token


def _task_path(task_id: str) -> str:
    tid = str(task_id or "").strip()
    if not tid:
        raise UsageError("task id is required")
    return "/" + quote(tid, safe="")


def _tasks_request(
    *,
    method: str,
    endpoint: str,
    id_token: str,
    path: str = "",
    body_obj: dict[str, Any] | None = None,
) -> Any:
    url = f"{endpoint.rstrip('/')}{path}"

    body_bytes = None
    headers = {
        "authorization": f"Bearer {id_token}",
    }
    if body_obj is not None:
        body_bytes = json.dumps(body_obj, separators=(",", ":")).encode("utf-8")
        headers["content-type"] = "application/json"

    status, _hdrs, data = _http_request(
        method=method,
        url=url,
        headers=headers,
        body=body_bytes,
    )
    text = data.decode("utf-8", errors="replace")
    parsed: Any
    try:
        parsed = json.loads(text) if text else {}
    except ValueError:
        parsed = {"raw": text}

    if status < 200 or status >= 300:
        if isinstance(parsed, dict):
            msg = str(parsed.get("message") or parsed.get("error") or text).strip()
            code = str(parsed.get("errorCode") or "").strip()
            if code:
                msg = f"{msg} ({code})"
        else:
            msg = str(parsed)
        raise OpError(f"tasks request failed: status={status} method={method} path={path or '/'} message={msg}")

    return parsed


def _cell(value: Any) -> str:
    text = str(value or "").strip()
    if not text:
        return "-"
    return text


def _local_short_timestamp(value: Any) -> str:
    raw = str(value or "").strip()
    if not raw:
        return "-"
    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return raw
    return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_table(*, headers: list[str], rows: list[list[str]], empty_message: str) -> None:
    if not rows:
        sys.stdout.write(f"{empty_message}\n")
        return
    widths: list[int] = [len(h) for h in headers]
    for row in rows:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], len(val))
    header_line = "  ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    divider_line = "  ".join("-" * widths[i] for i in range(len(headers)))
    sys.stdout.write(header_line + "\n")
    sys.stdout.write(divider_line + "\n")
    for row in rows:
        sys.stdout.write("  ".join(row[i].ljust(widths[i]) for i in range(len(headers))).rstrip() + "\n")


def _task_summary(task: dict[str, Any]) -> str:
    return (
        f"{_cell(task.get('id'))} status={_cell(task.get('status'))} "
        f"priority={_cell(task.get('priority'))}"
    )


def _task_body(args: argparse.Namespace) -> dict[str, Any]:
    body: dict[str, Any] = {}
    for field in TASK_FIELDS:
        value = getattr(args, field, None)
        if value is not None:
            body[field] = value
    return body


def cmd_tasks_list(args: argparse.Namespace, g: GlobalOpts) -> int:
    endpoint, id_token = _tasks_auth(g)
    out = _tasks_request(method="GET", endpoint=endpoint, id_token=id_token)
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    rows: list[list[str]] = []
    for task in out if isinstance(out, list) else []:
        if not isinstance(task, dict):
            continue
        rows.append(
            [
                _cell(task.get("id")),
                _cell(task.get("status")),
                _cell(task.get("priority")),
                _local_short_timestamp(task.get("updatedAt")),
                _cell(task.get("title")),
            ]
        )
    _print_table(
        headers=["ID", "STATUS", "PRIORITY", "UPDATED", "TITLE"],
        rows=rows,
        empty_message="no tasks",
    )
    return 0


def cmd_tasks_get(args: argparse.Namespace, g: GlobalOpts) -> int:
    path = _task_path(args.task_id)
    endpoint, id_token = _tasks_auth(g)
    out = _tasks_request(method="GET", endpoint=endpoint, id_token=id_token, path=path)
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    for key in ("id", "title", "description", "status", "priority", "createdAt", "updatedAt"):
        if key not in out:
            continue
        value = out.get(key)
        if key in {"createdAt", "updatedAt"}:
            value = _local_short_timestamp(value)
        sys.stdout.write(f"{key}: {value}\n")
    return 0


def cmd_tasks_create(args: argparse.Namespace, g: GlobalOpts) -> int:
    body = _task_body(args)
    endpoint, id_token = _tasks_auth(g)
    out = _tasks_request(method="POST", endpoint=endpoint, id_token=id_token, body_obj=body)
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    sys.stdout.write(f"created task {_task_summary(out)}\n")
    return 0


def cmd_tasks_update(args: argparse.Namespace, g: GlobalOpts) -> int:
    path = _task_path(args.task_id)
    body = _task_body(args)
    if not body:
        raise UsageError("nothing to update (pass --title, --description, --status or --priority)")
    endpoint, id_token = _tasks_auth(g)
    out = _tasks_request(method="PUT", endpoint=endpoint, id_token=id_token, path=path, body_obj=body)
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    sys.stdout.write(f"updated task {_task_summary(out)}\n")
    return 0


def cmd_tasks_delete(args: argparse.Namespace, g: GlobalOpts) -> int:
    path = _task_path(args.task_id)
    endpoint, id_token = _tasks_auth(g)
    out = _tasks_request(method="DELETE", endpoint=endpoint, id_token=id_token, path=path)
    if g.json_output:
        _print_json(out, pretty=g.pretty)
        return 0
    sys.stdout.write(f"deleted task {_cell(out.get('taskId') or args.task_id)}\n")
    return 0


def _rich_error(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[bold red]error:[/bold red] {escape(msg)}", highlight=False, soft_wrap=True)


def _render_usage_error_with_help(*, message: str, ctx: click.Context | None = None) -> None:
    _rich_error(message)
    if isinstance(ctx, click.Context):
        help_text = str(ctx.get_help() or "").strip()
        if help_text:
            _eprint("")
            _eprint(help_text)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tasks {__version__}")
        raise typer.Exit(code=0)


app = typer.Typer(
    name="tasks",
    help="Manage your tasks through the tasks API.",
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def app_callback(
    ctx: typer.Context,
    endpoint: str | None = typer.Option(
        None,
        "--endpoint",
        help="Tasks API base URL, ending in /tasks or at the stage root (env override: TASKS_API_ENDPOINT)",
    ),
    id_token: str | None = typer.Option(
        None,
        "--id-token",
        help="Cognito ID token (env override: TASKS_ID_TOKEN)",
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit raw JSON API responses"),
    pretty: bool = typer.Option(False, "--pretty", help="Indent JSON output"),
    version: bool | None = typer.Option(
        None,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    ctx.obj = {
        "g": GlobalOpts(
            endpoint=endpoint,
            id_token=id_token,
            pretty=bool(pretty),
            json_output=bool(json_output),
        )
    }


def _ctx_global(ctx: typer.Context) -> GlobalOpts:
    obj = ctx.find_root().obj
    if isinstance(obj, dict) and isinstance(obj.get("g"), GlobalOpts):
        return obj["g"]
    return GlobalOpts(endpoint=None, id_token=None)


def _invoke(ctx: typer.Context, func: Any, **kwargs: Any) -> None:
    g = _ctx_global(ctx)
    args = argparse.Namespace(**kwargs)
    try:
        code = int(func(args, g))
    except UsageError as e:
        _render_usage_error_with_help(message=str(e), ctx=ctx)
        raise typer.Exit(code=2)
    except OpError as e:
        _rich_error(str(e))
        raise typer.Exit(code=1)

    if code:
        raise typer.Exit(code=code)


@app.command("list", help="List your tasks.")
def tasks_list(ctx: typer.Context) -> None:
    _invoke(ctx, cmd_tasks_list)


@app.command("get", help="Show one task.")
def tasks_get(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
) -> None:
    _invoke(ctx, cmd_tasks_get, task_id=task_id)


@app.command("create", help="Create a task.")
def tasks_create(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Task title"),
    description: str | None = typer.Option(None, "--description", help="Optional description"),
    status: str | None = typer.Option(None, "--status", help="pending|in_progress|completed (default pending)"),
    priority: str | None = typer.Option(None, "--priority", help="high|medium|low (default medium)"),
) -> None:
    _invoke(
        ctx,
        cmd_tasks_create,
        title=title,
        description=description,
        status=status,
        priority=priority,
    )


@app.command("update", help="Change one or more fields of a task.")
def tasks_update(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
    title: str | None = typer.Option(None, "--title", help="New title"),
    description: str | None = typer.Option(None, "--description", help="New description"),
    status: str | None = typer.Option(None, "--status", help="pending|in_progress|completed"),
    priority: str | None = typer.Option(None, "--priority", help="high|medium|low"),
) -> None:
    _invoke(
        ctx,
        cmd_tasks_update,
        task_id=task_id,
        title=title,
        description=description,
        status=status,
        priority=priority,
    )


@app.command("delete", help="Delete a task.")
def tasks_delete(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
) -> None:
    _invoke(ctx, cmd_tasks_delete, task_id=task_id)


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    try:
        result = app(args=argv, prog_name="tasks", standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except click.ClickException as e:
        if isinstance(e, click.UsageError):
            _render_usage_error_with_help(message=e.format_message(), ctx=getattr(e, "ctx", None))
            return int(e.exit_code)
        _rich_error(e.format_message())
        return int(e.exit_code)


if __name__ == "__main__":
    raise SystemExit(main())
