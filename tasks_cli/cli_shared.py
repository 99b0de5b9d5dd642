from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass
from typing import Any


class TasksCliError(Exception):
    pass


class UsageError(TasksCliError):
    pass


class OpError(TasksCliError):
    pass


TASKS_API_ENDPOINT = "TASKS_API_ENDPOINT"
TASKS_ID_TOKEN = "TASKS_ID_TOKEN"


def _eprint(msg: str) -> None:
    print(msg, file=sys.stderr)


@dataclass(frozen=True)
class GlobalOpts:
    endpoint: str | None
    id_token: str | None
    pretty: bool = False
    json_output: bool = False


def _env_or_none(*names: str) -> str | None:
    for n in names:
        v = (os.environ.get(n) or "").strip()
        if v:
            return v
    return None


def _print_json(obj: Any, *, pretty: bool) -> None:
    if pretty:
        sys.stdout.write(json.dumps(obj, indent=2, sort_keys=True) + "\n")
    else:
        sys.stdout.write(json.dumps(obj, separators=(",", ":"), sort_keys=True) + "\n")
