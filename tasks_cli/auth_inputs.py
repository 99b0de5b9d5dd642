from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence
from urllib.parse import urlparse


class AuthInputError(ValueError):
    """Raised when CLI auth inputs are missing or conflicting."""


class MissingEndpointError(AuthInputError):
    """Raised when an endpoint is required but missing."""


class InvalidTokenShapeError(AuthInputError):
    """Raised when a supplied token is not in JWT shape."""


class PreflightValidationError(AuthInputError):
    """Raised when strict client-side preflight validation fails."""


@dataclass(frozen=True)
class CognitoHttpRequestAuth:
    endpoint: str
    id_token: str


def _require_non_empty(val: str | None, *, name: str, hint: str) -> str:
    out = (val or "").strip()
    if not out:
        raise AuthInputError(f"missing {name} ({hint})")
    return out


def preflight_cognito_http_request(
    *,
    endpoint: str,
    id_token: str,
    endpoint_name: str,
    token_name: str,
    expected_base_path: str | None = None,
) -> CognitoHttpRequestAuth:
    endpoint_value = (endpoint or "").strip().rstrip("/")
    if not endpoint_value:
        raise MissingEndpointError(f"missing {endpoint_name} (pass --endpoint)")

    parsed = urlparse(endpoint_value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise PreflightValidationError(
            f"{endpoint_name} must be an http(s) URL; got {endpoint_value!r}"
        )

    if expected_base_path:
        marker = expected_base_path.strip()
        if marker and not parsed.path.rstrip("/").endswith(marker):
            raise PreflightValidationError(
                f"{endpoint_name} must end with {marker!r}; got {endpoint_value!r}"
            )

    token_value = _require_non_empty(
        id_token,
        name=token_name,
        hint="pass --id-token",
    )
    parts = token_value.split(".")
    if len(parts) != 3 or any(not p.strip() for p in parts):
        raise InvalidTokenShapeError(
            f"{token_name} is not a JWT (expected 3 dot-separated segments)"
        )

    return CognitoHttpRequestAuth(endpoint=endpoint_value, id_token=token_value)


def _with_tasks_path(endpoint: str) -> str:
    """Append /tasks to a stage-root URL; leave anything else for preflight."""
    parsed = urlparse(endpoint)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return endpoint
    if parsed.path.rstrip("/").endswith("/tasks"):
        return endpoint
    return endpoint.rstrip("/") + "/tasks"


def resolve_tasks_request_auth(
    *,
    endpoint: str | None,
    id_token: str | None,
    env_or_none: Callable[..., str | None],
    endpoint_env_names: Sequence[str] = ("TASKS_API_ENDPOINT",),
    id_token_env_names: Sequence[str] = ("TASKS_ID_TOKEN",),
) -> CognitoHttpRequestAuth:
    """Resolve flags first, then env, then validate shape before any request."""

    endpoint_hint_env = str(endpoint_env_names[0]).strip() if endpoint_env_names else "TASKS_API_ENDPOINT"
    token_hint_env = str(id_token_env_names[0]).strip() if id_token_env_names else "TASKS_ID_TOKEN"

    resolved_endpoint = (endpoint or env_or_none(*endpoint_env_names) or "").strip()
    if not resolved_endpoint:
        raise MissingEndpointError(
            f"missing tasks endpoint (--endpoint or env {endpoint_hint_env})"
        )
    resolved_endpoint = _with_tasks_path(resolved_endpoint)
    resolved_token = _require_non_empty(
        id_token or env_or_none(*id_token_env_names),
        name="Cognito ID token",
        hint=f"--id-token or env {token_hint_env}",
    )
    return preflight_cognito_http_request(
        endpoint=resolved_endpoint,
        id_token=resolved_token,
        endpoint_name="tasks endpoint",
        token_name="Cognito ID token",
        expected_base_path="/tasks",
    )
