"""apiman resolver - merge a request with an environment into one outbound call."""

import base64
import os
from dataclasses import dataclass, field

from apiman.core import (
    DEFAULT_TIMEOUT,
    RECORD_FILENAME,
    Auth,
    AuthType,
    Environment,
    RequestRecord,
    ValidationError,
    Workspace,
    resolve_value,
)

BODY_INLINE = "inline"
BODY_VARIANT = "variant"
BODY_FALLBACK = "fallback"  # active variant unreadable, inline body used


@dataclass
class ResolvedRequest:
    """Fully merged request, computed fresh for every execution."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    body: str = ""
    timeout: int = DEFAULT_TIMEOUT
    body_source: str = BODY_INLINE
    active_body: str = ""


@dataclass(frozen=True)
class BodySelection:
    text: str
    source: str
    variant: str = ""


def select_body(workspace: Workspace, path: str, record: RequestRecord) -> BodySelection:
    """Pick the active body variant if it can be read, else the inline body."""
    if not record.active_body:
        return BodySelection(record.body, BODY_INLINE)
    fallback = BodySelection(record.body, BODY_FALLBACK, record.active_body)
    try:
        body_file = workspace.body_path(path, record.active_body)
    except ValidationError:
        return fallback
    if body_file.name == RECORD_FILENAME:
        return fallback
    try:
        text = body_file.read_text()
    except (OSError, ValueError):
        return fallback
    return BodySelection(text, BODY_VARIANT, record.active_body)


def merge_layers(*layers: dict[str, str]) -> dict[str, str]:
    """Overlay maps left to right; later layers win, empty values are dropped."""
    merged: dict[str, str] = {}
    for layer in layers:
        for key, value in layer.items():
            if value != "":
                merged[key] = value
    return merged


def substitute_variables(text: str, variables: dict[str, str]) -> str:
    """Replace each literal {{key}} with its value. Unknown placeholders stay."""
    for key, value in variables.items():
        text = text.replace("{{" + key + "}}", value)
    return text


def build_url(base_url: str, url: str) -> str:
    """Join base URL and request URL; absolute request URLs skip the base."""
    if url.startswith(("http://", "https://")):
        return url
    if base_url.endswith("/"):
        base_url = base_url[:-1]
    return base_url + url


def set_header(headers: dict[str, str], name: str, value: str) -> None:
    """Set a header, replacing any existing key that differs only in case."""
    for existing in [k for k in headers if k.lower() == name.lower()]:
        del headers[existing]
    headers[name] = value


def build_auth_headers(auth: Auth, env: dict[str, str] | None = None) -> dict[str, str]:
    """Headers for the environment's auth scheme.

    - bearer:  Authorization: Bearer <token>
    - basic:   Authorization: Basic <b64 user:pass>
    - api-key: <header>: <key>
    """
    env = env or {}
    if auth.type is AuthType.BEARER:
        token = resolve_value(auth.token, env)
        if token:
            return {"Authorization": f"Bearer {token}"}
    elif auth.type is AuthType.BASIC:
        username = resolve_value(auth.username, env)
        password = resolve_value(auth.password, env)
        credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
        return {"Authorization": f"Basic {credentials}"}
    elif auth.type is AuthType.API_KEY:
        key = resolve_value(auth.key, env)
        if key and auth.header:
            return {auth.header: key}
    return {}


def apply_environment(
    request: ResolvedRequest,
    environment: Environment,
    env: dict[str, str] | None = None,
) -> ResolvedRequest:
    """Add the environment's auth on top of already merged headers."""
    for name, value in build_auth_headers(environment.auth, env).items():
        set_header(request.headers, name, value)
    return request


def resolve_request(
    workspace: Workspace,
    request_path: str,
    env_name: str,
    default_timeout: int = DEFAULT_TIMEOUT,
    env: dict[str, str] | None = None,
) -> ResolvedRequest:
    """Resolve a stored request against a named environment.

    Store errors (NotFound, ParseError) propagate unchanged. The only
    failure absorbed here is an unreadable active body variant, which
    falls back to the inline body and is reported via ``body_source``.
    """
    if env is None:
        env = dict(os.environ)

    record = workspace.load_request(request_path)
    environment = workspace.load_environment(env_name)

    base_url = resolve_value(environment.base_url, env) or ""
    url = substitute_variables(build_url(base_url, record.url), environment.variables)

    selection = select_body(workspace, request_path, record)

    resolved = ResolvedRequest(
        method=(record.method or "GET").upper(),
        url=url,
        headers=merge_layers(environment.headers, record.headers),
        cookies=merge_layers(environment.cookies, record.cookies),
        body=selection.text,
        timeout=record.timeout or default_timeout,
        body_source=selection.source,
        active_body=selection.variant,
    )
    return apply_environment(resolved, environment, env)
