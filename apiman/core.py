"""apiman core - workspace config, records, storage layout, store, body variants."""

import enum
import json
import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values

GLOBAL_DIR = Path.home() / ".apiman"
GLOBAL_CONFIG = GLOBAL_DIR / "config.yaml"

CWD_CONFIG_CANDIDATES = [
    ".apiman.yaml",
    ".apiman.yml",
    "apiman.yaml",
    "apiman.yml",
]

REQUESTS_DIRNAME = "requests"
ENVIRONMENTS_DIRNAME = "environments"
RECORD_FILENAME = "request.json"
ROOT_GROUP = "root"
DEFAULT_TIMEOUT = 30


# ── Errors ───────────────────────────────────────────────────────────────


class ApimanError(Exception):
    """Base class for every failure the engine reports."""


class NotFound(ApimanError):
    """A request, environment, or body variant file does not exist."""


class ParseError(ApimanError):
    """A loaded file holds malformed JSON or an invalid record."""


class ValidationError(ApimanError):
    """An operation was asked to do something the workspace cannot honor."""


class StorageError(ApimanError):
    """Writing, creating, or removing a workspace file failed."""


# ── Config ───────────────────────────────────────────────────────────────


def resolve_path(
    candidates: list[Path],
    default: Path | None = None,
) -> Path | None:
    """Return the first existing path from candidates, else default."""
    for p in candidates:
        if p.exists():
            return p.resolve()
    return default


def resolve_config_path(config_file: str | None) -> Path | None:
    """Find the config file to use.

    Resolution order:
      1. Explicit -c flag (hard, no fallthrough if missing)
      2. .apiman.yaml (variants) in CWD
      3. ~/.apiman/config.yaml
    """
    if config_file:
        return resolve_path([Path(config_file)])
    return resolve_path([Path(c) for c in CWD_CONFIG_CANDIDATES] + [GLOBAL_CONFIG])


def load_config(config_path: str | Path | None) -> dict:
    """Load YAML config file. Returns empty defaults if not found.

    Stores '_config_dir' in the returned dict so relative paths in the
    config (workspace, env_file) resolve against the config file.
    """
    if config_path is None:
        return {"defaults": {}, "_config_dir": None}
    path = Path(config_path)
    if not path.exists():
        return {"defaults": {}, "_config_dir": None}
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ParseError(f"Invalid config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ParseError(f"Invalid config file {path}: expected a mapping")
    return {
        "defaults": data.get("defaults") or {},
        "_config_dir": path.resolve().parent,
    }


def config_relative(config: dict, value: str | None) -> Path | None:
    """Resolve a path from the config against the config file's directory."""
    if not value:
        return None
    p = Path(value)
    config_dir = config.get("_config_dir")
    if not p.is_absolute() and config_dir:
        p = Path(config_dir) / p
    return p


def resolve_workspace_root(cli_override: str | None, config: dict) -> Path:
    """Workspace root: CLI flag, then config 'workspace', then CWD."""
    if cli_override:
        return Path(cli_override)
    configured = config_relative(config, config.get("defaults", {}).get("workspace"))
    return configured or Path.cwd()


def load_env(config: dict) -> dict[str, str]:
    """Process environment overlaid with the configured .env file."""
    env = dict(os.environ)
    dotenv_path = config_relative(config, config.get("defaults", {}).get("env_file"))
    if dotenv_path and dotenv_path.exists():
        dotenv_vars = dotenv_values(str(dotenv_path))
        env.update({k: v for k, v in dotenv_vars.items() if v is not None})
    return env


def resolve_value(value: str | None, env: dict[str, str]) -> str | None:
    """Resolve $VAR and ${VAR} references in a string value.

    Unknown references are left verbatim.
    """
    if not isinstance(value, str):
        return value

    def _replace(m: re.Match) -> str:
        var_name = m.group(1) or m.group(2)
        return env.get(var_name, m.group(0))

    return re.sub(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)", _replace, value)


# ── Records ──────────────────────────────────────────────────────────────


def _str_map(data: dict, key: str, source: str) -> dict[str, str]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ParseError(f"{source}: '{key}' must be an object")
    return {str(k): "" if v is None else str(v) for k, v in value.items()}


def _str_field(data: dict, key: str, source: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ParseError(f"{source}: '{key}' must be a string")
    return value


@dataclass
class RequestRecord:
    """A stored request, as written to ``requests/<path>.json``."""

    name: str = ""
    description: str = ""
    method: str = "GET"
    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    body: str = ""
    active_body: str = ""
    params: dict[str, Any] = field(default_factory=dict)
    timeout: int = 0

    @classmethod
    def from_dict(cls, data: Any, source: str = "request") -> "RequestRecord":
        if not isinstance(data, dict):
            raise ParseError(f"{source}: expected a JSON object")
        timeout = data.get("timeout") or 0
        if not isinstance(timeout, int) or isinstance(timeout, bool):
            raise ParseError(f"{source}: 'timeout' must be an integer")
        if timeout < 0:
            raise ParseError(f"{source}: 'timeout' must not be negative")
        params = data.get("params") or {}
        if not isinstance(params, dict):
            raise ParseError(f"{source}: 'params' must be an object")
        return cls(
            name=_str_field(data, "name", source),
            description=_str_field(data, "description", source),
            method=_str_field(data, "method", source),
            url=_str_field(data, "url", source),
            headers=_str_map(data, "headers", source),
            cookies=_str_map(data, "cookies", source),
            body=_str_field(data, "body", source),
            active_body=_str_field(data, "activeBody", source),
            params=params,
            timeout=timeout,
        )

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "method": self.method,
            "url": self.url,
            "headers": self.headers,
            "cookies": self.cookies,
            "body": self.body,
        }
        if self.active_body:
            data["activeBody"] = self.active_body
        data["params"] = self.params
        data["timeout"] = self.timeout
        return data


class AuthType(enum.Enum):
    NONE = "none"
    BEARER = "bearer"
    BASIC = "basic"
    API_KEY = "api-key"


@dataclass
class Auth:
    """Environment-scoped authentication, one scheme at a time."""

    type: AuthType = AuthType.NONE
    token: str = ""
    username: str = ""
    password: str = ""
    key: str = ""
    header: str = ""

    @classmethod
    def from_dict(cls, data: Any, source: str = "environment") -> "Auth":
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ParseError(f"{source}: 'auth' must be an object")
        source = f"{source} auth"
        raw_type = (_str_field(data, "type", source) or "none").lower()
        try:
            auth_type = AuthType(raw_type)
        except ValueError:
            allowed = ", ".join(t.value for t in AuthType)
            raise ParseError(
                f"{source}: unknown auth type '{raw_type}' (expected one of: {allowed})",
            ) from None
        return cls(
            type=auth_type,
            token=_str_field(data, "token", source),
            username=_str_field(data, "username", source),
            password=_str_field(data, "password", source),
            key=_str_field(data, "key", source),
            header=_str_field(data, "header", source),
        )

    def to_dict(self) -> dict[str, str]:
        if self.type is AuthType.BEARER:
            return {"type": self.type.value, "token": self.token}
        if self.type is AuthType.BASIC:
            return {
                "type": self.type.value,
                "username": self.username,
                "password": self.password,
            }
        if self.type is AuthType.API_KEY:
            return {"type": self.type.value, "key": self.key, "header": self.header}
        return {}


@dataclass
class Environment:
    """A named target: base URL plus the headers, cookies and auth it adds."""

    base_url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    auth: Auth = field(default_factory=Auth)
    variables: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any, source: str = "environment") -> "Environment":
        if not isinstance(data, dict):
            raise ParseError(f"{source}: expected a JSON object")
        return cls(
            base_url=_str_field(data, "baseURL", source),
            headers=_str_map(data, "headers", source),
            cookies=_str_map(data, "cookies", source),
            auth=Auth.from_dict(data.get("auth"), source),
            variables=_str_map(data, "variables", source),
        )

    def to_dict(self) -> dict:
        return {
            "baseURL": self.base_url,
            "headers": self.headers,
            "cookies": self.cookies,
            "auth": self.auth.to_dict(),
            "variables": self.variables,
        }


# ── Storage layout ───────────────────────────────────────────────────────


class Layout(enum.Enum):
    FLAT = "flat"  # <root>/<path>.json
    DIRECTORY = "directory"  # <root>/<path>/request.json


@dataclass(frozen=True)
class RequestLocation:
    path: Path
    layout: Layout


def _check_logical_path(path: str) -> list[str]:
    parts = [p for p in path.strip().split("/") if p]
    if not parts or path.startswith("/") or any(p in (".", "..") for p in parts):
        raise ValidationError(f"Invalid request path '{path}'")
    if parts[-1] + ".json" == RECORD_FILENAME:
        raise ValidationError(
            f"Invalid request path '{path}': 'request' is reserved for the request record"
        )
    return parts


def resolve_request_location(
    root: Path,
    path: str,
    for_write: bool = False,
) -> RequestLocation:
    """Map a logical request path to its physical file.

    Reads prefer the flat file, then the directory layout, and raise
    NotFound when neither exists. Writes prefer the directory layout if
    the directory already exists, else the flat file (parents created).
    """
    parts = _check_logical_path(path)
    request_dir = root.joinpath(*parts)
    flat = request_dir.with_name(parts[-1] + ".json")
    nested = request_dir / RECORD_FILENAME

    if for_write:
        if request_dir.is_dir():
            return RequestLocation(nested, Layout.DIRECTORY)
        try:
            flat.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create directory {flat.parent}: {e}") from e
        return RequestLocation(flat, Layout.FLAT)

    if flat.is_file():
        return RequestLocation(flat, Layout.FLAT)
    if nested.is_file():
        return RequestLocation(nested, Layout.DIRECTORY)
    raise NotFound(f"Request '{path}' not found (looked for {flat} and {nested})")


def _read_json(path: Path) -> Any:
    try:
        text = path.read_text()
    except FileNotFoundError:
        raise NotFound(f"File not found: {path}") from None
    except OSError as e:
        raise StorageError(f"Cannot read {path}: {e}") from e
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Malformed JSON in {path}: {e}") from e


def _write_json(path: Path, data: Any) -> None:
    try:
        path.write_text(json.dumps(data, indent=2) + "\n")
    except OSError as e:
        raise StorageError(f"Cannot write {path}: {e}") from e


# ── Workspace ────────────────────────────────────────────────────────────


DEFAULT_ENVIRONMENTS = {
    "dev": Environment(
        base_url="http://localhost:3000",
        headers={"Content-Type": "application/json"},
        variables={"host": "localhost:3000"},
    ),
    "prod": Environment(
        base_url="https://api.example.com",
        headers={"Content-Type": "application/json"},
        variables={"host": "api.example.com"},
    ),
}

SAMPLE_REQUEST_PATH = "users/get-users"


def _sample_request() -> RequestRecord:
    return RequestRecord(
        name="Get Users",
        description="Fetch all users from the API",
        method="GET",
        url="/users",
        timeout=30,
    )


class Workspace:
    """Request and environment files under one workspace root.

    Construction creates ``requests/`` and ``environments/`` and seeds
    them when empty; existing content is never overwritten.
    """

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root) if root is not None else Path.cwd()
        self.requests_dir = self.root / REQUESTS_DIRNAME
        self.environments_dir = self.root / ENVIRONMENTS_DIRNAME
        self.seeded: list[str] = []

        for d in (self.requests_dir, self.environments_dir):
            try:
                d.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Cannot create directory {d}: {e}") from e

        self._seed()

    def _seed(self) -> None:
        if not any(p.is_file() for p in self.environments_dir.iterdir()):
            for name, env in DEFAULT_ENVIRONMENTS.items():
                self.save_environment(name, env)
                self.seeded.append(f"environments/{name}.json")

        if not any(self.requests_dir.iterdir()):
            self.save_request(SAMPLE_REQUEST_PATH, _sample_request())
            self.seeded.append(f"requests/{SAMPLE_REQUEST_PATH}.json")

    # Requests

    def locate_request(self, path: str, for_write: bool = False) -> RequestLocation:
        return resolve_request_location(self.requests_dir, path, for_write=for_write)

    def request_dir(self, path: str) -> Path:
        """Directory holding a request's body variants (may not exist)."""
        return self.requests_dir.joinpath(*_check_logical_path(path))

    def load_request(self, path: str) -> RequestRecord:
        location = self.locate_request(path)
        return RequestRecord.from_dict(_read_json(location.path), source=str(location.path))

    def save_request(self, path: str, record: RequestRecord) -> Path:
        location = self.locate_request(path, for_write=True)
        _write_json(location.path, record.to_dict())
        if location.layout is Layout.DIRECTORY:
            request_dir = self.request_dir(path)
            stale = request_dir.with_name(request_dir.name + ".json")
            if stale.is_file():
                try:
                    stale.unlink()
                except OSError as e:
                    raise StorageError(f"Cannot remove stale {stale}: {e}") from e
        return location.path

    def delete_request(self, path: str) -> None:
        """Delete a request; a directory-layout request goes with its variants."""
        location = self.locate_request(path)
        try:
            if location.layout is Layout.FLAT:
                location.path.unlink()
            else:
                shutil.rmtree(location.path.parent)
        except OSError as e:
            raise StorageError(f"Cannot delete request '{path}': {e}") from e

    def list_requests(self) -> dict[str, list[str]]:
        """All request paths grouped by parent directory ('root' for top level)."""
        groups: dict[str, set[str]] = {}
        for f in self.requests_dir.rglob("*.json"):
            if not f.is_file():
                continue
            rel = f.relative_to(self.requests_dir)
            if f.name == RECORD_FILENAME:
                if rel.parent == Path("."):
                    continue
                logical = rel.parent.as_posix()
            elif (f.parent / RECORD_FILENAME).is_file():
                continue  # body variant
            else:
                logical = rel.with_suffix("").as_posix()
            group = Path(logical).parent.as_posix()
            groups.setdefault(ROOT_GROUP if group == "." else group, set()).add(logical)
        return {g: sorted(paths) for g, paths in sorted(groups.items())}

    # Environments

    def _environment_file(self, name: str) -> Path:
        if not name or "/" in name or name in (".", ".."):
            raise ValidationError(f"Invalid environment name '{name}'")
        return self.environments_dir / f"{name}.json"

    def load_environment(self, name: str) -> Environment:
        path = self._environment_file(name)
        if not path.is_file():
            raise NotFound(f"Environment '{name}' not found ({path})")
        return Environment.from_dict(_read_json(path), source=str(path))

    def save_environment(self, name: str, env: Environment) -> Path:
        path = self._environment_file(name)
        _write_json(path, env.to_dict())
        return path

    def list_environments(self) -> list[str]:
        return sorted(
            p.stem for p in self.environments_dir.iterdir() if p.is_file() and p.suffix == ".json"
        )

    # Body variants

    def body_path(self, path: str, name: str) -> Path:
        if not name or "/" in name or name in (".", ".."):
            raise ValidationError(f"Invalid body name '{name}'")
        return self.request_dir(path) / f"{name}.json"

    def list_bodies(self, path: str) -> tuple[list[str], str]:
        """Return (variant names, active variant or '')."""
        record = self.load_request(path)
        request_dir = self.request_dir(path)
        names: list[str] = []
        if request_dir.is_dir():
            names = sorted(
                p.stem
                for p in request_dir.iterdir()
                if p.is_file() and p.suffix == ".json" and p.name != RECORD_FILENAME
            )
        return names, record.active_body

    def set_active_body(self, path: str, name: str) -> None:
        record = self.load_request(path)
        body_file = self.body_path(path, name)
        if body_file.name == RECORD_FILENAME or not body_file.is_file():
            raise ValidationError(f"Body file '{name}.json' does not exist in {path}")
        record.active_body = name
        self.save_request(path, record)

    def remove_body(self, path: str, name: str) -> None:
        body_file = self.body_path(path, name)
        if body_file.name == RECORD_FILENAME or not body_file.is_file():
            raise NotFound(f"Body file '{name}.json' does not exist in {path}")
        try:
            body_file.unlink()
        except OSError as e:
            raise StorageError(f"Cannot remove {body_file}: {e}") from e

        record = self.load_request(path)
        if record.active_body == name:
            record.active_body = ""
            self.save_request(path, record)

    def save_body(self, path: str, name: str, text: str) -> Path:
        """Write a body variant, moving a flat record into its directory first."""
        record = self.load_request(path)
        body_file = self.body_path(path, name)
        if body_file.name == RECORD_FILENAME:
            raise ValidationError("'request' is reserved for the request record")
        try:
            body_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create directory {body_file.parent}: {e}") from e
        # Directory now exists, so this lands in <path>/request.json
        self.save_request(path, record)
        try:
            body_file.write_text(text)
        except OSError as e:
            raise StorageError(f"Cannot write {body_file}: {e}") from e
        return body_file
