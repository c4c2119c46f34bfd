"""apiman openapi - load OpenAPI documents and generate request skeletons."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from apiman.core import ApimanError, NotFound, RequestRecord, StorageError, Workspace

HTTP_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH"]
BODY_METHODS = ("POST", "PUT", "PATCH")


class SpecError(ApimanError):
    """The OpenAPI document could not be read or is not a usable spec."""


@dataclass
class Parameter:
    name: str
    location: str  # path, query, header, cookie
    required: bool = False
    description: str = ""


@dataclass
class RequestBody:
    content_type: str
    required: bool = False
    schema: dict = field(default_factory=dict)


@dataclass
class Endpoint:
    method: str
    path: str
    summary: str = ""
    description: str = ""
    operation_id: str = ""
    parameters: list[Parameter] = field(default_factory=list)
    request_body: RequestBody | None = None

    def params_in(self, location: str) -> list[Parameter]:
        return [p for p in self.parameters if p.location == location]


def load_openapi_spec(filename: str | Path) -> dict:
    """Read a YAML or JSON OpenAPI document and check its basic shape."""
    path = Path(filename)
    try:
        text = path.read_text()
    except FileNotFoundError:
        raise NotFound(f"Spec file not found: {path}") from None
    except OSError as e:
        raise SpecError(f"Cannot read {path}: {e}") from e

    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SpecError(f"Cannot parse {path}: {e}") from e

    if not isinstance(doc, dict):
        raise SpecError(f"{path}: expected a mapping at the top level")
    if "openapi" not in doc and "swagger" not in doc:
        raise SpecError(f"{path}: missing 'openapi' version field")
    if not isinstance(doc.get("paths"), dict):
        raise SpecError(f"{path}: missing or invalid 'paths' section")
    return doc


def _deref(doc: dict, node: Any, seen: frozenset = frozenset()) -> Any:
    """Follow local '#/...' $refs; unresolvable refs yield an empty dict."""
    while isinstance(node, dict) and isinstance(node.get("$ref"), str):
        ref = node["$ref"]
        if not ref.startswith("#/") or ref in seen:
            return {}
        seen = seen | {ref}
        target: Any = doc
        for part in ref[2:].split("/"):
            part = part.replace("~1", "/").replace("~0", "~")
            if not isinstance(target, dict) or part not in target:
                return {}
            target = target[part]
        node = target
    return node


def _parse_parameters(doc: dict, raw: Any) -> list[Parameter]:
    params: list[Parameter] = []
    for item in raw or []:
        item = _deref(doc, item)
        if not isinstance(item, dict) or "name" not in item:
            continue
        params.append(
            Parameter(
                name=str(item["name"]),
                location=item.get("in", "query"),
                required=bool(item.get("required", False)),
                description=item.get("description", "") or "",
            ),
        )
    return params


def _parse_request_body(doc: dict, raw: Any) -> RequestBody | None:
    body = _deref(doc, raw)
    if not isinstance(body, dict):
        return None
    content = body.get("content") or {}
    for content_type, media in content.items():
        schema = _deref(doc, (media or {}).get("schema") or {})
        return RequestBody(
            content_type=content_type,
            required=bool(body.get("required", False)),
            schema=schema if isinstance(schema, dict) else {},
        )
    return None


def get_endpoints(doc: dict) -> list[Endpoint]:
    """Flatten the document into one Endpoint per path + method."""
    endpoints: list[Endpoint] = []
    for path, item in (doc.get("paths") or {}).items():
        item = _deref(doc, item)
        if not isinstance(item, dict):
            continue
        shared = _parse_parameters(doc, item.get("parameters"))
        for method in HTTP_METHODS:
            op = item.get(method.lower())
            if not isinstance(op, dict):
                continue
            own = _parse_parameters(doc, op.get("parameters"))
            # Operation-level parameters override path-level ones
            own_keys = {(p.name, p.location) for p in own}
            merged = [p for p in shared if (p.name, p.location) not in own_keys] + own
            endpoints.append(
                Endpoint(
                    method=method,
                    path=path,
                    summary=op.get("summary", "") or "",
                    description=op.get("description", "") or "",
                    operation_id=op.get("operationId", "") or "",
                    parameters=merged,
                    request_body=_parse_request_body(doc, op.get("requestBody")),
                ),
            )
    return endpoints


def example_from_schema(doc: dict, schema: Any, depth: int = 0) -> Any:
    """Build a placeholder value for a JSON schema."""
    schema = _deref(doc, schema)
    if not isinstance(schema, dict) or depth > 8:
        return None
    if "example" in schema:
        return schema["example"]
    if "default" in schema:
        return schema["default"]
    if schema.get("enum"):
        return schema["enum"][0]
    for combinator in ("allOf", "oneOf", "anyOf"):
        options = schema.get(combinator)
        if options:
            if combinator == "allOf":
                merged: dict = {}
                for option in options:
                    value = example_from_schema(doc, option, depth + 1)
                    if isinstance(value, dict):
                        merged.update(value)
                return merged
            return example_from_schema(doc, options[0], depth + 1)

    schema_type = schema.get("type")
    if schema_type == "object" or "properties" in schema:
        return {
            name: example_from_schema(doc, prop, depth + 1)
            for name, prop in (schema.get("properties") or {}).items()
        }
    if schema_type == "array":
        item = example_from_schema(doc, schema.get("items") or {}, depth + 1)
        return [] if item is None else [item]
    if schema_type == "string":
        return ""
    if schema_type in ("integer", "number"):
        return 0
    if schema_type == "boolean":
        return False
    return None


def request_name(endpoint: Endpoint) -> str:
    """operationId if set, else '<method>-<path segments>', lower-cased."""
    if endpoint.operation_id:
        name = endpoint.operation_id
    else:
        name = endpoint.method + "-" + endpoint.path.strip("/").replace("/", "-")
    return name.lower()


def spec_slug(doc: dict) -> str:
    title = (doc.get("info") or {}).get("title") or ""
    return title.lower().replace(" ", "-") or "api"


def build_request_record(doc: dict, endpoint: Endpoint, name: str) -> RequestRecord:
    record = RequestRecord(
        name=name,
        description=endpoint.summary or endpoint.description,
        method=endpoint.method,
        url=endpoint.path,
    )
    if endpoint.method in BODY_METHODS:
        record.headers["Content-Type"] = "application/json"
        if endpoint.request_body is not None:
            skeleton = example_from_schema(doc, endpoint.request_body.schema)
            if skeleton is None:
                skeleton = {}
            record.body = json.dumps(skeleton, indent=2)
    for param in endpoint.parameters:
        record.params[param.name] = {
            "in": param.location,
            "required": param.required,
            "description": param.description,
        }
    return record


def generate_requests(workspace: Workspace, doc: dict) -> list[str]:
    """Write one request directory per operation. Returns the logical paths.

    Layout: requests/<slug(title)>/<name>/request.json
    """
    slug = spec_slug(doc)
    generated: list[str] = []
    for endpoint in get_endpoints(doc):
        name = request_name(endpoint)
        logical = f"{slug}/{name}"
        request_dir = workspace.request_dir(logical)
        try:
            request_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create {request_dir}: {e}") from e
        workspace.save_request(logical, build_request_record(doc, endpoint, name))
        generated.append(logical)
    return generated
