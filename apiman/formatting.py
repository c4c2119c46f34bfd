"""apiman formatting - render responses and listings for the terminal."""

from __future__ import annotations

import json

PREVIEW_WIDTH = 80


def pretty_body(text: str) -> str:
    """Pretty-print a JSON body; anything else is returned unchanged."""
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return text
    return json.dumps(data, indent=2, ensure_ascii=False)


def format_response(result, verbose: bool = False, raw: bool = False) -> str:
    """Format a RequestResult for CLI output.

    Default:
        STATUS: 200 OK
        TIME: 45ms
        BODY:
        {...}

    verbose adds a HEADERS section; raw returns the body alone.
    """
    if raw:
        return pretty_body(result.text)

    status = f"{result.status_code} {result.reason}".rstrip()
    lines = [f"STATUS: {status}", f"TIME: {int(result.elapsed_ms)}ms"]

    if verbose and result.headers:
        lines.append("HEADERS:")
        for key, value in result.headers.items():
            lines.append(f"  {key}: {value}")

    if result.text:
        lines.append("BODY:")
        lines.append(pretty_body(result.text))

    return "\n".join(lines)


def preview_line(text: str, width: int = PREVIEW_WIDTH) -> str:
    """First line of text, shortened with '...' past width."""
    stripped = text.strip()
    if not stripped:
        return ""
    first = stripped.splitlines()[0]
    if len(first) > width:
        return first[: width - 3] + "..."
    return first


def format_request_list(groups: dict[str, list[str]], records: dict) -> str:
    """Render grouped request paths with method, URL and description.

    records maps path -> RequestRecord, or to an error string when the
    record failed to load.
    """
    if not groups:
        return "No requests found."
    lines = ["Available requests:", ""]
    for group, paths in groups.items():
        lines.append(f"{group}/")
        for path in paths:
            record = records.get(path)
            if isinstance(record, str):
                lines.append(f"  {path}  (error: {record})")
                continue
            lines.append(f"  {path} - {record.method or 'GET'} {record.url}")
            if record.description:
                lines.append(f"      {record.description}")
        lines.append("")
    return "\n".join(lines).rstrip()


def format_body_list(path: str, bodies: list[tuple[str, str]], active: str) -> str:
    """Render body variants, marking the active one with '*'.

    bodies is a list of (name, content) pairs.
    """
    lines = [f"Body files for {path}:", ""]
    if not bodies:
        lines.append("No body files found.")
        lines.append("Create files like 'admin.json' next to request.json to add variants.")
        return "\n".join(lines)
    for name, content in bodies:
        marker = "*" if name == active else " "
        lines.append(f"{marker} {name}.json")
        preview = preview_line(content)
        if preview:
            lines.append(f"    {preview}")
    lines.append("")
    if active:
        lines.append(f"Active body: {active}.json")
    else:
        lines.append("Using inline body from the request file.")
    return "\n".join(lines)
