"""apiman interactive - prompt-driven endpoint browser for an OpenAPI spec."""

from urllib.parse import urlencode

import click

from apiman.core import DEFAULT_TIMEOUT, ApimanError, Environment
from apiman.openapi import Endpoint
from apiman.resolver import (
    ResolvedRequest,
    apply_environment,
    build_url,
    merge_layers,
    set_header,
)


def build_endpoint_request(
    endpoint: Endpoint,
    environment: Environment,
    values: dict[str, str],
    body: str = "",
    timeout: int = DEFAULT_TIMEOUT,
    env: dict[str, str] | None = None,
) -> ResolvedRequest:
    """Turn an endpoint plus user-entered parameter values into a request.

    Path parameters fill '{name}' placeholders, non-empty query values are
    appended as a query string, header parameters become headers. The
    environment contributes base URL, headers, cookies and auth.
    """
    path = endpoint.path
    for param in endpoint.params_in("path"):
        if param.name in values:
            path = path.replace("{" + param.name + "}", values[param.name])

    url = build_url(environment.base_url, path)
    query = [
        (p.name, values[p.name]) for p in endpoint.params_in("query") if values.get(p.name)
    ]
    if query:
        url += ("&" if "?" in url else "?") + urlencode(query)

    headers = merge_layers(environment.headers)
    for param in endpoint.params_in("header"):
        if values.get(param.name):
            set_header(headers, param.name, values[param.name])
    if body and endpoint.request_body is not None:
        set_header(headers, "Content-Type", endpoint.request_body.content_type)

    request = ResolvedRequest(
        method=endpoint.method,
        url=url,
        headers=headers,
        cookies=merge_layers(environment.cookies),
        body=body,
        timeout=timeout,
    )
    return apply_environment(request, environment, env)


def format_endpoint_list(endpoints: list[Endpoint]) -> str:
    lines = []
    for i, ep in enumerate(endpoints):
        label = f"  [{i}] {ep.method:<6} {ep.path}"
        if ep.summary:
            label += f"  - {ep.summary}"
        lines.append(label)
    return "\n".join(lines)


def prompt_values(endpoint: Endpoint) -> tuple[dict[str, str], str]:
    """Ask for each parameter and the body. Returns (values, body)."""
    values: dict[str, str] = {}
    for param in endpoint.parameters:
        if param.location not in ("path", "query", "header"):
            continue
        label = f"{param.location} {param.name}"
        if param.description:
            label += f" ({param.description})"
        required = param.required or param.location == "path"
        values[param.name] = click.prompt(
            label,
            default=None if required else "",
            show_default=False,
        )
    body = ""
    if endpoint.request_body is not None:
        body = click.prompt(
            f"Request body ({endpoint.request_body.content_type})",
            default="",
            show_default=False,
        )
    return values, body


def run_interactive(
    endpoints: list[Endpoint],
    environment: Environment,
    execute,
    timeout: int = DEFAULT_TIMEOUT,
    env: dict[str, str] | None = None,
) -> None:
    """Loop: choose an endpoint, fill in parameters, send, show the result."""
    from apiman.formatting import format_response

    if not endpoints:
        click.echo("No operations found in the OpenAPI document.")
        return

    while True:
        click.echo("\nEndpoints:")
        click.echo(format_endpoint_list(endpoints))
        choice = click.prompt("\nSelect endpoint (q to quit)", default="q", show_default=False)
        if choice.strip().lower() in ("q", "quit", "exit"):
            return
        try:
            endpoint = endpoints[int(choice)]
        except (ValueError, IndexError):
            click.echo(f"Invalid choice '{choice}'.", err=True)
            continue

        click.echo(f"\n{endpoint.method} {endpoint.path}")
        if endpoint.description:
            click.echo(endpoint.description)
        values, body = prompt_values(endpoint)
        request = build_endpoint_request(endpoint, environment, values, body, timeout, env)

        try:
            result = execute(request)
        except ApimanError as e:
            click.echo(f"ERROR: {e}", err=True)
            continue
        click.echo(format_response(result, verbose=True))
