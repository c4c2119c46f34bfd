"""apiman CLI - filesystem-based API request manager."""

import sys
from pathlib import Path

import click

from apiman.core import (
    CWD_CONFIG_CANDIDATES,
    DEFAULT_TIMEOUT,
    ApimanError,
    AuthType,
    Workspace,
    load_config,
    load_env,
    resolve_config_path,
    resolve_workspace_root,
)

TOOL_HELP = """\
apiman — filesystem-based API request manager.

Requests and environments are JSON files in the workspace; apiman merges
them and sends the result.

\b
WORKSPACE
─────────
  requests/<path>.json                   flat request file
  requests/<path>/request.json           request with body variants
  requests/<path>/<variant>.json         alternate body payloads
  environments/<name>.json               baseURL, headers, cookies, auth, variables

\b
EXAMPLES
────────
  apiman init
  apiman generate openapi.yaml
  apiman run users/get-users dev
  apiman body add users/create-user admin -f admin.json
  apiman body list users/create-user
  apiman body set users/create-user admin

\b
CONFIG FILE (.apiman.yaml)
──────────────────────────
  Resolution order:
    1. -c/--config flag (explicit path)
    2. .apiman.yaml / .apiman.yml / apiman.yaml / apiman.yml in CWD
    3. ~/.apiman/config.yaml (global)

  \b
  defaults:
    workspace: .          # root holding requests/ and environments/
    env: dev              # environment used when 'run' gets none
    timeout: 30           # seconds, when a request sets none
    env_file: .env        # ${VAR} source for baseURL and auth fields
"""


def _fail(message) -> None:
    click.echo(f"ERROR: {message}", err=True)
    sys.exit(1)


def _workspace(ctx: click.Context) -> Workspace:
    try:
        return Workspace(resolve_workspace_root(ctx.obj["workspace"], ctx.obj["config"]))
    except ApimanError as e:
        _fail(e)


def _default_timeout(config: dict) -> int:
    timeout = config.get("defaults", {}).get("timeout") or DEFAULT_TIMEOUT
    if not isinstance(timeout, int) or isinstance(timeout, bool) or timeout < 1:
        _fail(f"Invalid config: 'defaults.timeout' must be a positive integer, got {timeout!r}")
    return timeout


def _default_env(config: dict, env_name: str | None) -> str | None:
    return env_name or config.get("defaults", {}).get("env")


class ApimanGroup(click.Group):
    """Command group whose usage errors exit with status 1."""

    def parse_args(self, ctx, args):
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as e:
            e.exit_code = 1
            raise

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except click.UsageError as e:
            e.exit_code = 1
            raise


@click.group(cls=ApimanGroup, help=TOOL_HELP, context_settings={"max_content_width": 88})
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    help="Config file path. Default: .apiman.yaml in CWD, then ~/.apiman/config.yaml.",
)
@click.option(
    "-w",
    "--workspace",
    "workspace_override",
    default=None,
    help="Workspace root holding requests/ and environments/. Default: CWD.",
)
@click.pass_context
def main(ctx, config_file, workspace_override):
    """Filesystem-based API request manager."""
    try:
        config = load_config(resolve_config_path(config_file))
    except ApimanError as e:
        _fail(e)
    ctx.obj = {"config": config, "workspace": workspace_override}


@main.command()
@click.pass_context
def init(ctx):
    """Create requests/, environments/ and a sample config."""
    ws = _workspace(ctx)
    click.echo(f"Workspace: {ws.root.resolve()}")
    for d in (ws.requests_dir, ws.environments_dir):
        click.echo(f"  {d.name}/ (ready)")
    for name in ws.seeded:
        click.echo(f"  {name} (created)")

    config_file = Path(CWD_CONFIG_CANDIDATES[0])
    if any(Path(c).exists() for c in CWD_CONFIG_CANDIDATES):
        click.echo(f"  {config_file.name} (skipped, already exists)")
    else:
        config_file.write_text(_generate_config())
        click.echo(f"  {config_file.name} (created)")

    click.echo("\nWorkspace initialized. Run 'apiman list' to see requests.")


@main.command()
@click.argument("spec_file", type=click.Path(dir_okay=False))
@click.pass_context
def generate(ctx, spec_file):
    """Generate request files from an OpenAPI spec."""
    from apiman.openapi import generate_requests, load_openapi_spec

    ws = _workspace(ctx)
    try:
        doc = load_openapi_spec(spec_file)
        paths = generate_requests(ws, doc)
    except ApimanError as e:
        _fail(e)

    for path in paths:
        click.echo(f"  {path}")
    click.echo(f"\nGenerated {len(paths)} request(s) from {spec_file} into {ws.requests_dir}")


@main.command()
@click.argument("request_path")
@click.argument("env_name", required=False)
@click.option(
    "--timeout",
    type=click.IntRange(min=1),
    default=None,
    help="Override the request timeout (seconds).",
)
@click.option("--verbose", is_flag=True, default=False, help="Include response headers.")
@click.option("--raw", is_flag=True, default=False, help="Output the response body only.")
@click.pass_context
def run(ctx, request_path, env_name, timeout, verbose, raw):
    """Execute REQUEST_PATH against environment ENV_NAME."""
    from apiman.executor import execute_request
    from apiman.formatting import format_response
    from apiman.resolver import BODY_FALLBACK, resolve_request

    config = ctx.obj["config"]
    env_name = _default_env(config, env_name)
    if not env_name:
        click.echo("Usage: apiman run <request-path> <environment>", err=True)
        click.echo("Example: apiman run users/get-users dev", err=True)
        sys.exit(1)

    ws = _workspace(ctx)
    try:
        request = resolve_request(
            ws,
            request_path,
            env_name,
            default_timeout=_default_timeout(config),
            env=load_env(config),
        )
        if request.body_source == BODY_FALLBACK:
            click.echo(
                f"WARNING: active body '{request.active_body}' not found, using inline body",
                err=True,
            )
        if timeout:
            request.timeout = timeout
        result = execute_request(request)
    except ApimanError as e:
        _fail(e)

    click.echo(format_response(result, verbose=verbose, raw=raw))


@main.command("list")
@click.pass_context
def list_cmd(ctx):
    """List all requests, grouped by directory."""
    from apiman.formatting import format_request_list

    ws = _workspace(ctx)
    groups = ws.list_requests()
    records = {}
    for paths in groups.values():
        for path in paths:
            try:
                records[path] = ws.load_request(path)
            except ApimanError as e:
                records[path] = str(e)
    click.echo(format_request_list(groups, records))


@main.command()
@click.pass_context
def envs(ctx):
    """List all environments."""
    ws = _workspace(ctx)
    names = ws.list_environments()
    if not names:
        click.echo("No environments found.")
        return
    click.echo("Available environments:\n")
    for name in names:
        try:
            env = ws.load_environment(name)
        except ApimanError as e:
            click.echo(f"  {name} (error: {e})")
            continue
        auth = f"  [auth: {env.auth.type.value}]" if env.auth.type is not AuthType.NONE else ""
        click.echo(f"  {name} - {env.base_url}{auth}")


@main.command()
@click.argument("spec_file", type=click.Path(dir_okay=False))
@click.option("-e", "--env", "env_name", default=None, help="Environment to send against.")
@click.pass_context
def tui(ctx, spec_file, env_name):
    """Browse and call the operations of an OpenAPI spec interactively."""
    from apiman.executor import execute_request
    from apiman.interactive import run_interactive
    from apiman.openapi import get_endpoints, load_openapi_spec

    config = ctx.obj["config"]
    env_name = _default_env(config, env_name) or "dev"
    ws = _workspace(ctx)
    try:
        endpoints = get_endpoints(load_openapi_spec(spec_file))
        environment = ws.load_environment(env_name)
    except ApimanError as e:
        _fail(e)

    click.echo(f"{len(endpoints)} operation(s), environment '{env_name}' ({environment.base_url})")
    run_interactive(
        endpoints,
        environment,
        execute_request,
        timeout=_default_timeout(config),
        env=load_env(config),
    )


@main.command()
@click.argument("request_path")
@click.option("-y", "--yes", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.pass_context
def delete(ctx, request_path, yes):
    """Delete a request (and its body variants)."""
    ws = _workspace(ctx)
    try:
        location = ws.locate_request(request_path)
    except ApimanError as e:
        _fail(e)
    if not yes:
        click.confirm(f"Delete {request_path}?", abort=True)
    try:
        ws.delete_request(request_path)
    except ApimanError as e:
        _fail(e)
    click.echo(f"Deleted {request_path} ({location.layout.value})")


# ── Body variants ───────────────────────────────────────────────────────


@main.group()
def body():
    """Manage named body variants of a request."""


@body.command("list")
@click.argument("request_path")
@click.pass_context
def body_list(ctx, request_path):
    """List body variants of REQUEST_PATH."""
    from apiman.formatting import format_body_list

    ws = _workspace(ctx)
    try:
        names, active = ws.list_bodies(request_path)
    except ApimanError as e:
        _fail(e)

    bodies = []
    for name in names:
        try:
            content = ws.body_path(request_path, name).read_text()
        except OSError:
            content = ""
        bodies.append((name, content))
    click.echo(format_body_list(request_path, bodies, active))


@body.command("add")
@click.argument("request_path")
@click.argument("name")
@click.option(
    "-f",
    "--file",
    "body_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Read the payload from a file. Default: stdin.",
)
@click.option("--activate", is_flag=True, default=False, help="Also make it the active body.")
@click.pass_context
def body_add(ctx, request_path, name, body_file, activate):
    """Save a body variant NAME for REQUEST_PATH."""
    if body_file:
        text = Path(body_file).read_text()
    else:
        text = click.get_text_stream("stdin").read()

    ws = _workspace(ctx)
    try:
        saved = ws.save_body(request_path, name, text)
        if activate:
            ws.set_active_body(request_path, name)
    except ApimanError as e:
        _fail(e)
    click.echo(f"Saved body '{name}' for {request_path} ({saved})")
    if activate:
        click.echo(f"Set '{name}' as active body for {request_path}")


@body.command("set")
@click.argument("request_path")
@click.argument("name")
@click.pass_context
def body_set(ctx, request_path, name):
    """Make NAME the active body of REQUEST_PATH."""
    ws = _workspace(ctx)
    try:
        ws.set_active_body(request_path, name)
    except ApimanError as e:
        _fail(e)
    click.echo(f"Set '{name}' as active body for {request_path}")


@body.command("remove")
@click.argument("request_path")
@click.argument("name")
@click.pass_context
def body_remove(ctx, request_path, name):
    """Delete body variant NAME of REQUEST_PATH."""
    ws = _workspace(ctx)
    try:
        ws.remove_body(request_path, name)
    except ApimanError as e:
        _fail(e)
    click.echo(f"Removed body '{name}' from {request_path}")


# ── Helpers ──────────────────────────────────────────────────────────────


def _generate_config() -> str:
    """Return .apiman.yaml content string."""
    return """\
# apiman configuration
# See: apiman --help

defaults:
  env: dev
  timeout: 30
  # workspace: .
  # env_file: .env
"""

