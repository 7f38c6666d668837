"""CLI entry point for switchboard."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import click
import structlog

from switchboard.auth import AuthBridge, TokenStore
from switchboard.cli.auth import backend_option, build_token_store, login_command, logout_command
from switchboard.config.settings import SwitchboardSettings
from switchboard.exceptions import ConfigurationError, SwitchboardError
from switchboard.mcp import ConnectionSupervisor, MCPError, ToolDescriptor, ToolResult, ToolRouter
from switchboard.utils.logging_config import configure_logging

log = structlog.get_logger(__name__)

DEFAULT_CONFIG = "~/.config/switchboard/config.yaml"


@click.group()
@click.option(
    "--config",
    default=DEFAULT_CONFIG,
    envvar="SWITCHBOARD_CONFIG",
    show_default=True,
    help="Path to configuration file (YAML, or the desktop client's settings.json)",
)
@click.option("--log-level", default="WARNING", help="Logging level")
@click.pass_context
def cli(ctx: click.Context, config: str, log_level: str) -> None:
    """switchboard: MCP provider connection manager."""
    configure_logging(log_level)

    config_path = Path(config).expanduser()
    if not config_path.exists():
        click.echo(f"Error: Configuration file not found: {config_path}", err=True)
        sys.exit(1)

    try:
        settings = SwitchboardSettings.load(config_path)
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(1)

    ctx.obj = {"settings": settings}


@asynccontextmanager
async def _connected(
    settings: SwitchboardSettings, timeout: float, store: TokenStore
) -> AsyncIterator[ConnectionSupervisor]:
    """Connect every enabled provider and wait for them to settle.

    OAuth tokens are read from ``store``, built for the same ``--backend``
    that ``login`` wrote to.
    """
    auth = AuthBridge(store, interactive=False)
    async with ConnectionSupervisor(settings.policy, auth=auth) as supervisor:
        await supervisor.apply(settings.providers)
        if not await supervisor.wait_ready(timeout=timeout):
            log.warning("providers_not_settled", timeout=timeout)
        yield supervisor


@cli.command()
@click.pass_context
def providers(ctx: click.Context) -> None:
    """List configured providers."""
    settings: SwitchboardSettings = ctx.obj["settings"]
    if not settings.providers:
        click.echo("No providers configured.")
        return

    for provider in settings.providers:
        target = provider.url if provider.url else " ".join([provider.command or "", *provider.args])
        flags = [] if provider.enabled else ["disabled"]
        if provider.oauth is not None:
            flags.append("oauth")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        click.echo(f"  {provider.name:20} {provider.transport.value:16} {target}{suffix}")


@cli.command()
@click.option("--timeout", default=30.0, show_default=True, help="Seconds to wait for connections")
@backend_option
@click.pass_context
def status(ctx: click.Context, timeout: float, backend: str) -> None:
    """Connect to providers and show their state."""
    settings: SwitchboardSettings = ctx.obj["settings"]
    store = build_token_store(backend)

    async def run() -> list[dict[str, Any]]:
        async with _connected(settings, timeout, store) as supervisor:
            return supervisor.status()

    for entry in asyncio.run(run()):
        line = f"  {entry['name']:20} {entry['state']:13} {len(entry['tools'])} tools"
        if entry["disabled_reason"]:
            line += f" ({entry['disabled_reason']})"
        click.echo(line)
        if entry["last_error"]:
            click.echo(f"      last error: {entry['last_error']}")


@cli.command()
@click.option("--timeout", default=30.0, show_default=True, help="Seconds to wait for connections")
@backend_option
@click.option("--as-json", "as_json", is_flag=True, help="Print OpenAI-style function definitions")
@click.pass_context
def tools(ctx: click.Context, timeout: float, backend: str, as_json: bool) -> None:
    """Connect to providers and list the merged tool catalog."""
    settings: SwitchboardSettings = ctx.obj["settings"]
    store = build_token_store(backend)

    async def run() -> tuple[list[ToolDescriptor], list[dict[str, Any]]]:
        async with _connected(settings, timeout, store) as supervisor:
            router = ToolRouter(supervisor.registry, settings.policy)
            return router.get_available_tools(), router.to_openai_tools()

    catalog, definitions = asyncio.run(run())
    if as_json:
        click.echo(json.dumps(definitions, indent=2))
        return
    for tool in catalog:
        description = tool.description.splitlines()[0] if tool.description else ""
        click.echo(f"  {tool.name:30} ({tool.provider}) {description}")


@cli.command()
@click.argument("tool_name")
@click.option("--args", "arguments", default="{}", help="Tool arguments as a JSON object")
@click.option("--timeout", default=30.0, show_default=True, help="Seconds to wait for connections")
@backend_option
@click.pass_context
def call(ctx: click.Context, tool_name: str, arguments: str, timeout: float, backend: str) -> None:
    """Invoke TOOL_NAME and print its output."""
    settings: SwitchboardSettings = ctx.obj["settings"]
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as e:
        click.echo(f"Error: --args is not valid JSON: {e}", err=True)
        sys.exit(1)
    if not isinstance(parsed, dict):
        click.echo("Error: --args must be a JSON object", err=True)
        sys.exit(1)
    store = build_token_store(backend)

    async def run() -> ToolResult:
        async with _connected(settings, timeout, store) as supervisor:
            router = ToolRouter(supervisor.registry, settings.policy)
            return await router.invoke(tool_name, parsed)

    try:
        result = asyncio.run(run())
    except (MCPError, SwitchboardError) as e:
        click.echo(f"Error: {e}", err=True)
        log.debug("call_error", exc_info=True)
        sys.exit(1)

    click.echo(result.content)
    if result.is_error:
        sys.exit(2)


cli.add_command(login_command)
cli.add_command(logout_command)


if __name__ == "__main__":
    cli()
