"""CLI commands for OAuth token management.

Commands:
    login: Run the browser authorization flow for a provider
    logout: Delete a provider's stored tokens

Example:
    Authorize a provider and store its tokens in the OS keyring::

        $ switchboard login search

    Use the encrypted file store on a headless machine::

        $ SWITCHBOARD_TOKEN_PASSWORD=... switchboard login search --backend encrypted
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import click
import structlog

from switchboard.auth import AuthBridge, EncryptedFileBackend, KeyringBackend, TokenStore
from switchboard.config.providers import ProviderConfig
from switchboard.config.settings import SwitchboardSettings
from switchboard.exceptions import SwitchboardError

log = structlog.get_logger(__name__)

DEFAULT_TOKEN_FILE = Path("~/.config/switchboard/tokens.enc")
PASSWORD_ENV = "SWITCHBOARD_TOKEN_PASSWORD"

backend_option = click.option(
    "--backend",
    type=click.Choice(["keyring", "encrypted"]),
    default="keyring",
    show_default=True,
    help="Where tokens are stored",
)


def build_token_store(backend: str, token_file: Path | None = None) -> TokenStore:
    """Create a TokenStore for the chosen backend.

    The encrypted backend keeps tokens in ``token_file`` (``DEFAULT_TOKEN_FILE``
    when omitted), reads its master password from ``SWITCHBOARD_TOKEN_PASSWORD``
    and prompts when it is unset. Every command that reads or writes tokens
    builds its store here.
    """
    if backend == "encrypted":
        path = (token_file or DEFAULT_TOKEN_FILE).expanduser()
        password = os.environ.get(PASSWORD_ENV) or click.prompt("Token store password", hide_input=True)
        return TokenStore(EncryptedFileBackend(path, master_password=password))
    return TokenStore(KeyringBackend())


def _oauth_provider(ctx: click.Context, name: str) -> ProviderConfig:
    settings: SwitchboardSettings = ctx.obj["settings"]
    provider = settings.get_provider(name)
    if provider is None:
        click.echo(f"Error: Unknown provider: {name}", err=True)
        sys.exit(1)
    if provider.oauth is None:
        click.echo(f"Error: Provider '{name}' is not configured for OAuth", err=True)
        sys.exit(1)
    return provider


@click.command("login")
@click.argument("provider_name")
@backend_option
@click.pass_context
def login_command(ctx: click.Context, provider_name: str, backend: str) -> None:
    """Authorize PROVIDER_NAME in the browser and store its tokens."""
    provider = _oauth_provider(ctx, provider_name)
    bridge = AuthBridge(build_token_store(backend), interactive=True)
    try:
        token = asyncio.run(bridge.login(provider))
    except SwitchboardError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("login_error", exc_info=True)
        sys.exit(1)

    expiry = token.expires_at.isoformat() if token.expires_at else "never"
    click.echo(f"Logged in to {provider.name} (expires: {expiry})")


@click.command("logout")
@click.argument("provider_name")
@backend_option
@click.pass_context
def logout_command(ctx: click.Context, provider_name: str, backend: str) -> None:
    """Delete the stored tokens of PROVIDER_NAME."""
    provider = _oauth_provider(ctx, provider_name)
    bridge = AuthBridge(build_token_store(backend), interactive=False)
    try:
        removed = asyncio.run(bridge.logout(provider))
    except SwitchboardError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    if removed:
        click.echo(f"Logged out of {provider.name}")
    else:
        click.echo(f"No stored tokens for {provider.name}")
