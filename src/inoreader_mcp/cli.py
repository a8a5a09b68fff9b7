"""Command-line interface: serve tools or manage stored credentials."""

import asyncio
import sys
import webbrowser

import click

from .auth import AuthFlowError, NotAuthenticatedError, TokenProvider
from .config import load_config
from .keychain import SecretStoreError
from .server import configure_logging, run_server


def _provider() -> TokenProvider:
    return TokenProvider(load_config())


@click.group(invoke_without_command=True)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Inoreader MCP Server.

    Without a command, starts the MCP server (stdio unless MCP_TRANSPORT
    says otherwise).

    \b
    Environment variables:
      INOREADER_APP_ID        Your Inoreader App ID (required for auth)
      INOREADER_APP_KEY       Your Inoreader App Key (required for auth)
      INOREADER_ACCESS_TOKEN  Override keychain token (optional)
    """
    if ctx.invoked_subcommand is None:
        config = load_config()
        configure_logging(config.log_level)
        run_server(config)


@cli.group("auth")
def auth_group() -> None:
    """Manage Inoreader credentials in the OS keychain."""


@auth_group.command("login")
def auth_login() -> None:
    """Authenticate with Inoreader (opens browser)."""
    provider = _provider()

    def open_browser(url: str) -> None:
        click.echo("Opening browser for authentication...")
        click.echo(f"If the browser doesn't open, visit:\n{url}\n")
        webbrowser.open(url)
        click.echo("Waiting for authentication...")

    try:
        asyncio.run(provider.login(open_browser=open_browser))
    except KeyboardInterrupt:
        click.echo("\nLogin cancelled.")
        sys.exit(1)
    except (AuthFlowError, NotAuthenticatedError, SecretStoreError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo("Authentication successful! Tokens saved to keychain.")


@auth_group.command("logout")
def auth_logout() -> None:
    """Remove saved tokens from keychain."""
    asyncio.run(_provider().logout())
    click.echo("Logged out. Tokens removed from keychain.")


@auth_group.command("status")
def auth_status() -> None:
    """Show current authentication status."""
    status = asyncio.run(_provider().status())
    click.echo(f"Keychain available: {'Yes' if status.keychain_available else 'No'}")

    if status.source == "env":
        click.echo("Using access token from environment variable.")
        return
    if status.source is None:
        click.echo("Not authenticated. Run 'inoreader-mcp auth login' to authenticate.")
        return

    click.echo("Authenticated via keychain.")
    minutes = status.expires_in_minutes
    if minutes is not None:
        if minutes >= 0:
            click.echo(f"Token expires in {minutes} minutes.")
        else:
            click.echo("Token expired. Will refresh on next use.")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
