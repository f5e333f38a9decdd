"""CLI commands for authentication."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from pkcesession.auth.browser import open_in_browser
from pkcesession.auth.oauth2 import OAuth2Client
from pkcesession.auth.server import CallbackServer
from pkcesession.auth.service import AuthenticationService
from pkcesession.auth.storage import FileSecretStore
from pkcesession.exceptions import ConfigError, NotAuthenticatedError, PkceSessionError
from pkcesession.settings import get_settings

auth_app = typer.Typer(name="auth", help="Manage authentication.")
console = Console()


def _show_error(message: str) -> None:
    console.print(f"[red]{message}[/red]")


def _build_service(redirect_uri: str | None = None) -> AuthenticationService:
    settings = get_settings()
    return AuthenticationService(
        OAuth2Client(settings),
        FileSecretStore(),
        settings=settings,
        redirect_uri=redirect_uri,
        open_browser=_open_browser,
        show_error=_show_error,
    )


async def _open_browser(url: str) -> bool:
    console.print("\n[dim]Opening browser for authentication...[/dim]")
    console.print("[dim]If browser doesn't open, visit:[/dim]")
    console.print(f"[link={url}]{url[:80]}...[/link]\n")
    await open_in_browser(url)
    # The URL is printed, so the flow can continue even without a browser
    return True


@auth_app.command()
def status() -> None:
    """Show authentication status."""
    asyncio.run(_status_async())


async def _status_async() -> None:
    """Async implementation of status command."""
    settings = get_settings()

    async with _build_service() as service:
        sessions = await service.get_sessions()

    table = Table(title="Authentication Status")
    table.add_column("Issuer", style="cyan")
    table.add_column("Account", style="green")
    table.add_column("Status", style="yellow")

    if sessions:
        table.add_row(settings.issuer, sessions[0].account.label, "Signed in")
    else:
        table.add_row(settings.issuer, "-", "Not signed in (run `pkcesession auth login`)")

    console.print(table)


@auth_app.command()
def login() -> None:
    """Sign in through the browser."""
    try:
        asyncio.run(_login_async())
    except PkceSessionError as e:
        console.print(f"\n[red]Authentication failed: {e}[/red]")
        raise typer.Exit(1) from e


async def _login_async() -> None:
    """Run the OAuth flow with a loopback redirect."""
    settings = get_settings()
    errors = settings.validate_config()
    if errors:
        raise ConfigError("; ".join(errors))

    service: AuthenticationService | None = None

    def on_uri(uri: str) -> bool:
        return service.handle_uri(uri) if service is not None else False

    console.print("\n[dim]Starting OAuth flow...[/dim]")
    async with CallbackServer(
        on_uri,
        host=settings.callback_host,
        port=settings.callback_port,
        path=settings.callback_path,
    ) as server:
        service = _build_service(redirect_uri=server.callback_url)
        async with service:
            session = await service.create_session()

    console.print(f"\n[green bold]Signed in as {session.account.label}[/green bold]")


@auth_app.command()
def token() -> None:
    """Print a valid access token, refreshing it if needed."""
    access_token = asyncio.run(_token_async())
    if access_token is None:
        console.print(f"[red]{NotAuthenticatedError()}[/red]")
        raise typer.Exit(1)
    print(access_token)


async def _token_async() -> str | None:
    async with _build_service() as service:
        return await service.get_token()


@auth_app.command()
def logout() -> None:
    """Remove stored authentication."""
    asyncio.run(_logout_async())
    console.print("[green]Signed out[/green]")


async def _logout_async() -> None:
    async with _build_service() as service:
        await service.sign_out()
