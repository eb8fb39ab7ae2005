"""
Command line front end for the OAuth debugger.

Every command loads the state saved for the target server, acts on it and
saves it again, so a flow can be driven across separate invocations:

    oauth-debugger quick https://example.com/mcp
    oauth-debugger resume https://example.com/mcp <code>
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import anyio
import click

from oauth_debugger.client.auth import HttpxOAuthClient
from oauth_debugger.client.debugger import AuthDebugger, RedirectHandler
from oauth_debugger.client.storage import JSONFileStorage, SessionAuthStore
from oauth_debugger.settings import DebuggerSettings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_debugger(
    settings: DebuggerSettings, server_url: str, redirect_handler: RedirectHandler | None = None
) -> AsyncIterator[AuthDebugger]:
    store = SessionAuthStore(server_url, JSONFileStorage(settings.storage_path))
    async with HttpxOAuthClient(timeout=settings.http_timeout) as client:
        debugger = AuthDebugger(
            server_url=server_url,
            store=store,
            client=client,
            client_metadata=settings.client_metadata(),
            redirect_url=str(settings.redirect_url),
            redirect_handler=redirect_handler,
        )
        await debugger.load()
        yield debugger


def echo_state(debugger: AuthDebugger) -> None:
    click.echo(debugger.state.model_dump_json(indent=2, exclude_none=True))


@click.group()
@click.option(
    "--storage",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="JSON file holding the persisted OAuth state",
)
@click.option("--redirect-url", default=None, help="Redirect URI to register and authorize with")
@click.option("--log-level", default=None, help="Logging level")
@click.pass_context
def cli(ctx: click.Context, storage: Path | None, redirect_url: str | None, log_level: str | None) -> None:
    """Step through the OAuth authorization code flow against a server."""
    overrides = {
        key: value
        for key, value in {"storage_path": storage, "redirect_url": redirect_url, "log_level": log_level}.items()
        if value is not None
    }
    settings = DebuggerSettings(**overrides)
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s - %(levelname)s - %(message)s")
    ctx.obj = settings


@cli.command()
@click.argument("server_url")
@click.option("--code", default=None, help="Authorization code to submit with this step")
@click.pass_obj
def step(settings: DebuggerSettings, server_url: str, code: str | None) -> None:
    """Run the current step once."""

    async def run() -> bool:
        async with open_debugger(settings, server_url) as debugger:
            if code is not None:
                debugger.update_state({"authorization_code": code})
            ok = await debugger.proceed()
            await debugger.save()
            echo_state(debugger)
            return ok

    if not anyio.run(run):
        raise SystemExit(1)


@cli.command()
@click.argument("server_url")
@click.option("--open/--no-open", "open_browser", default=True, help="Open the authorization URL in a browser")
@click.pass_obj
def quick(settings: DebuggerSettings, server_url: str, open_browser: bool) -> None:
    """Discover, register and start authorization in one go."""

    async def redirect(authorization_url: str) -> None:
        click.echo(f"Authorize at: {authorization_url}", err=True)
        if open_browser:
            click.launch(authorization_url)

    async def run() -> bool:
        async with open_debugger(settings, server_url, redirect_handler=redirect) as debugger:
            ok = await debugger.quick_flow()
            await debugger.save()
            echo_state(debugger)
            return ok

    if not anyio.run(run):
        raise SystemExit(1)


@cli.command()
@click.argument("server_url")
@click.argument("authorization_code")
@click.pass_obj
def resume(settings: DebuggerSettings, server_url: str, authorization_code: str) -> None:
    """Exchange the authorization code brought back from the redirect."""

    async def run() -> bool:
        async with open_debugger(settings, server_url) as debugger:
            await debugger.resume(authorization_code)
            ok = await debugger.finish_flow()
            await debugger.save()
            echo_state(debugger)
            return ok

    if not anyio.run(run):
        raise SystemExit(1)


@cli.command()
@click.argument("server_url")
@click.pass_obj
def show(settings: DebuggerSettings, server_url: str) -> None:
    """Print the saved state for a server."""

    async def run() -> None:
        async with open_debugger(settings, server_url) as debugger:
            echo_state(debugger)

    anyio.run(run)


@cli.command()
@click.argument("server_url")
@click.pass_obj
def clear(settings: DebuggerSettings, server_url: str) -> None:
    """Remove everything stored for a server."""

    async def run() -> None:
        async with open_debugger(settings, server_url) as debugger:
            await debugger.clear()
            echo_state(debugger)

    anyio.run(run)


def main() -> None:
    cli()
