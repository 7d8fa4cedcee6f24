"""
CLI entrypoint for ScriptStream.
"""
import asyncio
import sys

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from scriptstream.client.content_assembler import ContentAssembler
from scriptstream.client.generation_session import GenerationSocketSession
from scriptstream.client.http_client import HttpClient
from scriptstream.client.repositories import AuthApi, GenerationApi
from scriptstream.client.token_refresh import TokenRefreshCoordinator
from scriptstream.client.token_store import FileTokenStore
from scriptstream.client.visualizer import GenerationDashboard
from scriptstream.shared.config import settings
from scriptstream.shared.errors import ApiError, NetworkError

app = typer.Typer(help="ScriptStream CLI: dev server, live generation dashboard and stats")
console = Console()

@app.callback()
def main(log_level: str = typer.Option(settings.LOG_LEVEL, help="loguru level for client and server logs")):
    """Route loguru output to stderr at the chosen level."""
    logger.remove()
    logger.add(sys.stderr, level=log_level.upper())

@app.command()
def server(
    host: str = typer.Option("127.0.0.1", help="Interface to bind"),
    port: int = typer.Option(settings.PORT, help="Port to listen on"),
):
    """Start the FastAPI development backend using Uvicorn."""
    import uvicorn
    typer.echo(f"Starting server on port {port}...")
    uvicorn.run("scriptstream.server.main:app", host=host, port=port, log_level=settings.LOG_LEVEL.lower())

async def _generate(email: str, password: str, topic: str, platform: str, timeout: float):
    store = FileTokenStore()
    refresher = TokenRefreshCoordinator(store)
    async with HttpClient(store, refresher=refresher) as http:
        auth, generations = AuthApi(http), GenerationApi(http)
        if not store.access_token:
            await auth.login(email, password)
        try:
            generation = await generations.create(topic, platform)
        except ApiError as e:
            # A stored session the server no longer knows: refresh already failed, log in once more
            if not e.is_unauthorized:
                raise
            await auth.login(email, password)
            generation = await generations.create(topic, platform)

    session = GenerationSocketSession(store, assembler=ContentAssembler(), refresher=refresher)
    dashboard = GenerationDashboard(session)
    await dashboard.run(generation.id, timeout)
    if dashboard.error:
        console.print(f"[red]{dashboard.error}[/]")
        raise typer.Exit(1)

@app.command()
def generate(
    topic: str = typer.Argument(..., help="What the script should be about"),
    platform: str = typer.Option("tiktok", help="Target platform"),
    email: str = typer.Option("demo@scriptstream.dev", help="Login email (used when no stored session)"),
    password: str = typer.Option("demo-password", help="Login password"),
    timeout: float = typer.Option(120.0, help="Seconds to wait for the generation to finish"),
):
    """Create a generation and watch it stream on the rich dashboard."""
    try:
        asyncio.run(_generate(email, password, topic, platform, timeout))
    except (ApiError, NetworkError) as e:
        logger.error(f"event=generate_failed reason='{e}'")
        console.print(f"[red]{e.user_message}[/]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        pass

@app.command()
def demo(
    product: str = typer.Argument(..., help="Product name"),
    niche: str = typer.Option("fitness", help="Product niche"),
    audience: str = typer.Option("busy parents", help="Target audience"),
):
    """Fetch the public demo samples (no login needed)."""
    async def _demo():
        async with HttpClient(FileTokenStore()) as http:
            return await GenerationApi(http).demo(product, niche, audience)

    try:
        samples = asyncio.run(_demo())
    except (ApiError, NetworkError) as e:
        console.print(f"[red]{e.user_message}[/]")
        raise typer.Exit(1)

    table = Table(title=f"Demo scripts for {product}", show_lines=True)
    table.add_column("Platform", style="cyan")
    table.add_column("Title", style="magenta")
    table.add_column("Hook", style="green")
    for sample in samples:
        table.add_row(sample.platform or "-", sample.title, sample.hook)
    console.print(table)

@app.command()
def stats():
    """Query the server for live connection stats."""
    import httpx
    resp = httpx.get(f"{settings.API_BASE_URL}/stats")
    typer.echo(resp.json())

@app.command()
def logout():
    """Revoke the stored session and delete the local token file."""
    async def _logout():
        store = FileTokenStore()
        async with HttpClient(store) as http:
            await AuthApi(http).logout()

    asyncio.run(_logout())
    typer.echo("Logged out.")

if __name__ == "__main__":
    app()
