"""agentstream CLI — Typer-based command-line interface."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console

from agentstream import __version__

app = typer.Typer(
    name="agentstream",
    help="agentstream - streaming chat backend with a web-search agent",
    no_args_is_help=True,
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"agentstream v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
) -> None:
    """agentstream - streaming chat backend with a web-search agent."""


# ════════════════════════════════════════════════════════════
# run — start API server
# ════════════════════════════════════════════════════════════


@app.command()
def run(
    port: int | None = typer.Option(None, "--port", "-p", help="Port number"),
    host: str | None = typer.Option(None, "--host", "-h", help="Host address"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
) -> None:
    """Start the API server (uvicorn)."""
    import uvicorn

    from agentstream.core.config.loader import load_config

    server = load_config().server
    host = host or server.host
    port = port or server.port
    console.print(f"[green]Starting agentstream API on {host}:{port}[/green]")
    uvicorn.run("agentstream.api.app:app", host=host, port=port, reload=reload)


# ════════════════════════════════════════════════════════════
# chat — one-shot terminal chat
# ════════════════════════════════════════════════════════════


@app.command()
def chat(
    message: str = typer.Option(..., "--message", "-m", help="Message to send"),
    agent: bool = typer.Option(False, "--agent", "-a", help="Force the agent loop"),
    mode: str | None = typer.Option(None, "--mode", help="function_call or text"),
    locale: str = typer.Option("", "--locale", "-l", help="Reply language"),
) -> None:
    """Send one message and stream the reply to the terminal."""
    from agentstream.agent.messages import normalize_all
    from agentstream.agent.runner import AgentRunner
    from agentstream.core.config.loader import load_config
    from agentstream.core.config.schema import RequestSettings
    from agentstream.core.errors import AgentStreamError

    config = load_config()
    runner = AgentRunner(config)

    async def _stream() -> None:
        settings = RequestSettings.from_request(config, locale=locale, mode=mode)
        messages = normalize_all([{"role": "user", "content": message}])
        async for chunk in runner.stream(messages, settings, agent=True if agent else None):
            console.print(chunk, end="", markup=False, highlight=False)
        console.print()

    try:
        asyncio.run(_stream())
    except AgentStreamError as e:
        console.print(f"\n[red]Error:[/red] {e}")
        raise typer.Exit(1)
