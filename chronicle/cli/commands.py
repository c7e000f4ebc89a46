"""CLI commands for chronicle.

``serve`` runs the MCP stdio server an agent launches; ``host`` runs a
headless Host for a workspace so the agent has something to talk to;
``config`` prints the resolved configuration.
"""

import asyncio
import errno
import json
import os
from pathlib import Path
from typing import Any

# Use the bundled LiteLLM cost map so importing litellm never hits the network.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from chronicle import __logo__, __version__
from chronicle.cli.shared.logging_utils import configure_logging, ensure_rotating_log_file
from chronicle.config.loader import get_config_path, load_config
from chronicle.config.schema import Config

app = typer.Typer(
    name="chronicle",
    help=f"{__logo__} chronicle - meeting notes bridge between the Chronicle app and MCP agents",
    no_args_is_help=True,
)

# Human-facing output goes to stderr; stdout may carry MCP frames.
console = Console(stderr=True)


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} chronicle v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
):
    """chronicle - meeting notes bridge."""


def _load_config_or_exit(config_path: Path | None) -> Config:
    try:
        return load_config(config_path)
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1)


def _setup_logging(config: Config, command: str, verbose: bool) -> Path | None:
    level = "DEBUG" if verbose else config.log_level
    configure_logging(level)
    if config.log_file:
        return ensure_rotating_log_file(command, level=level)
    return None


@app.command()
def serve(
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging on stderr"),
):
    """Run the MCP server on stdio, connected to the Chronicle app over WebSocket."""
    from chronicle.agent.runtime import AgentRuntime
    from chronicle.mcp_server import run_stdio

    config = _load_config_or_exit(config_path)
    _setup_logging(config, "serve", verbose)
    logger.info(f"Using model {config.model}, app at {config.ws_url}")

    runtime = AgentRuntime(config)
    try:
        asyncio.run(run_stdio(runtime))
    except KeyboardInterrupt:
        logger.info("Interrupted")


@app.command()
def host(
    workspace: Path = typer.Argument(..., help="Workspace directory served to agents"),
    note: Path = typer.Option(None, "--note", "-n", help="Note to present as the currently open file"),
    port: int = typer.Option(None, "--port", "-p", help="Listen port (default: CHRONICLE_WS_PORT or 9847)"),
    trigger: str = typer.Option(None, "--trigger", help="Ask the first agent that connects to process the note with this style"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging on stderr"),
):
    """Run a headless Chronicle Host for a workspace."""
    from chronicle.bridge.host import HostServer, HostState

    config = _load_config_or_exit(config_path)
    log_path = _setup_logging(config, "host", verbose)

    workspace = workspace.expanduser().resolve()
    if not workspace.is_dir():
        console.print(f"[red]Workspace not found:[/red] {workspace}")
        raise typer.Exit(1)
    bind_port = port or config.ws_port

    state = HostState(workspace_path=str(workspace))
    if note is not None:
        note_path = note if note.is_absolute() else workspace / note
        if not note_path.is_file():
            console.print(f"[red]Note not found:[/red] {note_path}")
            raise typer.Exit(1)
        state.open_file(note_path)

    def on_push(event: str, data: Any) -> None:
        console.print(f"[cyan]push[/cyan] {event}: {json.dumps(data, ensure_ascii=False)[:300]}")

    server = HostServer(
        state,
        host=config.ws_host,
        port=bind_port,
        request_timeout=config.request_timeout_seconds,
        push_listener=on_push,
    )

    async def run() -> None:
        try:
            await server.start()
        except OSError as e:
            if e.errno != errno.EADDRINUSE:
                raise
            console.print(
                f"[red]Port {bind_port} is already in use.[/red] "
                f"Is the Chronicle app running? Use [cyan]--port[/cyan] to pick another port."
            )
            raise typer.Exit(1)
        console.print(f"{__logo__} Chronicle host on {server.url} for {workspace}")
        if log_path:
            console.print(f"[dim]Logs: {log_path}[/dim]")
        if trigger:
            asyncio.create_task(_trigger_when_connected(server, trigger))
        try:
            await server.serve_forever()
        finally:
            await server.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("Stopped")


async def _trigger_when_connected(server: Any, style: str) -> None:
    while server.client_count == 0:
        await asyncio.sleep(0.5)
    try:
        results = await server.trigger_processing(style)
    except Exception as e:
        console.print(f"[red]Trigger failed:[/red] {e}")
        return
    for result in results:
        console.print(f"[green]triggerProcessing[/green] -> {result}")


@app.command("config")
def show_config(
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
):
    """Show the resolved configuration (file + CHRONICLE_* environment)."""
    config = _load_config_or_exit(config_path)
    path = config_path or get_config_path()

    table = Table(title=f"{__logo__} chronicle configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in config.model_dump().items():
        table.add_row(name, json.dumps(value) if isinstance(value, (dict, list)) else str(value))
    console.print(table)
    console.print(f"[dim]Config file: {path} ({'found' if path.exists() else 'not found'})[/dim]")


if __name__ == "__main__":
    app()
