from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Optional

import typer
import uvicorn
from dotenv import load_dotenv

app = typer.Typer(add_completion=False)

def _load_env() -> None:
    load_dotenv()

def _setup_logging(console_stream=None) -> None:
    """Configure centralized logging to the console and log files."""
    from kodrdriv_mcp.core.config import Settings
    from kodrdriv_mcp.core.logging_config import setup_logging

    settings = Settings.from_env()
    setup_logging(
        log_dir=settings.log_dir,
        log_level=settings.log_level,
        clear_on_launch=settings.clear_logs_on_launch,
        console_stream=console_stream,
    )

@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind host (default: KODRDRIV_MCP_HOST)"),
    port: Optional[int] = typer.Option(None, help="Bind port (default: KODRDRIV_MCP_PORT)"),
) -> None:
    """Serve MCP over HTTP."""
    _load_env()
    _setup_logging()

    from kodrdriv_mcp.core.config import Settings

    settings = Settings.from_env()
    uvicorn.run(
        "kodrdriv_mcp.mcp.server:create_app",
        host=host or settings.host,
        port=port or settings.port,
        factory=True,
    )

@app.command()
def stdio() -> None:
    """Serve MCP over stdin/stdout."""
    _load_env()
    # stdout carries the protocol; keep log output off it
    _setup_logging(console_stream=sys.stderr)

    from kodrdriv_mcp.core.config import Settings
    from kodrdriv_mcp.mcp.protocol import MCPProtocolHandler
    from kodrdriv_mcp.mcp.stdio import StdioServer

    settings = Settings.from_env()
    handler = MCPProtocolHandler(working_directory=os.getcwd(), poll_interval=settings.poll_interval)
    asyncio.run(StdioServer(handler).serve())

@app.command()
def run(
    tool: str = typer.Argument(..., help="Tool name, e.g. kodrdriv_tree_publish"),
    args: str = typer.Option("{}", "--args", help="Tool arguments as a JSON object"),
) -> None:
    """Run one tool locally and print its progress and result."""
    _load_env()
    _setup_logging(console_stream=sys.stderr)

    from kodrdriv_mcp.core.config import Settings
    from kodrdriv_mcp.core.executor import ExecutionContext
    from kodrdriv_mcp.mcp.tools import TOOL_EXECUTORS

    executor = TOOL_EXECUTORS.get(tool)
    if executor is None:
        typer.secho(f"Unknown tool: {tool}", fg=typer.colors.RED, err=True)
        typer.echo(f"Available: {', '.join(sorted(TOOL_EXECUTORS))}", err=True)
        raise typer.Exit(code=2)
    try:
        tool_args = json.loads(args)
    except json.JSONDecodeError as exc:
        typer.secho(f"--args is not valid JSON: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)

    def on_progress(progress, total, message, new_logs=None) -> None:
        label = f"{progress}/{total}" if total is not None else str(progress)
        typer.echo(f"[{label}] {message}", err=True)

    settings = Settings.from_env()
    context = ExecutionContext(
        working_directory=os.getcwd(),
        progress_callback=on_progress,
        poll_interval=settings.poll_interval,
    )
    result = asyncio.run(executor(tool_args, context))
    typer.echo(json.dumps(result.to_dict(), indent=2, default=str))
    if not result.success:
        raise typer.Exit(code=1)

@app.command()
def version() -> None:
    from kodrdriv_mcp import __version__

    typer.echo(__version__)

if __name__ == "__main__":
    app()
