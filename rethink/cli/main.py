"""CLI entry point.

Provides the main CLI application with commands for:
- serve: Run the API server
- think: Run the thinking loop once against the configured providers
- providers: Show the configured provider chain
- status: Query a running server's /status endpoint
"""

import asyncio
from typing import Annotated, Any, Optional

import httpx
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from rethink import __version__
from rethink.exceptions import RethinkError
from rethink.llm.factory import build_descriptors, list_supported_providers
from rethink.logging_config import configure_logging
from rethink.runtime import build_runtime
from rethink.settings import get_settings
from rethink.thinking.engine import ThinkingResult, ThinkingRound

app = typer.Typer(
    name="rethink",
    help="Recursive thinking over a resilient multi-provider LLM dispatcher",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

_STATE_STYLES = {"closed": "green", "half_open": "yellow", "open": "red"}
_HEALTH_STYLES = {"healthy": "green", "degraded": "yellow", "unhealthy": "red"}


@app.command()
def serve(
    host: Annotated[
        Optional[str],  # noqa: UP007
        typer.Option("--host", "-h", help="Host to bind to (default API_HOST)"),
    ] = None,
    port: Annotated[
        Optional[int],  # noqa: UP007
        typer.Option("--port", "-p", help="Port to bind to (default API_PORT)"),
    ] = None,
    reload: Annotated[
        bool,
        typer.Option("--reload", "-r", help="Enable auto-reload for development"),
    ] = False,
    workers: Annotated[
        Optional[int],  # noqa: UP007
        typer.Option("--workers", "-w", help="Number of worker processes (default API_WORKERS)"),
    ] = None,
) -> None:
    """Start the Rethink API server with uvicorn."""
    import uvicorn

    settings = get_settings()
    configure_logging()
    host = host or settings.api_host
    port = port or settings.api_port
    workers = workers or settings.api_workers

    console.print(
        Panel(
            f"[bold green]Starting Rethink API Server[/bold green]\n"
            f"Host: {host}\n"
            f"Port: {port}\n"
            f"Workers: {workers}\n"
            f"Reload: {reload}",
            title="Rethink",
            border_style="green",
        )
    )

    uvicorn.run(
        "rethink.api.main:app",
        host=host,
        port=port,
        reload=reload,
        workers=workers if not reload else 1,
        log_level=settings.log_level.lower(),
    )


@app.command()
def think(
    prompt: Annotated[str, typer.Argument(help="The question to think about")],
    rounds: Annotated[
        Optional[int],  # noqa: UP007
        typer.Option("--rounds", "-n", min=1, help="Round cap for this run"),
    ] = None,
    target: Annotated[
        Optional[float],  # noqa: UP007
        typer.Option("--target", "-t", min=0.0, max=1.0, help="Target quality (0.0-1.0)"),
    ] = None,
    max_time: Annotated[
        Optional[float],  # noqa: UP007
        typer.Option("--max-time", help="Thinking time budget in seconds"),
    ] = None,
    show_history: Annotated[
        bool,
        typer.Option("--history/--no-history", help="Print every round"),
    ] = True,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log at DEBUG level"),
    ] = False,
) -> None:
    """Run the thinking loop once and print the best answer."""
    configure_logging("DEBUG" if verbose else None)

    try:
        result = asyncio.run(_run_think(prompt, rounds, target, max_time))
    except RethinkError as e:
        console.print(f"[red]Thinking failed ({type(e).__name__}): {e}[/red]")
        raise typer.Exit(code=1) from e

    if show_history:
        _display_rounds(result.rounds)
    console.print(
        Panel(
            result.response,
            title=(
                f"Answer (quality {result.final_quality:.2f}, "
                f"improvement {result.improvement:+.2f}, {len(result.rounds)} round(s))"
            ),
            subtitle=result.stop_reason.value,
            border_style="green" if result.satisfied else "yellow",
        )
    )


async def _run_think(
    prompt: str,
    rounds: int | None,
    target: float | None,
    max_time: float | None,
) -> ThinkingResult:
    runtime = build_runtime(get_settings())
    runtime.start()
    try:
        return await runtime.engine.think(
            prompt,
            max_thinking_time=max_time,
            target_quality=target,
            max_rounds=rounds,
        )
    finally:
        runtime.stop()


def _display_rounds(rounds: list[ThinkingRound]) -> None:
    table = Table(title="Thinking History", show_header=True)
    table.add_column("Round", justify="right", style="cyan")
    table.add_column("Branch", justify="right")
    table.add_column("Quality", justify="right")
    table.add_column("Elapsed", justify="right")
    table.add_column("Critique")
    for r in rounds:
        table.add_row(
            str(r.index),
            str(r.branch),
            f"{r.quality:.2f}",
            f"{r.elapsed_seconds:.1f}s",
            r.critique[:80],
        )
    console.print(table)


@app.command()
def providers() -> None:
    """Show the configured provider chain in priority order."""
    settings = get_settings()
    try:
        descriptors = build_descriptors(settings)
    except RethinkError as e:
        console.print(f"[red]Invalid provider configuration: {e}[/red]")
        raise typer.Exit(code=1) from e

    base_urls = list_supported_providers()
    table = Table(title="Provider Chain", show_header=True)
    table.add_column("Priority", justify="right", style="cyan")
    table.add_column("Name")
    table.add_column("Base URL", style="dim")
    table.add_column("Credential")
    table.add_column("Timeout", justify="right")
    for d in descriptors:
        table.add_row(
            str(d.priority),
            d.name,
            d.base_url or base_urls.get(d.provider, "[red]unknown[/red]"),
            d.credential_ref or "-",
            f"{d.timeout_seconds:.0f}s",
        )
    console.print(table)

    flags = {
        "parallel thinking": settings.enable_parallel_thinking,
        "adaptive optimization": settings.enable_adaptive_optimization,
        "prompt compression": settings.enable_prompt_compression,
        "hedging": settings.hedge_enabled,
    }
    console.print(
        "Features: " + ", ".join(f"{name}={'on' if on else 'off'}" for name, on in flags.items())
    )


@app.command()
def status(
    url: Annotated[
        Optional[str],  # noqa: UP007
        typer.Option("--url", "-u", help="Base URL of a running server"),
    ] = None,
) -> None:
    """Show a running server's component and provider status."""
    settings = get_settings()
    base_url = url or f"http://{settings.api_host}:{settings.api_port}"
    if base_url.startswith("http://0.0.0.0"):
        base_url = base_url.replace("0.0.0.0", "127.0.0.1", 1)  # noqa: S104

    try:
        data = asyncio.run(_fetch_status(base_url))
    except httpx.ConnectError as e:
        console.print(f"[yellow]API server not running at {base_url}[/yellow]")
        raise typer.Exit(code=1) from e
    except httpx.HTTPError as e:
        console.print(f"[red]Error fetching status: {e}[/red]")
        raise typer.Exit(code=1) from e

    _display_status(data)


async def _fetch_status(base_url: str) -> dict[str, Any]:
    async with httpx.AsyncClient(timeout=5.0) as client:
        response = await client.get(f"{base_url.rstrip('/')}/api/v1/status")
        response.raise_for_status()
        return response.json()


def _display_status(data: dict[str, Any]) -> None:
    overall = data.get("status", "unknown")
    console.print(
        f"Status: [{_HEALTH_STYLES.get(overall, 'white')}]{overall}[/]"
        f"  version {data.get('version', '?')}  ({data.get('environment', '?')})"
    )

    components = Table(title="Components", show_header=True)
    components.add_column("Component", style="cyan")
    components.add_column("Status")
    components.add_column("Message")
    for c in data.get("components", []):
        style = _HEALTH_STYLES.get(c["status"], "white")
        components.add_row(c["name"], f"[{style}]{c['status']}[/]", c.get("message") or "")
    console.print(components)

    provider_table = Table(title="Providers", show_header=True)
    provider_table.add_column("Priority", justify="right")
    provider_table.add_column("Name", style="cyan")
    provider_table.add_column("Circuit")
    provider_table.add_column("Failures", justify="right")
    provider_table.add_column("Degraded")
    for p in data.get("providers", []):
        style = _STATE_STYLES.get(p["circuit_state"], "white")
        provider_table.add_row(
            str(p["priority"]),
            p["name"],
            f"[{style}]{p['circuit_state']}[/]",
            str(p["failure_count"]),
            "yes" if p.get("degraded") else "no",
        )
    console.print(provider_table)


@app.command()
def version() -> None:
    """Show Rethink version information."""
    console.print(f"Rethink v{__version__}")


# Entry point for: python -m rethink.cli.main
if __name__ == "__main__":
    app()
