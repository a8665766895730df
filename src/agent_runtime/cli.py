"""Command-line interface for inspecting runtime state using Typer."""

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from agent_runtime.config import Settings, get_settings, load_settings, reset_settings
from agent_runtime.exceptions import AgentRuntimeError, ConfigurationError
from agent_runtime.logging_config import bind_thread_context, get_logger, setup_logging
from agent_runtime.persistence.base import Checkpoint
from agent_runtime.persistence.sqlite import SQLiteCheckpointStore
from agent_runtime.runtime import RuntimeContext
from agent_runtime.workspace.synced import SyncedWorkspace

T = TypeVar("T")

app = typer.Typer(
    name="agent-runtime",
    help="Inspect agent checkpoints and synced workspaces",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

EnvFileOption = typer.Option(
    None,
    "--env-file",
    "-e",
    help="Path to .env file",
)


def _settings(env_file: Optional[Path]) -> Settings:
    if env_file:
        reset_settings()
        settings = load_settings(env_file)
    else:
        settings = get_settings()
    setup_logging(settings.logging)
    return settings


def _with_store(
    settings: Settings, action: Callable[[SQLiteCheckpointStore], Awaitable[T]]
) -> T:
    async def run() -> T:
        async with RuntimeContext(settings) as context:
            return await action(await context.get_checkpointer())

    try:
        return asyncio.run(run())
    except AgentRuntimeError as e:
        console.print(f"[bold red]Storage Error:[/bold red] {e}", style="red")
        logger.error("cli_storage_error", error=str(e))
        raise typer.Exit(code=1)


def _summarize(value: Any) -> str:
    if isinstance(value, dict):
        return ", ".join(sorted(str(key) for key in value)) or "(empty)"
    return type(value).__name__


@app.command()
def threads(env_file: Optional[Path] = EnvFileOption) -> None:
    """List threads that have checkpoints."""
    settings = _settings(env_file)
    summaries = _with_store(settings, lambda store: store.list_threads())

    if not summaries:
        console.print("[dim]No checkpoints stored[/dim]")
        return

    table = Table(title="Threads", show_header=True, header_style="bold")
    table.add_column("Thread ID", style="cyan", no_wrap=True)
    table.add_column("Checkpoints", style="magenta", justify="right")
    table.add_column("Latest Checkpoint", style="green")
    for summary in summaries:
        table.add_row(
            summary.thread_id,
            str(summary.checkpoint_count),
            summary.latest_checkpoint_id,
        )
    console.print(table)


@app.command()
def history(
    thread_id: str = typer.Argument(..., help="Thread ID to inspect"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Show at most N checkpoints"),
    env_file: Optional[Path] = EnvFileOption,
) -> None:
    """List a thread's checkpoints, oldest first."""
    settings = _settings(env_file)
    bind_thread_context(thread_id)

    async def collect(store: SQLiteCheckpointStore) -> list[Checkpoint]:
        return [checkpoint async for checkpoint in store.list(thread_id, limit=limit)]

    checkpoints = _with_store(settings, collect)
    if not checkpoints:
        console.print(f"[yellow]No checkpoints for thread {thread_id}[/yellow]")
        raise typer.Exit(code=1)

    table = Table(title=f"History of {thread_id}", show_header=True, header_style="bold")
    table.add_column("Checkpoint ID", style="cyan", no_wrap=True)
    table.add_column("Namespace", style="dim")
    table.add_column("Parent", style="magenta")
    table.add_column("Created", style="green")
    table.add_column("Step", justify="right")
    for checkpoint in checkpoints:
        table.add_row(
            checkpoint.checkpoint_id,
            checkpoint.checkpoint_ns or "-",
            checkpoint.parent_checkpoint_id or "-",
            checkpoint.created_at.isoformat(timespec="seconds"),
            str(checkpoint.metadata.get("step", "-")),
        )
    console.print(table)


@app.command()
def latest(
    thread_id: str = typer.Argument(..., help="Thread ID to inspect"),
    env_file: Optional[Path] = EnvFileOption,
) -> None:
    """Show the checkpoint a resumed thread would start from."""
    settings = _settings(env_file)
    bind_thread_context(thread_id)
    checkpoint = _with_store(settings, lambda store: store.get_latest(thread_id))

    if checkpoint is None:
        console.print(f"[yellow]No checkpoints for thread {thread_id}[/yellow]")
        raise typer.Exit(code=1)

    console.print(
        Panel(
            f"[bold cyan]Checkpoint:[/bold cyan] {checkpoint.checkpoint_id}\n"
            f"[bold cyan]Parent:[/bold cyan] {checkpoint.parent_checkpoint_id or '-'}\n"
            f"[bold cyan]Created:[/bold cyan] {checkpoint.created_at.isoformat()}\n"
            f"[bold cyan]State:[/bold cyan] {_summarize(checkpoint.state)}\n"
            f"[bold cyan]Metadata:[/bold cyan] {json.dumps(checkpoint.metadata, default=str)}",
            title=f"[bold green]{thread_id}[/bold green]",
            border_style="green",
        )
    )


@app.command()
def delete(
    thread_id: str = typer.Argument(..., help="Thread ID to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    env_file: Optional[Path] = EnvFileOption,
) -> None:
    """Delete every checkpoint of a thread."""
    if not yes:
        typer.confirm(f"Delete all checkpoints of {thread_id}?", abort=True)

    settings = _settings(env_file)
    count = _with_store(settings, lambda store: store.delete(thread_id))
    console.print(f"[bold green]✓[/bold green] Deleted {count} checkpoints of {thread_id}")


@app.command()
def prune(
    thread_id: str = typer.Argument(..., help="Thread ID to prune"),
    keep: int = typer.Option(10, "--keep", "-k", min=1, help="Checkpoints to keep"),
    env_file: Optional[Path] = EnvFileOption,
) -> None:
    """Delete old checkpoints, keeping the newest ones."""
    settings = _settings(env_file)
    removed = _with_store(settings, lambda store: store.prune(thread_id, keep))
    console.print(f"[bold green]✓[/bold green] Removed {removed} checkpoints of {thread_id}")


@app.command()
def files(
    workspace: Path = typer.Argument(..., help="Workspace directory"),
    prefix: str = typer.Option("/", "--prefix", "-p", help="Only list paths under this prefix"),
) -> None:
    """List the files an agent would see in a synced workspace."""
    synced = SyncedWorkspace()
    synced.configure(workspace)
    try:
        table = Table(title=str(workspace), show_header=True, header_style="bold")
        table.add_column("Path", style="cyan")
        table.add_column("Size", style="magenta", justify="right")
        for path in synced.list_files(prefix):
            entry = synced.stat(path)
            if entry is not None:
                table.add_row(path, str(len(entry.content)))
        console.print(table)
    finally:
        synced.close()


@app.command()
def config(
    env_file: Optional[Path] = EnvFileOption,
) -> None:
    """Display current configuration."""
    try:
        settings = _settings(env_file)
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration Error:[/bold red] {e}", style="red")
        raise typer.Exit(code=1)

    table = Table(title="Agent Runtime Configuration", show_header=True, header_style="bold")
    table.add_column("Category", style="cyan", no_wrap=True)
    table.add_column("Setting", style="magenta")
    table.add_column("Value", style="green")

    table.add_row("General", "Environment", settings.environment)
    table.add_row("LLM", "Default Model", settings.llm.default_model)
    table.add_row("LLM", "Passthrough", str(settings.llm.allow_passthrough))
    table.add_row("Storage", "SQLite Path", str(settings.storage.sqlite_path))
    table.add_row("Storage", "Busy Timeout (s)", str(settings.storage.busy_timeout))
    table.add_row("Workspace", "Path", str(settings.workspace.path or "(state-only)"))
    table.add_row("Workspace", "Reconcile Interval (s)", str(settings.workspace.reconcile_interval))
    table.add_row("Logging", "Level", settings.logging.level.value)
    table.add_row("Logging", "Format", settings.logging.format)
    console.print(table)

    console.print("\n[bold]API Keys:[/bold]")
    for provider, present in settings.credential_status().items():
        status = "[green]✓[/green]" if present else "[red]✗[/red]"
        console.print(f"  {status} {provider}")


@app.command()
def version() -> None:
    """Display version information."""
    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as get_version

    try:
        version_str = get_version("agent-runtime")
    except PackageNotFoundError:
        version_str = "unknown"

    console.print(
        Panel(
            f"[bold cyan]Agent Runtime[/bold cyan]\n"
            f"[bold]Version:[/bold] {version_str}",
            border_style="blue",
        )
    )


if __name__ == "__main__":
    app()
