"""Typer CLI for the audit shipper."""

from __future__ import annotations

from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.table import Table

from audit_shipper import __version__
from audit_shipper.checkpoint.store import FileCheckpointStore, source_key
from audit_shipper.config.loader import load_shipper_config
from audit_shipper.config.models import ShipperConfig
from audit_shipper.observability.logging import configure_logging

logger = structlog.get_logger()
console = Console()
app = typer.Typer(
    name="audit-shipper", help="Forwards the audit log to an HTTPS log collector"
)


def _load(config_path: str) -> ShipperConfig:
    path = Path(config_path)
    if not path.exists():
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        return load_shipper_config(path)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Validation error:[/red] {exc}")
        raise typer.Exit(1) from exc


@app.command()
def validate(
    config_path: str = typer.Argument(..., help="Path to shipper YAML"),
) -> None:
    """Validate a shipper configuration file."""
    config = _load(config_path)
    console.print("[green]Valid[/green]")
    console.print(f"  source:    {config.source.addr} (namespace={config.source.namespace})")
    console.print(f"  types:     {config.source.types or '(all)'}")
    console.print(f"  batch:     {config.source.batch_size}")
    start = config.source.start_time.isoformat() if config.source.start_time else "(stored or now)"
    console.print(f"  start:     {start}")
    console.print(f"  collector: {config.collector.url}")
    console.print(f"  storage:   {config.storage.dir}")
    console.print(f"  poll:      {config.poll_timeout_seconds}s")
    if config.dry_run:
        console.print("  [yellow]dry run: events are not sent[/yellow]")


@app.command()
def state(
    config_path: str = typer.Argument(..., help="Path to shipper YAML"),
) -> None:
    """Show the stored checkpoint for the configured source."""
    config = _load(config_path)
    storage = Path(config.storage.dir)
    key = source_key(config.source.addr)
    if not storage.is_dir():
        console.print(f"[yellow]No checkpoint stored in {storage}[/yellow]")
        return

    store = FileCheckpointStore(storage)
    prefix = f"{key}."
    names = [k for k in store.keys() if k.startswith(prefix)]
    if not names:
        console.print(f"[yellow]No checkpoint stored for {key}[/yellow]")
        return

    table = Table(title=f"Checkpoint: {key}")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for name in names:
        table.add_row(name.removeprefix(prefix), store.get(name) or "[dim](empty)[/dim]")
    console.print(table)


@app.command()
def run(
    config_path: str = typer.Argument(..., help="Path to shipper YAML"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Debug logging"),
) -> None:
    """Start forwarding audit events."""
    config = _load(config_path)
    configure_logging("debug" if debug else config.logging.level, config.logging.format)

    from audit_shipper.pipeline.runner import Shipper

    if config.dry_run:
        console.print("[yellow]Dry run: events are read but not sent[/yellow]")

    try:
        shipper = Shipper.from_config(config)
        shipper.start()
    except KeyboardInterrupt:
        logger.info("shipper.interrupted")
    except Exception as exc:
        logger.error("shipper.failed", error=str(exc), error_type=type(exc).__name__)
        raise typer.Exit(1) from exc
    logger.info("shipper.shut_down")


@app.command()
def version() -> None:
    """Print the shipper version."""
    console.print(f"audit-shipper {__version__}")
