"""
Command Line Interface for Advance Weekly.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..db.base import get_session_local, init_database
from ..db.operation_store import OperationStore
from ..logging_config import configure_logging
from ..worker.loop import run_worker
from ..worker.registry import build_dispatcher
from ..worker.scheduler import PreferredTimePolicy, Scheduler

app = typer.Typer(help="Advance Weekly - async reflection and career draft jobs")
console = Console()

STATUS_STYLE = {
    "queued": "yellow",
    "running": "cyan",
    "completed": "green",
    "failed": "red",
}


def _build_scheduler(dispatch: bool) -> Scheduler:
    settings = get_settings()
    session_factory = get_session_local()
    return Scheduler(
        build_dispatcher(settings, session_factory),
        session_factory,
        policy=PreferredTimePolicy.from_settings(settings),
        dispatch_inline=dispatch,
        integration_types=settings.scheduler_integration_type_list(),
    )


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the HTTP API."""
    settings = get_settings()
    rprint(Panel.fit("Starting Advance Weekly API", style="bold blue"))
    uvicorn.run(
        "advance_weekly.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
    )


@app.command()
def worker(
    poll_interval: Optional[int] = typer.Option(None, help="Seconds between polls"),
    claim_limit: Optional[int] = typer.Option(None, help="Operations per poll"),
):
    """Run the worker loop that executes queued operations."""
    rprint(Panel.fit("Starting Advance Weekly worker", style="bold blue"))
    run_worker(poll_interval=poll_interval, claim_limit=claim_limit)


@app.command("init-db")
def init_db():
    """Create all database tables."""
    init_database()
    console.print("Database initialized")


@app.command("scheduler-tick")
def scheduler_tick(
    dispatch: bool = typer.Option(
        True, help="Run created operations now instead of leaving them queued"
    ),
):
    """Run a single scheduler tick and report what it did."""
    configure_logging()
    report = _build_scheduler(dispatch).tick()

    table = Table(title="Scheduler tick", show_header=True, header_style="bold magenta")
    table.add_column("Processed", style="green")
    table.add_column("Skipped", style="yellow")
    table.add_column("Failed", style="red")
    table.add_row(str(report.processed), str(report.skipped), str(len(report.failures)))
    console.print(table)

    for failure in report.failures:
        console.print(f"[red]{failure.owner_id}[/red]: {failure.message}")
    if report.failures:
        raise typer.Exit(code=1)


@app.command()
def scheduler(
    interval: Optional[int] = typer.Option(None, help="Seconds between ticks"),
    dispatch: bool = typer.Option(True, help="Run created operations inline"),
):
    """Run the scheduler until interrupted."""
    configure_logging()
    runner = _build_scheduler(dispatch)
    rprint(Panel.fit("Starting Advance Weekly scheduler", style="bold blue"))
    try:
        runner.run_forever(interval or get_settings().scheduler_interval_seconds)
    except KeyboardInterrupt:
        runner.stop()
        console.print("\nScheduler stopped")


@app.command()
def operation(operation_id: str = typer.Argument(..., help="Operation id")):
    """Show the current state of an operation."""
    db = get_session_local()()
    try:
        found = OperationStore(db).get(operation_id)
        if found is None:
            console.print(f"Operation {operation_id} not found")
            raise typer.Exit(code=1)
        data = found.to_dict()
    finally:
        db.close()

    table = Table(title=f"Operation {operation_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    style = STATUS_STYLE.get(data["status"], "white")
    table.add_row("type", data["operation_type"])
    table.add_row("owner", data["user_id"])
    table.add_row("status", f"[{style}]{data['status']}[/{style}]")
    table.add_row("progress", f"{data['progress']}%")
    table.add_row("step", data["current_step"] or "")
    table.add_row("created", data["created_at"] or "")
    table.add_row("started", data["started_at"] or "")
    table.add_row("completed", data["completed_at"] or "")
    if data["error_message"]:
        table.add_row("error", f"[red]{data['error_message']}[/red]")
    console.print(table)


@app.command()
def stuck(
    minutes: int = typer.Option(30, help="Running for longer than this many minutes"),
):
    """List operations left running (for example after a worker crash)."""
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=minutes)
    db = get_session_local()()
    try:
        rows = [row.to_dict() for row in OperationStore(db).list_running(cutoff)]
    finally:
        db.close()

    if not rows:
        console.print("No stuck operations")
        return

    table = Table(title="Running operations", show_header=True, header_style="bold cyan")
    table.add_column("Id", style="yellow")
    table.add_column("Type")
    table.add_column("Owner")
    table.add_column("Started")
    table.add_column("Progress", style="blue")
    for row in rows:
        table.add_row(
            row["id"],
            row["operation_type"],
            row["user_id"],
            row["started_at"] or "",
            f"{row['progress']}%",
        )
    console.print(table)


if __name__ == "__main__":
    app()
