"""
Root Typer application for the billing worker CLI.

    billing-worker run                 start the dispatcher (blocks)
    billing-worker trigger JOB         run one job now, under its lock
    billing-worker jobs                registered jobs and next fire times
    billing-worker runs                job run history
    billing-worker locks list|sweep
    billing-worker queue stats|failed|reap
    billing-worker init-db
"""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime

import typer
from typer import Typer

from billing_worker import __version__
from billing_worker.cli.utils import console, fail, load_settings, open_database, output_dict, output_rows
from billing_worker.core.errors import WorkerError
from billing_worker.core.logging import configure_logging
from billing_worker.core.models import JobOutcome
from billing_worker.core.timestamps import from_iso8601

app = Typer(
    name="billing-worker",
    help="billing-worker: scheduled jobs, retry queue and gateways for ISP billing.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"billing-worker {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """billing-worker CLI. Run the dispatcher, trigger jobs, inspect locks and queues."""
    settings = load_settings()
    configure_logging(settings.log_level, json_format=settings.json_logs, stream=sys.stderr)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("init-db")
def init_db(database: str | None = typer.Option(None, "--database", "-d")) -> None:
    """Create the worker tables (idempotent)."""
    settings = load_settings(database)
    open_database(settings)
    console.print(f"[green]Worker tables ready[/green] in {settings.db_path}")


@app.command("run")
def run(
    database: str | None = typer.Option(None, "--database", "-d"),
    interval: float | None = typer.Option(None, "--interval", help="Seconds between ticks."),
) -> None:
    """Start the dispatcher and block until interrupted.

    Example::

        billing-worker run
        BILLING_WORKER_TIMEZONE=Asia/Manila billing-worker run --interval 5
    """
    from billing_worker.scheduling import create_dispatcher

    settings = load_settings(database)
    if interval:
        settings = settings.model_copy(update={"tick_interval": interval})

    try:
        dispatcher = create_dispatcher(open_database(settings), settings)
    except WorkerError as e:
        raise fail(e.message) from None

    enabled = [s.name for s in dispatcher.jobs() if s.enabled]
    console.print(
        f"[bold green]Starting billing-worker[/bold green] "
        f"(jobs={len(enabled)}, tick={settings.tick_interval}s, tz={settings.timezone})"
    )
    dispatcher.start()
    try:
        dispatcher.backend.wait()
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping…[/yellow]")
    finally:
        dispatcher.stop()


@app.command("trigger")
def trigger(
    job: str = typer.Argument(..., help="Job name, e.g. cleanup-locks"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run one job now. Exits 1 if the run failed."""
    from billing_worker.scheduling import create_dispatcher

    settings = load_settings(database)
    try:
        dispatcher = create_dispatcher(open_database(settings), settings)
        result = asyncio.run(dispatcher.trigger(job))
    except WorkerError as e:
        raise fail(e.message) from None

    output_dict(result.to_dict(), as_json=json_out, title=f"Run: {job}")
    if result.outcome is JobOutcome.FAILURE:
        raise typer.Exit(code=1)


@app.command("jobs")
def jobs(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Registered jobs with cadence and next fire time."""
    from billing_worker.scheduling import create_dispatcher

    settings = load_settings(database)
    try:
        dispatcher = create_dispatcher(open_database(settings), settings)
    except WorkerError as e:
        raise fail(e.message) from None

    rows = [
        {
            "name": spec.name,
            "cadence": str(spec.cadence),
            "enabled": spec.enabled,
            "lock_ttl": spec.lock_ttl_seconds,
            "next_fire_at": dispatcher.next_fire_at(spec.name),
            "description": spec.description,
        }
        for spec in dispatcher.jobs()
    ]
    output_rows(rows, as_json=json_out, title="Jobs")


@app.command("runs")
def runs(
    job: str | None = typer.Option(None, "--job", "-j"),
    since: str | None = typer.Option(None, "--since", help="ISO timestamp, e.g. 2024-05-01T00:00:00Z"),
    outcome: str | None = typer.Option(None, "--outcome", "-o"),
    limit: int = typer.Option(50, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Job run history, newest first."""
    from billing_worker.scheduling.job_runs import JobRunRepository

    try:
        since_dt: datetime | None = from_iso8601(since) if since else None
        outcome_enum = JobOutcome(outcome) if outcome else None
    except ValueError as e:
        raise fail(str(e)) from None

    settings = load_settings(database)
    history = JobRunRepository(open_database(settings)).list_runs(
        job_name=job, since=since_dt, outcome=outcome_enum, limit=limit
    )
    rows = [
        {
            "id": r.id,
            "job": r.job_name,
            "started_at": r.started_at,
            "duration_s": round(r.duration_seconds, 3),
            "outcome": r.outcome,
            "error": r.error,
            "stats": r.stats,
        }
        for r in history
    ]
    output_rows(rows, as_json=json_out, title="Job runs")


# ── Sub-command registration ─────────────────────────────────────────────

from billing_worker.cli.locks import app as locks_app  # noqa: E402
from billing_worker.cli.queue import app as queue_app  # noqa: E402

app.add_typer(locks_app, name="locks", help="Distributed lock inspection.")
app.add_typer(queue_app, name="queue", help="Retry Queue inspection and maintenance.")
