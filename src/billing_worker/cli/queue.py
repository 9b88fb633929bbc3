"""
CLI: ``billing-worker queue``: Retry Queue inspection and maintenance.
"""

from __future__ import annotations

import typer
from rich.table import Table

from billing_worker.cli.utils import console, fail, load_settings, open_database, output_dict, output_rows
from billing_worker.core.errors import DataError
from billing_worker.core.models import WorkItemStatus
from billing_worker.execution.retry_queue import RetryQueue

app = typer.Typer(no_args_is_help=True)


def _queue(database: str | None) -> RetryQueue:
    settings = load_settings(database)
    return RetryQueue(
        open_database(settings),
        default_max_attempts=settings.default_max_attempts,
        claim_timeout_seconds=settings.claim_timeout_seconds,
    )


@app.command("stats")
def stats(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Item counts per kind and status."""
    counts = _queue(database).stats()
    if json_out:
        output_dict(counts, as_json=True)
        return
    if not counts:
        console.print("[dim]Queue is empty.[/dim]")
        return
    statuses = [s.value for s in WorkItemStatus]
    table = Table(title="Retry queue")
    table.add_column("kind")
    for status in statuses:
        table.add_column(status, justify="right")
    for kind, by_status in counts.items():
        table.add_row(kind, *(str(by_status.get(s, 0)) for s in statuses))
    console.print(table)


@app.command("failed")
def failed(
    kind: str | None = typer.Option(None, "--kind", "-k"),
    limit: int = typer.Option(50, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Permanently failed items."""
    try:
        items = _queue(database).list_failed(kind=kind, limit=limit)
    except DataError as e:
        raise fail(e.message) from None
    rows = [
        {
            "id": i.id,
            "kind": i.kind,
            "attempts": f"{i.attempt_count}/{i.max_attempts}",
            "last_error": i.last_error,
            "updated_at": i.updated_at,
        }
        for i in items
    ]
    output_rows(rows, as_json=json_out, title="Failed items")


@app.command("reap")
def reap(
    timeout: int | None = typer.Option(None, "--timeout", help="Seconds in flight before an item is stale."),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Return stale in-flight items to pending."""
    reaped = _queue(database).reap_stale_claims(timeout)
    if json_out:
        output_dict({"reaped": reaped}, as_json=True)
    else:
        console.print(f"Reaped [bold]{reaped}[/bold] item(s)")
