"""
CLI: ``billing-worker locks``: inspect and sweep worker locks.
"""

from __future__ import annotations

import typer

from billing_worker.cli.utils import console, load_settings, open_database, output_dict, output_rows
from billing_worker.scheduling.lock_manager import LockManager

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_locks(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List live (unexpired) locks."""
    settings = load_settings(database)
    locks = LockManager(open_database(settings), instance_id=settings.instance_id).list_active_locks()
    output_rows(locks, as_json=json_out, title="Active locks")


@app.command("sweep")
def sweep(
    database: str | None = typer.Option(None, "--database", "-d"),
    force: bool = typer.Option(False, "--force", help="Release every lock, live or not."),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Delete expired lock rows (all rows with --force)."""
    settings = load_settings(database)
    manager = LockManager(open_database(settings), instance_id=settings.instance_id)
    if force:
        removed = manager.force_release_all()
    else:
        removed = manager.cleanup_expired_locks()
    if json_out:
        output_dict({"removed": removed, "forced": force}, as_json=True)
    else:
        console.print(f"Removed [bold]{removed}[/bold] lock(s)")
