"""
Connection protocol shared by every persistent component.

Lock manager, retry queue, job-run history, sync records and the notice
ledger all talk to the database through this minimal synchronous
interface. ``sqlite3.Connection`` satisfies it natively; other drivers
need a thin sync adapter.

    ┌────────────────────────────────────────────────────────┐
    │ execute(sql, params)   → Execute single statement      │
    │ executemany(sql, list) → Execute for multiple params   │
    │ commit()               → Commit transaction            │
    │ rollback()             → Rollback transaction          │
    └────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """Minimal synchronous DB-API style connection."""

    def execute(self, sql: str, params: tuple | list | dict = ()) -> Any:
        """Execute a single statement and return a cursor."""
        ...

    def executemany(self, sql: str, params: list[tuple] | list[dict]) -> Any:
        """Execute a statement once per parameter set."""
        ...

    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    def rollback(self) -> None:
        """Roll back the current transaction."""
        ...


__all__ = ["Connection"]
