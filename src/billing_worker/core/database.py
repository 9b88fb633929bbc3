"""SQLite connection factory for the worker's own tables."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from .schema import create_worker_tables


def connect(path: str | Path = ":memory:", *, busy_timeout_ms: int = 5000, create: bool = True) -> sqlite3.Connection:
    """Open a connection suitable for several worker processes sharing one file.

    WAL mode lets readers proceed while a job holds the write lock; the busy
    timeout makes competing writers wait instead of failing immediately.
    """
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False, timeout=busy_timeout_ms / 1000)
    conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
    if str(path) != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL")
    if create:
        create_worker_tables(conn)
    return conn


__all__ = ["connect"]
