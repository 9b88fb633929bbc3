"""Tests for worker tables and the connection factory."""

from __future__ import annotations

import sqlite3

import pytest

from billing_worker.core.database import connect
from billing_worker.core.schema import WORKER_TABLES, create_worker_tables


def _tables(conn) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {row[0] for row in rows}


class TestSchema:
    def test_connect_creates_all_tables(self, conn):
        assert set(WORKER_TABLES.values()) <= _tables(conn)

    def test_create_is_idempotent(self, conn):
        create_worker_tables(conn)
        create_worker_tables(conn)
        assert set(WORKER_TABLES.values()) <= _tables(conn)

    def test_attempt_count_cannot_exceed_max(self, conn):
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO work_items (id, kind, payload, attempt_count, max_attempts, next_attempt_at, created_at, updated_at) "
                "VALUES ('x', 'sms', '{}', 4, 3, 't', 't', 't')"
            )

    def test_lock_name_unique(self, conn):
        insert = "INSERT INTO worker_locks (name, holder_token, holder, acquired_at, expires_at) VALUES ('a', ?, 'h', 't', 't')"
        conn.execute(insert, ("tok1",))
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(insert, ("tok2",))


class TestConnect:
    def test_file_database_uses_wal(self, tmp_path):
        path = tmp_path / "nested" / "worker.db"
        conn = connect(path)
        try:
            mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
            assert mode.lower() == "wal"
            assert path.exists()
        finally:
            conn.close()

    def test_create_false_leaves_database_empty(self, tmp_path):
        conn = connect(tmp_path / "bare.db", create=False)
        try:
            assert _tables(conn) == set()
        finally:
            conn.close()
