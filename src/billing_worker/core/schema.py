"""
Worker-owned tables.

The worker persists only its own coordination state: locks, the retry
queue, job-run history, the latest observed remote state per sync subject,
and the ledger of notices already sent. Billing data itself lives in the
billing backend and is reached through gateway adapters.

Architecture:
    ::

        Table Registry (WORKER_TABLES):
        ┌────────────────────────────────────────────────────────────┐
        │ locks          → worker_locks      (one row per live lock) │
        │ work_items     → work_items        (retry queue)           │
        │ job_runs       → job_runs          (append-only history)   │
        │ sync_records   → sync_records      (latest per subject)    │
        │ notice_ledger  → notice_ledger     (sent notices)          │
        └────────────────────────────────────────────────────────────┘

        All timestamps are fixed-width UTC text (see core.timestamps),
        so range predicates compare lexically.

Tags:
    schema, ddl, sqlite, billing-worker
"""

from __future__ import annotations

from .protocols import Connection

WORKER_TABLES = {
    "locks": "worker_locks",
    "work_items": "work_items",
    "job_runs": "job_runs",
    "sync_records": "sync_records",
    "notice_ledger": "notice_ledger",
}

WORKER_DDL = {
    "locks": """
        CREATE TABLE IF NOT EXISTS worker_locks (
            name TEXT PRIMARY KEY,
            holder_token TEXT NOT NULL,
            holder TEXT NOT NULL,
            acquired_at TEXT NOT NULL,
            expires_at TEXT NOT NULL
        )
    """,
    "locks_idx_expires": """
        CREATE INDEX IF NOT EXISTS idx_worker_locks_expires
        ON worker_locks(expires_at)
    """,
    "work_items": """
        CREATE TABLE IF NOT EXISTS work_items (
            id TEXT PRIMARY KEY,
            kind TEXT NOT NULL,
            payload TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            attempt_count INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL,
            next_attempt_at TEXT NOT NULL,
            last_error TEXT,
            provider_ref TEXT,
            dedupe_key TEXT,
            claim_token TEXT,
            claimed_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            CHECK (attempt_count >= 0 AND attempt_count <= max_attempts)
        )
    """,
    "work_items_idx_due": """
        CREATE INDEX IF NOT EXISTS idx_work_items_due
        ON work_items(kind, status, next_attempt_at)
    """,
    "work_items_idx_claim": """
        CREATE INDEX IF NOT EXISTS idx_work_items_claim
        ON work_items(claim_token)
    """,
    "work_items_idx_dedupe_live": """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_work_items_dedupe_live
        ON work_items(dedupe_key)
        WHERE dedupe_key IS NOT NULL AND status IN ('pending', 'in_flight')
    """,
    "job_runs": """
        CREATE TABLE IF NOT EXISTS job_runs (
            id TEXT PRIMARY KEY,
            job_name TEXT NOT NULL,
            started_at TEXT NOT NULL,
            finished_at TEXT NOT NULL,
            outcome TEXT NOT NULL,
            error TEXT,
            stats TEXT NOT NULL DEFAULT '{}',
            instance TEXT
        )
    """,
    "job_runs_idx_name": """
        CREATE INDEX IF NOT EXISTS idx_job_runs_name_started
        ON job_runs(job_name, started_at)
    """,
    "sync_records": """
        CREATE TABLE IF NOT EXISTS sync_records (
            subject_id TEXT PRIMARY KEY,
            local_state TEXT,
            remote_state TEXT NOT NULL,
            observed_at TEXT NOT NULL
        )
    """,
    "notice_ledger": """
        CREATE TABLE IF NOT EXISTS notice_ledger (
            account_no TEXT NOT NULL,
            stage TEXT NOT NULL,
            channel TEXT NOT NULL,
            notice_date TEXT NOT NULL,
            outcome TEXT NOT NULL,
            recorded_at TEXT NOT NULL,
            PRIMARY KEY (account_no, stage, channel, notice_date)
        )
    """,
}


def create_worker_tables(conn: Connection) -> None:
    """
    Create all worker tables.

    Safe to call multiple times (CREATE IF NOT EXISTS).
    """
    for _name, ddl in WORKER_DDL.items():
        conn.execute(ddl)
    conn.commit()


__all__ = ["WORKER_TABLES", "WORKER_DDL", "create_worker_tables"]
