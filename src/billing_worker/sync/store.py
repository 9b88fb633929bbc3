"""Latest observed remote state per subject (``sync_records``)."""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from billing_worker.core.models import SyncRecord
from billing_worker.core.protocols import Connection
from billing_worker.core.timestamps import from_iso8601, to_iso8601

_COLUMNS = "subject_id, local_state, remote_state, observed_at"


def canonical_json(state: dict[str, Any] | None) -> str | None:
    """Key-sorted compact JSON; equal states encode to equal strings."""
    if state is None:
        return None
    return json.dumps(state, sort_keys=True, separators=(",", ":"), default=str)


class SyncRecordStore:
    """One row per subject; a newer observation replaces the older one."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def latest(self, subject_id: str) -> SyncRecord | None:
        row = self.conn.execute(
            f"SELECT {_COLUMNS} FROM sync_records WHERE subject_id = ?", (subject_id,)
        ).fetchone()
        return _row_to_record(row) if row else None

    def latest_many(self, subject_ids: Iterable[str]) -> dict[str, SyncRecord]:
        ids = list(dict.fromkeys(subject_ids))
        records: dict[str, SyncRecord] = {}
        # stay under SQLite's bound-parameter limit
        for start in range(0, len(ids), 500):
            chunk = ids[start : start + 500]
            placeholders = ", ".join("?" for _ in chunk)
            cursor = self.conn.execute(
                f"SELECT {_COLUMNS} FROM sync_records WHERE subject_id IN ({placeholders})", tuple(chunk)
            )
            for row in cursor.fetchall():
                record = _row_to_record(row)
                records[record.subject_id] = record
        return records

    def save(self, record: SyncRecord) -> None:
        """Upsert; an observation older than the stored one is ignored."""
        try:
            self.conn.execute(
                f"""
                INSERT INTO sync_records ({_COLUMNS}) VALUES (?, ?, ?, ?)
                ON CONFLICT(subject_id) DO UPDATE SET
                    local_state = excluded.local_state,
                    remote_state = excluded.remote_state,
                    observed_at = excluded.observed_at
                WHERE excluded.observed_at >= sync_records.observed_at
                """,
                (
                    record.subject_id,
                    canonical_json(record.local_state),
                    canonical_json(record.remote_state),
                    to_iso8601(record.observed_at),
                ),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM sync_records").fetchone()[0]


def _row_to_record(row: tuple) -> SyncRecord:
    return SyncRecord(
        subject_id=row[0],
        local_state=json.loads(row[1]) if row[1] else None,
        remote_state=json.loads(row[2]),
        observed_at=from_iso8601(row[3]),
    )


__all__ = ["SyncRecordStore", "canonical_json"]
