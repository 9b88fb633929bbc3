"""Job run history.

One row per completed invocation, inserted once when the run finishes and
never updated afterwards. Overlap skips are recorded too, so an operator can
see that a job *wanted* to run but another worker held its lock.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta

from billing_worker.core.logging import get_logger
from billing_worker.core.models import JobOutcome, JobRun
from billing_worker.core.protocols import Connection
from billing_worker.core.timestamps import Clock, from_iso8601, to_iso8601, utc_now

logger = get_logger(__name__)

_COLUMNS = "id, job_name, started_at, finished_at, outcome, error, stats, instance"


class JobRunRepository:
    """Append-only store for :class:`JobRun` rows."""

    def __init__(self, conn: Connection, clock: Clock = utc_now) -> None:
        self.conn = conn
        self.clock = clock

    def record(self, run: JobRun) -> JobRun:
        """Insert a completed run."""
        try:
            self.conn.execute(
                f"INSERT INTO job_runs ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    run.id,
                    run.job_name,
                    to_iso8601(run.started_at),
                    to_iso8601(run.finished_at),
                    run.outcome.value,
                    run.error,
                    json.dumps(run.stats, default=str, sort_keys=True),
                    run.instance,
                ),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return run

    def get(self, run_id: str) -> JobRun | None:
        cursor = self.conn.execute(f"SELECT {_COLUMNS} FROM job_runs WHERE id = ?", (run_id,))
        row = cursor.fetchone()
        return _row_to_run(row) if row else None

    def list_runs(
        self,
        job_name: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        outcome: JobOutcome | None = None,
        limit: int = 100,
    ) -> list[JobRun]:
        """Runs started within ``[since, until)``, newest first."""
        clauses: list[str] = []
        params: list = []
        if job_name:
            clauses.append("job_name = ?")
            params.append(job_name)
        if since:
            clauses.append("started_at >= ?")
            params.append(to_iso8601(since))
        if until:
            clauses.append("started_at < ?")
            params.append(to_iso8601(until))
        if outcome:
            clauses.append("outcome = ?")
            params.append(outcome.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        cursor = self.conn.execute(
            f"SELECT {_COLUMNS} FROM job_runs {where} ORDER BY started_at DESC, id DESC LIMIT ?",
            tuple(params),
        )
        return [_row_to_run(row) for row in cursor.fetchall()]

    def last_run(self, job_name: str) -> JobRun | None:
        runs = self.list_runs(job_name=job_name, limit=1)
        return runs[0] if runs else None

    def prune(self, older_than_days: int) -> int:
        """Delete runs that finished more than ``older_than_days`` ago."""
        cutoff = self.clock() - timedelta(days=older_than_days)
        cursor = self.conn.execute("DELETE FROM job_runs WHERE finished_at < ?", (to_iso8601(cutoff),))
        self.conn.commit()
        if cursor.rowcount:
            logger.info("job_runs.pruned", removed=cursor.rowcount, older_than_days=older_than_days)
        return cursor.rowcount


def _row_to_run(row: tuple) -> JobRun:
    return JobRun(
        id=row[0],
        job_name=row[1],
        started_at=from_iso8601(row[2]),
        finished_at=from_iso8601(row[3]),
        outcome=JobOutcome(row[4]),
        error=row[5],
        stats=json.loads(row[6]) if row[6] else {},
        instance=row[7],
    )


__all__ = ["JobRunRepository"]
