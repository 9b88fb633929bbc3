"""Record of notices already sent, keyed by (account, stage, channel, day)."""

from __future__ import annotations

from datetime import date

from billing_worker.core.logging import get_logger
from billing_worker.core.protocols import Connection
from billing_worker.core.timestamps import Clock, to_iso8601, utc_now

logger = get_logger(__name__)

SENT = "sent"
QUEUED = "queued"
DEFERRED = "deferred"


class NoticeLedger:
    """Keeps a second run on the same day from notifying an account twice."""

    def __init__(self, conn: Connection, clock: Clock = utc_now) -> None:
        self.conn = conn
        self.clock = clock

    def has_record(self, account_no: str, stage: str, channel: str, notice_date: date) -> bool:
        row = self.conn.execute(
            """
            SELECT 1 FROM notice_ledger
            WHERE account_no = ? AND stage = ? AND channel = ? AND notice_date = ?
            """,
            (account_no, stage, channel, notice_date.isoformat()),
        ).fetchone()
        return row is not None

    def record(self, account_no: str, stage: str, channel: str, notice_date: date, outcome: str) -> bool:
        """Insert a ledger row. Returns False if the key was already present."""
        try:
            cursor = self.conn.execute(
                """
                INSERT OR IGNORE INTO notice_ledger
                    (account_no, stage, channel, notice_date, outcome, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (account_no, stage, channel, notice_date.isoformat(), outcome, to_iso8601(self.clock())),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return cursor.rowcount == 1

    def update_outcome(self, account_no: str, stage: str, channel: str, notice_date: date, outcome: str) -> None:
        try:
            self.conn.execute(
                """
                UPDATE notice_ledger SET outcome = ?, recorded_at = ?
                WHERE account_no = ? AND stage = ? AND channel = ? AND notice_date = ?
                """,
                (outcome, to_iso8601(self.clock()), account_no, stage, channel, notice_date.isoformat()),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def entries(self, notice_date: date | None = None) -> list[dict[str, str]]:
        sql = "SELECT account_no, stage, channel, notice_date, outcome, recorded_at FROM notice_ledger"
        params: tuple = ()
        if notice_date is not None:
            sql += " WHERE notice_date = ?"
            params = (notice_date.isoformat(),)
        sql += " ORDER BY recorded_at, account_no"
        keys = ("account_no", "stage", "channel", "notice_date", "outcome", "recorded_at")
        return [dict(zip(keys, row, strict=True)) for row in self.conn.execute(sql, params).fetchall()]


__all__ = ["DEFERRED", "NoticeLedger", "QUEUED", "SENT"]
