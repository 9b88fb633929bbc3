"""Retry Queue: durable work items with claim, report and reap.

WHY
───
Gateways fail. An SMS that could not be delivered at 10:00 must be tried
again at 10:05 by whichever worker happens to run the retry job, must not
be sent twice when two workers run it at once, and must stop after a
bounded number of attempts with a record an operator can find.

ARCHITECTURE
────────────
::

    enqueue ──► pending ──claim_batch──► in_flight ──report(ok)──► succeeded
                  ▲                         │
                  │   report(fail),         │ report(fail), attempts == max
                  │   attempts < max        │ or permanent
                  └──── next_attempt_at ◄───┤
                        = now + backoff     └──────────────────► failed_permanent
                  ▲
                  └──── reap_stale_claims (claimed_at older than claim timeout)

    claim_batch   one UPDATE ... WHERE id IN (oldest due pending) AND status='pending'
                  stamps a fresh claim_token, so concurrent claimers get disjoint sets
    report_result compare-and-set on (status='in_flight', claim_token)
    reap          one UPDATE; a second reap finds nothing

Terminal states (succeeded, failed_permanent) never change again, and
``attempt_count`` never exceeds ``max_attempts``.

Related modules:
    retry.py        backoff policies
    jobs/delivery   claims, dispatches to gateways, reports
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import timedelta
from typing import Any
from uuid import uuid4

from billing_worker.core.errors import DataError
from billing_worker.core.logging import get_logger
from billing_worker.core.models import WorkItem, WorkItemKind, WorkItemStatus
from billing_worker.core.protocols import Connection
from billing_worker.core.timestamps import Clock, from_iso8601, generate_ulid, to_iso8601, utc_now

from .retry import ConstantBackoff, RetryStrategy

logger = get_logger(__name__)

_COLUMNS = (
    "id, kind, payload, status, attempt_count, max_attempts, next_attempt_at, last_error, "
    "provider_ref, dedupe_key, claim_token, claimed_at, created_at, updated_at"
)

_LIVE = (WorkItemStatus.PENDING.value, WorkItemStatus.IN_FLIGHT.value)


class RetryQueue:
    """Durable queue of gateway work items.

    Example:
        >>> queue = RetryQueue(conn)
        >>> item_id = queue.enqueue("sms", {"contact_no": "09171234567", "message": "..."})
        >>> for item in queue.claim_batch("sms", limit=50):
        ...     result = await gateway.send(item)
        ...     queue.report_result(item.id, result.success, result.error, claim_token=item.claim_token)
    """

    def __init__(
        self,
        conn: Connection,
        backoff: RetryStrategy | None = None,
        backoff_by_kind: Mapping[WorkItemKind, RetryStrategy] | None = None,
        default_max_attempts: int = 3,
        claim_timeout_seconds: int = 600,
        clock: Clock = utc_now,
    ) -> None:
        if default_max_attempts < 1:
            raise ValueError("default_max_attempts must be >= 1")
        self.conn = conn
        self.backoff = backoff or ConstantBackoff(delay=300)
        self.backoff_by_kind = dict(backoff_by_kind or {})
        self.default_max_attempts = default_max_attempts
        self.claim_timeout_seconds = claim_timeout_seconds
        self.clock = clock

    # === Enqueue ===

    def enqueue(
        self,
        kind: WorkItemKind | str,
        payload: Mapping[str, Any],
        max_attempts: int | None = None,
        *,
        delay_seconds: float = 0,
        dedupe_key: str | None = None,
        attempts_made: int = 0,
    ) -> str:
        """Add a pending item, due ``delay_seconds`` from now.

        With ``dedupe_key``, an existing pending or in-flight item with the
        same key is returned instead of creating a second one. A unique
        index over live keys keeps this true across connections.

        ``attempts_made`` counts deliveries already tried before the item
        was queued, so the item gets ``max_attempts - attempts_made`` more.

        Raises:
            DataError: Unknown kind, non-mapping or non-JSON payload, max_attempts < 1,
                attempts_made outside ``[0, max_attempts)``
        """
        kind = _coerce_kind(kind)
        max_attempts = self.default_max_attempts if max_attempts is None else max_attempts
        if max_attempts < 1:
            raise DataError(f"max_attempts must be >= 1, got {max_attempts}")
        if not 0 <= attempts_made < max_attempts:
            raise DataError(f"attempts_made must be in [0, {max_attempts}), got {attempts_made}")
        if not isinstance(payload, Mapping):
            raise DataError(f"payload must be a mapping, got {type(payload).__name__}")
        try:
            payload_json = json.dumps(dict(payload), sort_keys=True)
        except (TypeError, ValueError) as e:
            raise DataError("payload is not JSON serialisable", cause=e) from e

        now = self.clock()
        item_id = generate_ulid(now)
        try:
            cursor = self.conn.execute(
                f"""
                INSERT INTO work_items ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, NULL, NULL, ?, NULL, NULL, ?, ?)
                ON CONFLICT DO NOTHING
                """,
                (
                    item_id,
                    kind.value,
                    payload_json,
                    WorkItemStatus.PENDING.value,
                    attempts_made,
                    max_attempts,
                    to_iso8601(now + timedelta(seconds=delay_seconds)),
                    dedupe_key,
                    to_iso8601(now),
                    to_iso8601(now),
                ),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        if cursor.rowcount == 0 and dedupe_key:
            row = self.conn.execute(
                "SELECT id FROM work_items WHERE dedupe_key = ? AND status IN (?, ?) LIMIT 1",
                (dedupe_key, *_LIVE),
            ).fetchone()
            if row is None:
                # the live item finished between the insert and this lookup
                return self.enqueue(
                    kind,
                    payload,
                    max_attempts,
                    delay_seconds=delay_seconds,
                    dedupe_key=dedupe_key,
                    attempts_made=attempts_made,
                )
            logger.debug("retry_queue.deduplicated", kind=kind.value, item_id=row[0], dedupe_key=dedupe_key)
            return row[0]

        logger.info(
            "retry_queue.enqueued",
            kind=kind.value,
            item_id=item_id,
            max_attempts=max_attempts,
            attempts_made=attempts_made,
        )
        return item_id

    # === Claim ===

    def claim_batch(
        self,
        kind: WorkItemKind | str,
        limit: int,
        *,
        retried: bool | None = None,
    ) -> list[WorkItem]:
        """Atomically move up to ``limit`` due pending items to in_flight.

        Items are taken oldest ``next_attempt_at`` first and returned in
        that order. ``retried=False`` takes only never-attempted items,
        ``retried=True`` only items with at least one failed attempt.
        """
        kind = _coerce_kind(kind)
        if limit <= 0:
            return []

        now_s = to_iso8601(self.clock())
        token = uuid4().hex

        filters = "kind = ? AND status = ? AND next_attempt_at <= ?"
        if retried is True:
            filters += " AND attempt_count > 0"
        elif retried is False:
            filters += " AND attempt_count = 0"

        try:
            cursor = self.conn.execute(
                f"""
                UPDATE work_items
                SET status = ?, claim_token = ?, claimed_at = ?, updated_at = ?
                WHERE status = ? AND id IN (
                    SELECT id FROM work_items
                    WHERE {filters}
                    ORDER BY next_attempt_at, id
                    LIMIT ?
                )
                """,
                (
                    WorkItemStatus.IN_FLIGHT.value,
                    token,
                    now_s,
                    now_s,
                    WorkItemStatus.PENDING.value,
                    kind.value,
                    WorkItemStatus.PENDING.value,
                    now_s,
                    limit,
                ),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        if cursor.rowcount == 0:
            return []

        rows = self.conn.execute(
            f"SELECT {_COLUMNS} FROM work_items WHERE claim_token = ? ORDER BY next_attempt_at, id",
            (token,),
        ).fetchall()
        items = [_row_to_item(row) for row in rows]
        logger.info("retry_queue.claimed", kind=kind.value, count=len(items), retried=retried)
        return items

    # === Report ===

    def report_result(
        self,
        item_id: str,
        success: bool,
        error: str | None = None,
        *,
        permanent: bool = False,
        provider_ref: str | None = None,
        claim_token: str | None = None,
    ) -> WorkItem | None:
        """Record the outcome of one delivery attempt.

        Applies only while the item is in_flight (and, when ``claim_token`` is
        given, still held under that claim). A report for an item that was
        reaped, re-claimed or already finished is ignored.

        Returns:
            The updated item, or None if the report was not applied
        """
        item = self.get(item_id)
        if item is None:
            logger.warning("retry_queue.report_unknown_item", item_id=item_id)
            return None
        if item.status is not WorkItemStatus.IN_FLIGHT or (claim_token and item.claim_token != claim_token):
            logger.warning(
                "retry_queue.report_ignored",
                item_id=item_id,
                status=item.status.value,
                reason="not in flight under this claim",
            )
            return None

        now = self.clock()
        if success:
            status = WorkItemStatus.SUCCEEDED
            attempts = item.attempt_count
            next_attempt = item.next_attempt_at
            last_error = item.last_error
        else:
            attempts = item.attempt_count + 1
            last_error = error or "unknown error"
            if permanent or attempts >= item.max_attempts:
                status = WorkItemStatus.FAILED_PERMANENT
                next_attempt = item.next_attempt_at
            else:
                status = WorkItemStatus.PENDING
                delay = self._backoff_for(item.kind).next_delay(attempts - 1)
                next_attempt = now + timedelta(seconds=delay)

        try:
            cursor = self.conn.execute(
                """
                UPDATE work_items
                SET status = ?, attempt_count = ?, next_attempt_at = ?, last_error = ?,
                    provider_ref = COALESCE(?, provider_ref),
                    claim_token = NULL, claimed_at = NULL, updated_at = ?
                WHERE id = ? AND status = ? AND claim_token = ?
                """,
                (
                    status.value,
                    attempts,
                    to_iso8601(next_attempt),
                    last_error,
                    provider_ref,
                    to_iso8601(now),
                    item_id,
                    WorkItemStatus.IN_FLIGHT.value,
                    item.claim_token,
                ),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        if cursor.rowcount == 0:
            logger.warning("retry_queue.report_lost_race", item_id=item_id)
            return None

        if status is WorkItemStatus.SUCCEEDED:
            logger.info("retry_queue.succeeded", kind=item.kind.value, item_id=item_id, provider_ref=provider_ref)
        elif status is WorkItemStatus.FAILED_PERMANENT:
            logger.error(
                "retry_queue.failed_permanent",
                kind=item.kind.value,
                item_id=item_id,
                attempts=attempts,
                max_attempts=item.max_attempts,
                permanent=permanent,
                error=last_error,
            )
        else:
            logger.warning(
                "retry_queue.retry_scheduled",
                kind=item.kind.value,
                item_id=item_id,
                attempts=attempts,
                next_attempt_at=to_iso8601(next_attempt),
                error=last_error,
            )
        return self.get(item_id)

    # === Maintenance ===

    def reap_stale_claims(self, timeout_seconds: int | None = None) -> int:
        """Return in_flight items claimed too long ago to pending.

        A reap does not count as an attempt. Returns the number requeued.
        """
        timeout = self.claim_timeout_seconds if timeout_seconds is None else timeout_seconds
        now = self.clock()
        cutoff = now - timedelta(seconds=timeout)
        try:
            cursor = self.conn.execute(
                """
                UPDATE work_items
                SET status = ?, claim_token = NULL, claimed_at = NULL, updated_at = ?
                WHERE status = ? AND claimed_at <= ?
                """,
                (
                    WorkItemStatus.PENDING.value,
                    to_iso8601(now),
                    WorkItemStatus.IN_FLIGHT.value,
                    to_iso8601(cutoff),
                ),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        if cursor.rowcount:
            logger.warning("retry_queue.reaped", count=cursor.rowcount, timeout_seconds=timeout)
        return cursor.rowcount

    def prune(self, retention_days: int) -> int:
        """Delete succeeded items last updated more than ``retention_days`` ago."""
        cutoff = self.clock() - timedelta(days=retention_days)
        cursor = self.conn.execute(
            "DELETE FROM work_items WHERE status = ? AND updated_at < ?",
            (WorkItemStatus.SUCCEEDED.value, to_iso8601(cutoff)),
        )
        self.conn.commit()
        if cursor.rowcount:
            logger.info("retry_queue.pruned", removed=cursor.rowcount, retention_days=retention_days)
        return cursor.rowcount

    # === Inspection ===

    def get(self, item_id: str) -> WorkItem | None:
        row = self.conn.execute(f"SELECT {_COLUMNS} FROM work_items WHERE id = ?", (item_id,)).fetchone()
        return _row_to_item(row) if row else None

    def list_items(
        self,
        kind: WorkItemKind | str | None = None,
        status: WorkItemStatus | str | None = None,
        limit: int = 100,
    ) -> list[WorkItem]:
        clauses: list[str] = []
        params: list[Any] = []
        if kind is not None:
            clauses.append("kind = ?")
            params.append(_coerce_kind(kind).value)
        if status is not None:
            clauses.append("status = ?")
            params.append(WorkItemStatus(status).value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        rows = self.conn.execute(
            f"SELECT {_COLUMNS} FROM work_items {where} ORDER BY next_attempt_at, id LIMIT ?",
            tuple(params),
        ).fetchall()
        return [_row_to_item(row) for row in rows]

    def list_failed(self, kind: WorkItemKind | str | None = None, limit: int = 100) -> list[WorkItem]:
        """Permanently failed items, for operator review."""
        return self.list_items(kind=kind, status=WorkItemStatus.FAILED_PERMANENT, limit=limit)

    def stats(self) -> dict[str, dict[str, int]]:
        """Counts per kind and status: ``{"sms": {"pending": 3, ...}}``."""
        rows = self.conn.execute(
            "SELECT kind, status, COUNT(*) FROM work_items GROUP BY kind, status ORDER BY kind, status"
        ).fetchall()
        result: dict[str, dict[str, int]] = {}
        for kind, status, count in rows:
            result.setdefault(kind, {})[status] = count
        return result

    def _backoff_for(self, kind: WorkItemKind) -> RetryStrategy:
        return self.backoff_by_kind.get(kind, self.backoff)


def _coerce_kind(kind: WorkItemKind | str) -> WorkItemKind:
    try:
        return WorkItemKind(kind)
    except ValueError:
        raise DataError(f"Unknown work item kind: {kind!r}") from None


def _row_to_item(row: tuple) -> WorkItem:
    return WorkItem(
        id=row[0],
        kind=WorkItemKind(row[1]),
        payload=json.loads(row[2]),
        status=WorkItemStatus(row[3]),
        attempt_count=row[4],
        max_attempts=row[5],
        next_attempt_at=from_iso8601(row[6]),
        last_error=row[7],
        provider_ref=row[8],
        dedupe_key=row[9],
        claim_token=row[10],
        claimed_at=from_iso8601(row[11]),
        created_at=from_iso8601(row[12]),
        updated_at=from_iso8601(row[13]),
    )


__all__ = ["RetryQueue"]
