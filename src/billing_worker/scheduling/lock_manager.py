"""Distributed lock manager for worker jobs.

Manifesto:
    Two worker processes must never run the same job at the same time, and a
    crashed worker must never block a job forever. The lock manager provides
    atomic acquire/release with TTL-based auto-expiry. Holding a lock is
    proven by an opaque token, so only the acquirer can release or renew it.

This module backs the "without overlapping" guarantee of every scheduled
job and is usable directly for ad-hoc critical sections.

Tags:
    billing-worker, scheduling, distributed-locks, TTL, concurrency

Doc-Types:
    api-reference, architecture-diagram


    Lock Manager Architecture::

        acquire(name, ttl)
          1. DELETE row for name WHERE expires_at <= now   (steal expired)
          2. INSERT OR IGNORE (name, token, holder, now, now + ttl)
          3. rowcount == 1  → token      rowcount == 0 → None (Busy)

        release(name, token)   DELETE WHERE name AND holder_token
        renew(name, token)     UPDATE expires_at WHERE token AND still live

        Not re-entrant: a second acquire by the same holder is Busy.
        TTL: a holder that dies is superseded once expires_at passes.
"""

from __future__ import annotations

import os
import socket
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from uuid import uuid4

from billing_worker.core.errors import LockBusyError
from billing_worker.core.logging import get_logger
from billing_worker.core.models import Lock
from billing_worker.core.protocols import Connection
from billing_worker.core.timestamps import Clock, from_iso8601, to_iso8601, utc_now

logger = get_logger(__name__)


def default_instance_id() -> str:
    """``hostname-pid`` identity used when none is configured."""
    return f"{socket.gethostname()}-{os.getpid()}"


class LockManager:
    """Database-backed named locks with TTL.

    Example:
        >>> manager = LockManager(conn, instance_id="worker-1")
        >>> token = manager.acquire("job:process-payments", ttl_seconds=300)
        >>> if token:
        ...     try:
        ...         pass  # run the job
        ...     finally:
        ...         manager.release("job:process-payments", token)
        ... else:
        ...     print("Another worker holds the lock")
    """

    def __init__(
        self,
        conn: Connection,
        instance_id: str | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize lock manager.

        Args:
            conn: Database connection
            instance_id: Identity recorded as lock holder (for operators).
                         Defaults to ``hostname-pid``.
            clock: Source of the current time
        """
        self.conn = conn
        self.instance_id = instance_id or default_instance_id()
        self.clock = clock

    # === Acquire / release ===

    def acquire(self, name: str, ttl_seconds: int) -> str | None:
        """Acquire the named lock.

        Args:
            name: Lock name (e.g. ``job:send-overdue-notices``)
            ttl_seconds: Lifetime of the lock if never released

        Returns:
            Holder token if acquired, None if a live lock exists
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        now = self.clock()
        expires = now + timedelta(seconds=ttl_seconds)
        token = uuid4().hex

        try:
            stolen = self.conn.execute(
                "DELETE FROM worker_locks WHERE name = ? AND expires_at <= ?",
                (name, to_iso8601(now)),
            ).rowcount
            cursor = self.conn.execute(
                """
                INSERT OR IGNORE INTO worker_locks (name, holder_token, holder, acquired_at, expires_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (name, token, self.instance_id, to_iso8601(now), to_iso8601(expires)),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        if cursor.rowcount > 0:
            if stolen:
                logger.info("lock.expired_taken_over", lock=name, holder=self.instance_id)
            logger.debug("lock.acquired", lock=name, ttl_seconds=ttl_seconds)
            return token

        logger.debug("lock.busy", lock=name)
        return None

    def release(self, name: str, token: str) -> bool:
        """Release a lock held with ``token``.

        Returns:
            True if released, False if not held (wrong token, already
            released, or expired and taken by someone else)
        """
        try:
            cursor = self.conn.execute(
                "DELETE FROM worker_locks WHERE name = ? AND holder_token = ?",
                (name, token),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        if cursor.rowcount > 0:
            logger.debug("lock.released", lock=name)
            return True

        logger.warning("lock.release_not_held", lock=name)
        return False

    def renew(self, name: str, token: str, ttl_seconds: int) -> bool:
        """Extend a live lock to ``now + ttl_seconds``.

        Returns:
            True if renewed, False if the lock expired or is held by another token
        """
        now = self.clock()
        expires = now + timedelta(seconds=ttl_seconds)
        try:
            cursor = self.conn.execute(
                """
                UPDATE worker_locks SET expires_at = ?
                WHERE name = ? AND holder_token = ? AND expires_at > ?
                """,
                (to_iso8601(expires), name, token, to_iso8601(now)),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return cursor.rowcount > 0

    @contextmanager
    def hold(self, name: str, ttl_seconds: int) -> Iterator[str]:
        """Context manager form of acquire/release.

        Raises:
            LockBusyError: If a live lock already exists
        """
        token = self.acquire(name, ttl_seconds)
        if token is None:
            raise LockBusyError(name)
        try:
            yield token
        finally:
            self.release(name, token)

    # === Inspection ===

    def get_lock(self, name: str) -> Lock | None:
        """Return the live lock for ``name``, if any."""
        cursor = self.conn.execute(
            """
            SELECT name, holder_token, holder, acquired_at, expires_at
            FROM worker_locks WHERE name = ? AND expires_at > ?
            """,
            (name, to_iso8601(self.clock())),
        )
        row = cursor.fetchone()
        return _row_to_lock(row) if row else None

    def is_locked(self, name: str) -> bool:
        return self.get_lock(name) is not None

    def list_active_locks(self) -> list[Lock]:
        """List all live (non-expired) locks, oldest first."""
        cursor = self.conn.execute(
            """
            SELECT name, holder_token, holder, acquired_at, expires_at
            FROM worker_locks
            WHERE expires_at > ?
            ORDER BY acquired_at
            """,
            (to_iso8601(self.clock()),),
        )
        return [_row_to_lock(row) for row in cursor.fetchall()]

    # === Maintenance ===

    def cleanup_expired_locks(self) -> int:
        """Remove all expired locks.

        Idempotent; safe to run while other workers acquire locks.

        Returns:
            Number of locks removed
        """
        try:
            cursor = self.conn.execute(
                "DELETE FROM worker_locks WHERE expires_at <= ?",
                (to_iso8601(self.clock()),),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        count = cursor.rowcount
        if count > 0:
            logger.info("lock.cleanup", removed=count)
        return count

    def force_release_all(self) -> int:
        """Force release all locks.

        Only for operator recovery or testing.
        """
        cursor = self.conn.execute("DELETE FROM worker_locks")
        self.conn.commit()
        count = cursor.rowcount
        logger.warning("lock.force_released", count=count)
        return count


def _row_to_lock(row: tuple) -> Lock:
    return Lock(
        name=row[0],
        holder_token=row[1],
        holder=row[2],
        acquired_at=from_iso8601(row[3]),
        expires_at=from_iso8601(row[4]),
    )


__all__ = ["LockManager", "default_instance_id"]
