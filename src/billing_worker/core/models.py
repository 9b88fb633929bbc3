"""Worker table models.

Manifesto:
    Locks, work items, job runs and sync records need typed dataclass
    representations so the scheduling, retry and sync layers exchange
    structured objects instead of raw rows.

Tags:
    models, dataclasses, schema-mapping, billing-worker

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# worker_locks
# ---------------------------------------------------------------------------


@dataclass
class Lock:
    """Live lock row (``worker_locks``)."""

    name: str
    holder_token: str
    holder: str
    acquired_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


# ---------------------------------------------------------------------------
# work_items
# ---------------------------------------------------------------------------


class WorkItemKind(str, Enum):
    """Which gateway a work item is delivered through."""

    EMAIL = "email"
    SMS = "sms"
    PAYMENT = "payment"
    NOTICE = "notice"  # deferred overdue notice awaiting its document
    RADIUS = "radius"  # disconnect / reconnect action


class WorkItemStatus(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED_PERMANENT = "failed_permanent"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkItemStatus.SUCCEEDED, WorkItemStatus.FAILED_PERMANENT)


@dataclass
class WorkItem:
    """Retry queue row (``work_items``)."""

    id: str
    kind: WorkItemKind
    payload: dict[str, Any]
    status: WorkItemStatus = WorkItemStatus.PENDING
    attempt_count: int = 0
    max_attempts: int = 3
    next_attempt_at: datetime | None = None
    last_error: str | None = None
    provider_ref: str | None = None
    dedupe_key: str | None = None
    claim_token: str | None = None
    claimed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_retry(self) -> bool:
        """True once at least one delivery attempt has failed."""
        return self.attempt_count > 0


# ---------------------------------------------------------------------------
# job_runs
# ---------------------------------------------------------------------------


class JobOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED_OVERLAP = "skipped_overlap"


@dataclass
class JobRun:
    """Completed job invocation (``job_runs``). Written once, never updated."""

    id: str
    job_name: str
    started_at: datetime
    finished_at: datetime
    outcome: JobOutcome
    error: str | None = None
    stats: dict[str, Any] = field(default_factory=dict)
    instance: str | None = None

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_name": self.job_name,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "outcome": self.outcome.value,
            "error": self.error,
            "stats": self.stats,
            "instance": self.instance,
        }


# ---------------------------------------------------------------------------
# billing backend views
# ---------------------------------------------------------------------------


@dataclass
class NoticeAccount:
    """Overdue billing account as served by the billing backend."""

    account_no: str
    full_name: str
    due_date: date
    amount_due: float
    email: str | None = None
    phone: str | None = None
    invoice_id: str | None = None
    plan: str | None = None
    address: str | None = None


# ---------------------------------------------------------------------------
# sync_records
# ---------------------------------------------------------------------------


@dataclass
class SyncRecord:
    """Latest observed state of one sync subject (``sync_records``)."""

    subject_id: str
    remote_state: dict[str, Any]
    observed_at: datetime
    local_state: dict[str, Any] | None = None


__all__ = [
    "JobOutcome",
    "JobRun",
    "Lock",
    "NoticeAccount",
    "SyncRecord",
    "WorkItem",
    "WorkItemKind",
    "WorkItemStatus",
]
