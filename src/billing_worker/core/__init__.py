"""Core primitives: errors, logging, settings, persistence, models, events."""

from .errors import (
    ConfigError,
    DataError,
    ErrorCategory,
    GatewayTimeoutError,
    JobError,
    JobNotFoundError,
    LockBusyError,
    PermanentFailure,
    RateLimitedError,
    SyncError,
    TransientGatewayError,
    WorkerError,
)
from .models import JobOutcome, JobRun, Lock, NoticeAccount, SyncRecord, WorkItem, WorkItemKind, WorkItemStatus
from .timestamps import Clock, from_iso8601, generate_ulid, to_iso8601, utc_now

__all__ = [
    "Clock",
    "ConfigError",
    "DataError",
    "ErrorCategory",
    "GatewayTimeoutError",
    "JobError",
    "JobNotFoundError",
    "JobOutcome",
    "JobRun",
    "Lock",
    "LockBusyError",
    "NoticeAccount",
    "PermanentFailure",
    "RateLimitedError",
    "SyncError",
    "SyncRecord",
    "TransientGatewayError",
    "WorkItem",
    "WorkItemKind",
    "WorkItemStatus",
    "WorkerError",
    "from_iso8601",
    "generate_ulid",
    "to_iso8601",
    "utc_now",
]
