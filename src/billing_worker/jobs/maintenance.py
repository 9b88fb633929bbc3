"""Housekeeping jobs: expired locks, stale claims, old history."""

from __future__ import annotations

from billing_worker.execution.retry_queue import RetryQueue
from billing_worker.scheduling.job_runs import JobRunRepository
from billing_worker.scheduling.lock_manager import LockManager

from .base import JobContext, JobResult


class LockSweepJob:
    name = "cleanup-locks"

    def __init__(self, lock_manager: LockManager) -> None:
        self.lock_manager = lock_manager

    async def run(self, ctx: JobContext) -> JobResult:
        return JobResult(stats={"removed": self.lock_manager.cleanup_expired_locks()})


class ReaperJob:
    """Return in-flight items whose worker died to the pending state."""

    name = "reap-stale-claims"

    def __init__(self, queue: RetryQueue, timeout_seconds: int | None = None) -> None:
        self.queue = queue
        self.timeout_seconds = timeout_seconds

    async def run(self, ctx: JobContext) -> JobResult:
        return JobResult(stats={"reaped": self.queue.reap_stale_claims(self.timeout_seconds)})


class PruneJob:
    """Drop succeeded work items and job runs past the retention window."""

    name = "prune-history"

    def __init__(self, queue: RetryQueue, runs: JobRunRepository, retention_days: int = 30) -> None:
        self.queue = queue
        self.runs = runs
        self.retention_days = retention_days

    async def run(self, ctx: JobContext) -> JobResult:
        days = int(ctx.params.get("retention_days", self.retention_days))
        return JobResult(
            stats={
                "work_items_pruned": self.queue.prune(days),
                "job_runs_pruned": self.runs.prune(days),
            }
        )


__all__ = ["LockSweepJob", "PruneJob", "ReaperJob"]
