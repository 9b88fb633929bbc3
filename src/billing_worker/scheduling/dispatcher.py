"""Job dispatcher: cadence evaluation, overlap protection, run recording.

Manifesto:
    Every scheduled job in the worker runs "without overlapping": at most one
    live execution per job name across all worker processes. The dispatcher
    wraps each invocation in a named lock, records exactly one JobRun per
    invocation (including the ones skipped because the lock was busy) and
    always releases the lock, whether the body succeeded, raised, timed out or
    was cancelled. A cancelled run is recorded as a failure and the
    cancellation is re-raised.

Architecture:
    ::

        tick(now)
          ├── due = enabled jobs with next_fire_at <= now
          ├── advance next_fire_at for each due job   (before running)
          └── gather(trigger(job) for job in due)

        trigger(name)
          Idle ──acquire("job:<name>")──► LockAcquired ──► Running
            │ busy                                           │
            ▼                                                ├─ ok ────► Succeeded
          JobRun(skipped_overlap)                            ├─ raise ─► Failed
                                                             └─ cancel ► Failed, re-raised
                                                                 │
                                 release lock (finally) ◄────────┘
                                 record JobRun, call hooks, back to Idle

Tags:
    billing-worker, scheduling, dispatcher, cron, overlap, job-runs

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from billing_worker.core.errors import JobError, JobNotFoundError
from billing_worker.core.logging import LogContext, get_logger
from billing_worker.core.models import JobOutcome, JobRun
from billing_worker.core.timestamps import Clock, generate_ulid, utc_now
from billing_worker.jobs.base import Job, JobContext, JobResult

from .cadence import Cadence
from .job_runs import JobRunRepository
from .lock_manager import LockManager
from .protocol import BackendHealth, SchedulerBackend

logger = get_logger(__name__)

RunHook = Callable[[JobRun], Any]


class JobState(str, Enum):
    IDLE = "idle"
    LOCK_ACQUIRED = "lock_acquired"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class JobSpec:
    """Registration of a job with its cadence and guard rails."""

    name: str
    job: Job
    cadence: Cadence
    lock_ttl_seconds: int = 3600
    timeout_seconds: float | None = None
    enabled: bool = True
    description: str = ""
    on_success: RunHook | None = None
    on_failure: RunHook | None = None

    @property
    def lock_name(self) -> str:
        return f"job:{self.name}"


@dataclass
class DispatcherStats:
    """Counters for the dispatcher process."""

    tick_count: int = 0
    runs_succeeded: int = 0
    runs_failed: int = 0
    runs_skipped: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "runs_succeeded": self.runs_succeeded,
            "runs_failed": self.runs_failed,
            "runs_skipped": self.runs_skipped,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_error": self.last_error,
        }


@dataclass
class DispatcherHealth:
    healthy: bool
    backend: BackendHealth | None
    jobs_enabled: int = 0
    active_locks: int = 0
    stats: DispatcherStats = field(default_factory=DispatcherStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend.to_dict() if self.backend else None,
            "jobs_enabled": self.jobs_enabled,
            "active_locks": self.active_locks,
            "stats": self.stats.to_dict(),
        }


class JobDispatcher:
    """Fires registered jobs on their cadence under a per-job lock.

    Example:
        >>> dispatcher = JobDispatcher(LockManager(conn), JobRunRepository(conn))
        >>> dispatcher.register(JobSpec("cleanup-locks", LockSweepJob(locks), Cadence.hourly()))
        >>> run = await dispatcher.trigger("cleanup-locks")
        >>> run.outcome
        <JobOutcome.SUCCESS: 'success'>
    """

    def __init__(
        self,
        lock_manager: LockManager,
        runs: JobRunRepository,
        backend: SchedulerBackend | None = None,
        clock: Clock = utc_now,
        interval_seconds: float = 10.0,
    ) -> None:
        self.lock_manager = lock_manager
        self.runs = runs
        self.backend = backend
        self.clock = clock
        self.interval = interval_seconds

        self._specs: dict[str, JobSpec] = {}
        self._next_fire: dict[str, datetime] = {}
        self._states: dict[str, JobState] = {}
        self._stats = DispatcherStats()
        self._running = False

    # === Registry ===

    def register(self, spec: JobSpec) -> JobSpec:
        """Register a job. Its first fire time is computed from now."""
        if spec.name in self._specs:
            raise JobError(f"Job already registered: {spec.name}")
        self._specs[spec.name] = spec
        self._next_fire[spec.name] = spec.cadence.next_after(self.clock())
        self._states[spec.name] = JobState.IDLE
        logger.debug("dispatcher.registered", job=spec.name, cadence=str(spec.cadence))
        return spec

    def get(self, name: str) -> JobSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise JobNotFoundError(name) from None

    def jobs(self) -> list[JobSpec]:
        return list(self._specs.values())

    def state(self, name: str) -> JobState:
        self.get(name)
        return self._states[name]

    def next_fire_at(self, name: str) -> datetime:
        self.get(name)
        return self._next_fire[name]

    # === Lifecycle ===

    def start(self) -> None:
        """Begin ticking through the configured backend."""
        if self.backend is None:
            raise JobError("No scheduler backend configured")
        if self._running:
            logger.warning("dispatcher.already_running")
            return
        logger.info(
            "dispatcher.starting",
            backend=self.backend.name,
            interval_seconds=self.interval,
            jobs=[s.name for s in self._specs.values() if s.enabled],
        )
        self.backend.start(self.tick, self.interval)
        self._running = True

    def stop(self) -> None:
        if not self._running or self.backend is None:
            return
        self.backend.stop()
        self._running = False
        logger.info("dispatcher.stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # === Tick ===

    async def tick(self, now: datetime | None = None) -> list[JobRun]:
        """Fire every enabled job whose next fire time has arrived.

        Due jobs run concurrently. Fire times advance before the runs start,
        so a run outlasting its interval does not refire the same slot.
        """
        now = now or self.clock()
        self._stats.tick_count += 1
        self._stats.last_tick = now

        due = [
            spec
            for spec in self._specs.values()
            if spec.enabled and self._next_fire[spec.name] <= now
        ]
        for spec in due:
            self._next_fire[spec.name] = spec.cadence.next_after(now)

        if not due:
            return []

        logger.debug("dispatcher.due", jobs=[s.name for s in due])
        results = await asyncio.gather(*(self._trigger_logged(spec.name) for spec in due))
        return [run for run in results if run is not None]

    async def _trigger_logged(self, name: str) -> JobRun | None:
        try:
            return await self.trigger(name)
        except Exception as e:
            self._stats.last_error = str(e)
            logger.exception("dispatcher.trigger_failed", job=name)
            return None

    # === Trigger ===

    async def trigger(self, name: str, params: dict[str, Any] | None = None) -> JobRun:
        """Run one job now, under its lock.

        Returns:
            The recorded JobRun (``skipped_overlap`` if the lock was busy)

        Raises:
            JobNotFoundError: If no job is registered under ``name``
        """
        spec = self.get(name)
        started_at = self.clock()
        run_id = generate_ulid(started_at)

        token = self.lock_manager.acquire(spec.lock_name, spec.lock_ttl_seconds)
        if token is None:
            holder = self.lock_manager.get_lock(spec.lock_name)
            run = JobRun(
                id=run_id,
                job_name=name,
                started_at=started_at,
                finished_at=started_at,
                outcome=JobOutcome.SKIPPED_OVERLAP,
                stats={"holder": holder.holder} if holder else {},
                instance=self.lock_manager.instance_id,
            )
            self.runs.record(run)
            self._stats.runs_skipped += 1
            logger.info("job.skipped_overlap", job=name, holder=holder.holder if holder else None)
            return run

        self._states[name] = JobState.LOCK_ACQUIRED
        outcome = JobOutcome.FAILURE
        error: str | None = None
        result: JobResult | None = None

        ctx = JobContext(
            job_name=name,
            run_id=run_id,
            started_at=started_at,
            instance=self.lock_manager.instance_id,
            renew_lock=lambda: self.lock_manager.renew(spec.lock_name, token, spec.lock_ttl_seconds),
            params=params or {},
        )

        try:
            async with LogContext(job=name, run_id=run_id):
                self._states[name] = JobState.RUNNING
                logger.info("job.started")
                if spec.timeout_seconds:
                    result = await asyncio.wait_for(spec.job.run(ctx), timeout=spec.timeout_seconds)
                else:
                    result = await spec.job.run(ctx)
            outcome = JobOutcome.SUCCESS
        except TimeoutError as e:
            error = f"Job timed out after {spec.timeout_seconds}s" if spec.timeout_seconds else f"TimeoutError: {e}"
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.exception("job.body_raised", job=name, run_id=run_id)
        except BaseException as e:
            # cancelled mid-run: the run is still recorded before the exception propagates
            try:
                self._finish(spec, run_id, started_at, JobOutcome.FAILURE, f"cancelled ({type(e).__name__})", None)
            finally:
                self._states[name] = JobState.IDLE
            raise
        finally:
            try:
                self.lock_manager.release(spec.lock_name, token)
            except Exception:
                logger.exception("job.lock_release_failed", job=name, lock=spec.lock_name)

        try:
            run = self._finish(spec, run_id, started_at, outcome, error, result)
            await self._call_hook(spec.on_success if run.outcome is JobOutcome.SUCCESS else spec.on_failure, run)
        finally:
            self._states[name] = JobState.IDLE
        return run

    def _finish(
        self,
        spec: JobSpec,
        run_id: str,
        started_at: datetime,
        outcome: JobOutcome,
        error: str | None,
        result: JobResult | None,
    ) -> JobRun:
        name = spec.name
        finished_at = self.clock()
        run = JobRun(
            id=run_id,
            job_name=name,
            started_at=started_at,
            finished_at=finished_at,
            outcome=outcome,
            error=error,
            stats=result.stats if result else {},
            instance=self.lock_manager.instance_id,
        )

        if outcome is JobOutcome.SUCCESS:
            self._states[name] = JobState.SUCCEEDED
            self._stats.runs_succeeded += 1
            logger.info("job.succeeded", job=name, run_id=run_id, duration=run.duration_seconds, stats=run.stats)
        else:
            self._states[name] = JobState.FAILED
            self._stats.runs_failed += 1
            self._stats.last_error = error
            logger.error("job.failed", job=name, run_id=run_id, error=error)

        self.runs.record(run)
        return run

    async def _call_hook(self, hook: RunHook | None, run: JobRun) -> None:
        if hook is None:
            return
        try:
            value = hook(run)
            if inspect.isawaitable(value):
                await value
        except Exception:
            logger.exception("job.hook_failed", job=run.job_name, outcome=run.outcome.value)

    # === Health & Stats ===

    def health(self) -> DispatcherHealth:
        backend_health = self.backend.get_health() if self.backend else None
        return DispatcherHealth(
            healthy=self._running and bool(backend_health and backend_health.healthy),
            backend=backend_health,
            jobs_enabled=sum(1 for s in self._specs.values() if s.enabled),
            active_locks=len(self.lock_manager.list_active_locks()),
            stats=self._stats,
        )

    def get_stats(self) -> DispatcherStats:
        return self._stats


__all__ = [
    "DispatcherHealth",
    "DispatcherStats",
    "JobDispatcher",
    "JobSpec",
    "JobState",
]
