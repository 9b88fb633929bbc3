"""Scheduling: distributed locks, cadences, the job dispatcher and its backends.

Quick start::

    from billing_worker.core.database import connect
    from billing_worker.core.settings import get_settings
    from billing_worker.scheduling import create_dispatcher

    dispatcher = create_dispatcher(connect(settings.db_path), get_settings())
    dispatcher.start()      # ticks every settings.tick_interval seconds
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from billing_worker.core.protocols import Connection
from billing_worker.core.timestamps import Clock, utc_now

from .cadence import Cadence
from .dispatcher import DispatcherHealth, DispatcherStats, JobDispatcher, JobSpec, JobState
from .job_runs import JobRunRepository
from .lock_manager import LockManager, default_instance_id
from .protocol import BackendHealth, SchedulerBackend, TickCallback
from .thread_backend import ThreadSchedulerBackend

if TYPE_CHECKING:
    from billing_worker.core.settings import WorkerSettings
    from billing_worker.jobs.catalog import WorkerComponents


def create_dispatcher(
    conn: Connection,
    settings: WorkerSettings,
    *,
    components: WorkerComponents | None = None,
    backend: SchedulerBackend | None = None,
    clock: Clock = utc_now,
) -> JobDispatcher:
    """Dispatcher with the default job catalog registered."""
    from billing_worker.jobs.catalog import build_components, build_default_jobs

    components = components or build_components(conn, settings, clock=clock)
    dispatcher = JobDispatcher(
        components.lock_manager,
        components.runs,
        backend=backend or ThreadSchedulerBackend(),
        clock=clock,
        interval_seconds=settings.tick_interval,
    )
    for spec in build_default_jobs(components):
        dispatcher.register(spec)
    return dispatcher


__all__ = [
    "BackendHealth",
    "Cadence",
    "DispatcherHealth",
    "DispatcherStats",
    "JobDispatcher",
    "JobRunRepository",
    "JobSpec",
    "JobState",
    "LockManager",
    "SchedulerBackend",
    "ThreadSchedulerBackend",
    "TickCallback",
    "create_dispatcher",
    "default_instance_id",
]
