"""Job contract.

A job is anything with a ``name`` and an ``async run(ctx) -> JobResult``.
The dispatcher owns locking, timing and recording; a job body only does
its work and reports counters. Item-level failures belong in the counters,
not in exceptions: an exception escaping ``run`` marks the whole run failed.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable


@dataclass
class JobContext:
    """Per-run information handed to a job body."""

    job_name: str
    run_id: str
    started_at: datetime
    instance: str
    renew_lock: Callable[[], bool] = lambda: True
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class JobResult:
    """Counters reported by a job body, stored on the JobRun."""

    stats: dict[str, Any] = field(default_factory=dict)

    def incr(self, key: str, by: int = 1) -> None:
        self.stats[key] = self.stats.get(key, 0) + by


@runtime_checkable
class Job(Protocol):
    name: str

    async def run(self, ctx: JobContext) -> JobResult: ...


class FunctionJob:
    """Wrap a coroutine function as a job.

    Used for work owned by other services (invoice generation,
    auto-disconnect) that still needs the worker's cadence and lock.

    Example:
        >>> async def generate_invoices(ctx):
        ...     return {"generated": 42}
        >>> job = FunctionJob("generate-billing", generate_invoices)
    """

    def __init__(self, name: str, func: Callable[[JobContext], Awaitable[Any]]) -> None:
        self.name = name
        self._func = func

    async def run(self, ctx: JobContext) -> JobResult:
        result = await self._func(ctx)
        if isinstance(result, JobResult):
            return result
        if isinstance(result, dict):
            return JobResult(stats=result)
        return JobResult()


__all__ = ["FunctionJob", "Job", "JobContext", "JobResult"]
