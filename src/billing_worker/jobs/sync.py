"""Periodic sync job."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from billing_worker.sync.engine import SyncEngine

from .base import JobContext, JobResult

SubjectProvider = Callable[[], Awaitable[list[str]]]


class SyncJob:
    """Run one Sync Engine cycle over the subjects the provider returns.

    A source that cannot be read at all raises out of ``run`` and fails the
    run; per-subject failures are only counted.
    """

    def __init__(self, name: str, engine: SyncEngine, subjects: SubjectProvider) -> None:
        self.name = name
        self.engine = engine
        self.subjects = subjects

    async def run(self, ctx: JobContext) -> JobResult:
        subjects = ctx.params.get("subjects") or await self.subjects()
        report = await self.engine.run_cycle(subjects)
        return JobResult(stats=report.to_stats())


__all__ = ["SyncJob"]
