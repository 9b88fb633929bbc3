"""Tests for the sync job."""

from __future__ import annotations

import pytest

from billing_worker.core.errors import SyncError
from billing_worker.core.events import CollectingEventSink
from billing_worker.jobs.sync import SyncJob
from billing_worker.sync.engine import SyncEngine, SyncSnapshot
from billing_worker.sync.store import SyncRecordStore


class StaticSource:
    name = "static"

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.seen = []

    async def fetch(self, subjects):
        self.seen.append(subjects)
        if self.error:
            raise self.error
        return SyncSnapshot(states={s: {"status": "Online"} for s in subjects})


class TestSyncJob:
    @pytest.mark.asyncio
    async def test_uses_provider(self, conn, clock, make_ctx):
        async def subjects():
            return ["A-1", "A-2"]

        engine = SyncEngine(StaticSource(), SyncRecordStore(conn), CollectingEventSink(), clock=clock)
        result = await SyncJob("sync-radius-status", engine, subjects).run(make_ctx())
        assert result.stats == {"checked": 2, "changed": 2, "unchanged": 0, "failed": 0}

    @pytest.mark.asyncio
    async def test_params_override_subjects(self, conn, clock, make_ctx):
        async def subjects():
            raise AssertionError("provider should not be called")

        source = StaticSource()
        engine = SyncEngine(source, SyncRecordStore(conn), CollectingEventSink(), clock=clock)
        await SyncJob("sync-radius-status", engine, subjects).run(make_ctx(subjects=["A-9"]))
        assert source.seen == [["A-9"]]

    @pytest.mark.asyncio
    async def test_unreadable_source_fails_run(self, conn, clock, make_ctx):
        async def subjects():
            return ["A-1"]

        engine = SyncEngine(StaticSource(SyncError("down")), SyncRecordStore(conn), CollectingEventSink(), clock=clock)
        with pytest.raises(SyncError):
            await SyncJob("sync-radius-status", engine, subjects).run(make_ctx())
