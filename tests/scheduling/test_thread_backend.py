"""Tests for the threading dispatcher backend."""

from __future__ import annotations

import asyncio
import threading

import pytest

from billing_worker.core.models import JobOutcome
from billing_worker.jobs.base import FunctionJob, JobResult
from billing_worker.scheduling.dispatcher import JobDispatcher, JobSpec
from billing_worker.scheduling.protocol import SchedulerBackend
from billing_worker.scheduling.thread_backend import ThreadSchedulerBackend


class EveryTick:
    """Cadence that is due on every tick."""

    def next_after(self, moment):
        return moment

    def __str__(self) -> str:
        return "every tick"


@pytest.mark.slow
class TestThreadSchedulerBackend:
    def test_satisfies_protocol(self):
        assert isinstance(ThreadSchedulerBackend(), SchedulerBackend)

    def test_ticks_until_stopped(self):
        backend = ThreadSchedulerBackend(join_timeout=2)
        ticked = threading.Event()
        calls = []

        async def tick():
            calls.append(1)
            if len(calls) >= 3:
                ticked.set()

        backend.start(tick, interval_seconds=0.01)
        try:
            assert ticked.wait(timeout=5)
            assert backend.is_running
            assert backend.get_health().healthy is True
        finally:
            backend.stop()

        assert not backend.is_running
        assert backend.tick_count >= 3
        assert backend.get_health().to_dict()["interval_seconds"] == 0.01

    def test_tick_errors_do_not_stop_loop(self):
        backend = ThreadSchedulerBackend(join_timeout=2)
        done = threading.Event()
        calls = []

        async def tick():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first tick fails")
            done.set()

        backend.start(tick, interval_seconds=0.01)
        try:
            assert done.wait(timeout=5)
        finally:
            backend.stop()

    def test_wait_returns_after_stop(self):
        backend = ThreadSchedulerBackend(join_timeout=2)

        async def tick():
            return None

        backend.start(tick, interval_seconds=0.01)
        waiter = threading.Thread(target=backend.wait)
        waiter.start()
        backend.stop()
        waiter.join(timeout=2)
        assert not waiter.is_alive()

    def test_stop_without_start_is_noop(self):
        ThreadSchedulerBackend().stop()

    def test_long_job_does_not_hold_back_other_ticks(self, lock_manager, runs):
        slow_started = threading.Event()
        slow_finished = threading.Event()
        fast_done = threading.Event()
        fast_calls = []

        async def slow(ctx):
            slow_started.set()
            await asyncio.sleep(2)
            slow_finished.set()
            return JobResult()

        async def fast(ctx):
            fast_calls.append(ctx.run_id)
            if len(fast_calls) >= 3:
                fast_done.set()
            return JobResult()

        backend = ThreadSchedulerBackend(join_timeout=5)
        dispatcher = JobDispatcher(lock_manager, runs, backend=backend, interval_seconds=0.05)
        dispatcher.register(JobSpec("generate-billing", FunctionJob("generate-billing", slow), EveryTick()))
        dispatcher.register(JobSpec("process-sms-queue", FunctionJob("process-sms-queue", fast), EveryTick()))

        dispatcher.start()
        try:
            assert slow_started.wait(timeout=2)
            assert fast_done.wait(timeout=1.5)
            assert not slow_finished.is_set()
            assert backend.get_health().to_dict()["ticks_in_flight"] >= 1
        finally:
            dispatcher.stop()

        assert slow_finished.is_set()
        outcomes = [r.outcome for r in runs.list_runs(job_name="generate-billing", limit=100)]
        assert outcomes.count(JobOutcome.SUCCESS) == 1
        assert JobOutcome.SKIPPED_OVERLAP in outcomes
        assert not lock_manager.is_locked("job:generate-billing")
