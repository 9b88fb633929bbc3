"""Fixtures for job tests."""

from __future__ import annotations

import pytest

from billing_worker.jobs.base import JobContext


@pytest.fixture
def make_ctx(clock):
    def _make(name: str = "job", **params) -> JobContext:
        return JobContext(job_name=name, run_id="run-1", started_at=clock(), instance="worker-a", params=params)

    return _make
