"""
Shared pytest fixtures for billing-worker tests.

This module provides:
- An in-memory SQLite connection with the worker tables
- A controllable clock (``FakeClock``) shared by every component
- Lock manager / retry queue / job run fixtures bound to that clock
- Scriptable fake gateways

Usage:
    def test_something(queue, clock):
        queue.enqueue("sms", {...})
        clock.advance(300)
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from billing_worker.core.database import connect
from billing_worker.core.models import WorkItem
from billing_worker.execution.retry_queue import RetryQueue
from billing_worker.gateways.base import GatewayResult
from billing_worker.scheduling.job_runs import JobRunRepository
from billing_worker.scheduling.lock_manager import LockManager


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests under tests/integration as integration, everything else unit."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 2, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, **kwargs)
        return self.now

    def set(self, moment: datetime) -> datetime:
        self.now = moment
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Database-backed components
# =============================================================================


@pytest.fixture
def conn() -> Iterator[Any]:
    connection = connect(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def lock_manager(conn, clock) -> LockManager:
    return LockManager(conn, instance_id="worker-a", clock=clock)


@pytest.fixture
def queue(conn, clock) -> RetryQueue:
    return RetryQueue(conn, clock=clock)


@pytest.fixture
def runs(conn, clock) -> JobRunRepository:
    return JobRunRepository(conn, clock=clock)


# =============================================================================
# Fake gateways
# =============================================================================


class FakeGateway:
    """Adapter returning scripted results and recording what it was sent.

    ``script`` entries are GatewayResults or exceptions, consumed in order;
    once exhausted, ``default`` is returned. ``by_key`` maps a payload value
    (looked up under ``key_field``) to a fixed result.
    """

    def __init__(
        self,
        name: str = "fake",
        default: GatewayResult | None = None,
        script: list[Any] | None = None,
        by_key: dict[str, Any] | None = None,
        key_field: str = "to",
    ) -> None:
        self.name = name
        self.default = default or GatewayResult.ok(provider_ref=f"{name}-ref")
        self.script = list(script or [])
        self.by_key = dict(by_key or {})
        self.key_field = key_field
        self.sent: list[WorkItem] = []

    async def send(self, item: WorkItem) -> GatewayResult:
        self.sent.append(item)
        key = item.payload.get(self.key_field)
        outcome = self.by_key.get(key) if key in self.by_key else (self.script.pop(0) if self.script else self.default)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def make_gateway():
    """Factory for :class:`FakeGateway`."""
    return FakeGateway


@pytest.fixture
def fake_clock_cls():
    return FakeClock


