"""Tests for structlog configuration and context binding."""

from __future__ import annotations

import logging

import pytest
import structlog

from billing_worker.core.logging import (
    LogContext,
    _add_service_metadata,
    _elasticsearch_compatible,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    clear_context()
    structlog.reset_defaults()


class TestLogContext:
    def test_binds_and_unbinds(self):
        with LogContext(job="cleanup-locks", run_id="r1"):
            ctx = structlog.contextvars.get_contextvars()
            assert ctx["job"] == "cleanup-locks"
            assert ctx["run_id"] == "r1"
        assert "job" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_async_form(self):
        async with LogContext(job="sync-radius-status"):
            assert structlog.contextvars.get_contextvars()["job"] == "sync-radius-status"
        assert "job" not in structlog.contextvars.get_contextvars()

    def test_bind_and_clear(self):
        bind_context(instance="worker-a")
        assert structlog.contextvars.get_contextvars()["instance"] == "worker-a"
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}


class TestProcessors:
    def test_ecs_field_names(self):
        event = {"event": "queue.enqueued", "timestamp": "2024-05-01T02:00:00Z", "level": "info"}
        result = _elasticsearch_compatible(None, "info", event)
        assert result["@timestamp"] == "2024-05-01T02:00:00Z"
        assert result["log.level"] == "info"
        assert "timestamp" not in result

    def test_configure_sets_service_name(self):
        configure_logging("INFO", json_format=True, service="billing-worker-test")
        event = _add_service_metadata(None, "info", {"event": "x"})
        assert event["service.name"] == "billing-worker-test"

    def test_level_filtering(self):
        configure_logging("WARNING", json_format=True)
        wrapper = structlog.get_config()["wrapper_class"]
        assert wrapper is structlog.make_filtering_bound_logger(logging.WARNING)
