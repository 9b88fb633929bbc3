"""Tests for the billing-side jobs: auto-disconnect and invoice generation."""

from __future__ import annotations

from datetime import date

import pytest

from billing_worker.core.errors import ConfigError, TransientGatewayError
from billing_worker.core.models import WorkItemKind
from billing_worker.gateways.billing_api import DisconnectCandidate
from billing_worker.jobs.billing import AutoDisconnectJob, generate_billing_job

TODAY = date(2024, 5, 1)


class FakeBackend:
    def __init__(self, candidates=(), summary=None, error: Exception | None = None) -> None:
        self.candidates = list(candidates)
        self.summary = summary if summary is not None else {"generated": 3}
        self.error = error
        self.cutoffs = []
        self.billing_dates = []

    async def disconnect_candidates(self, due_on_or_before):
        self.cutoffs.append(due_on_or_before)
        if self.error:
            raise self.error
        return self.candidates

    async def generate_daily_billings(self, billing_date):
        self.billing_dates.append(billing_date)
        if self.error:
            raise self.error
        return self.summary


class TestAutoDisconnectJob:
    @pytest.mark.asyncio
    async def test_queues_disconnect_for_overdue_balances(self, queue, make_ctx):
        backend = FakeBackend(
            [
                DisconnectCandidate("A-1", "juan", 1299.0, "Active"),
                DisconnectCandidate("A-2", "maria", 0.0, "Active"),
                DisconnectCandidate("A-3", "pedro", 500.0, "Pullout"),
                DisconnectCandidate("A-4", "ana", 500.0, " disconnected "),
                DisconnectCandidate("A-5", None, 500.0, "Active"),
            ]
        )
        job = AutoDisconnectJob(queue, backend, lambda: TODAY, offset_days=4, disconnected_group="Disconnected")

        result = await job.run(make_ctx("auto-disconnect"))

        assert backend.cutoffs == [date(2024, 4, 27)]
        assert result.stats == {
            "cutoff": "2024-04-27",
            "queued": 1,
            "skipped_paid": 1,
            "skipped_inactive": 2,
            "skipped_no_username": 1,
        }
        [item] = queue.list_items(kind=WorkItemKind.RADIUS)
        assert item.payload == {"username": "juan", "action": "disconnect", "group": "Disconnected", "account_no": "A-1"}
        assert item.dedupe_key == "disconnect:juan"

    @pytest.mark.asyncio
    async def test_rerun_does_not_queue_twice(self, queue, make_ctx):
        backend = FakeBackend([DisconnectCandidate("A-1", "juan", 1299.0)])
        job = AutoDisconnectJob(queue, backend, lambda: TODAY)

        await job.run(make_ctx("auto-disconnect"))
        await job.run(make_ctx("auto-disconnect"))

        assert len(queue.list_items(kind=WorkItemKind.RADIUS)) == 1

    @pytest.mark.asyncio
    async def test_offset_param_overrides_setting(self, queue, make_ctx):
        backend = FakeBackend()
        await AutoDisconnectJob(queue, backend, lambda: TODAY, offset_days=4).run(
            make_ctx("auto-disconnect", offset_days=10)
        )
        assert backend.cutoffs == [date(2024, 4, 21)]

    @pytest.mark.asyncio
    async def test_negative_offset_rejected(self, queue, make_ctx):
        with pytest.raises(ConfigError):
            await AutoDisconnectJob(queue, FakeBackend(), lambda: TODAY, offset_days=-1).run(make_ctx())

    @pytest.mark.asyncio
    async def test_backend_outage_fails_run(self, queue, make_ctx):
        job = AutoDisconnectJob(queue, FakeBackend(error=TransientGatewayError("HTTP 502")), lambda: TODAY)
        with pytest.raises(TransientGatewayError):
            await job.run(make_ctx("auto-disconnect"))
        assert queue.list_items() == []


class TestGenerateBillingJob:
    @pytest.mark.asyncio
    async def test_generates_for_today(self, make_ctx):
        backend = FakeBackend(summary={"generated": 12, "failed": 1})
        job = generate_billing_job(backend, lambda: TODAY)

        result = await job.run(make_ctx("generate-billing"))

        assert job.name == "generate-billing"
        assert backend.billing_dates == [TODAY]
        assert result.stats == {"billing_date": "2024-05-01", "generated": 12, "failed": 1}

    @pytest.mark.asyncio
    async def test_billing_date_param(self, make_ctx):
        backend = FakeBackend()
        await generate_billing_job(backend, lambda: TODAY).run(make_ctx("generate-billing", billing_date="2024-04-30"))
        assert backend.billing_dates == [date(2024, 4, 30)]
