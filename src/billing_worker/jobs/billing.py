"""Jobs that act on billing state owned by the billing backend.

    generate-billing     ask the backend to generate today's invoices
    auto-disconnect      queue a RADIUS disconnect for each account
                         ``offset_days`` past due with a balance left

Auto-disconnect only enqueues ``radius`` items; the
``process-radius-actions`` delivery job moves the subscriber to the
disconnected group and drops their sessions. One live item per username
(``disconnect:<username>``) keeps a rerun on the same day from queueing twice.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from typing import Protocol

from billing_worker.core.logging import get_logger
from billing_worker.core.models import WorkItemKind
from billing_worker.execution.retry_queue import RetryQueue
from billing_worker.gateways.billing_api import DisconnectCandidate
from billing_worker.notifications.thresholds import NoticeThresholds

from .base import FunctionJob, JobContext, JobResult

logger = get_logger(__name__)

# accounts in these states have no live access to cut
INACTIVE_STATUSES = frozenset({"inactive", "pullout", "disconnected", "offline"})


class CandidateSource(Protocol):
    async def disconnect_candidates(self, due_on_or_before: date) -> list[DisconnectCandidate]: ...


class BillingGenerator(Protocol):
    async def generate_daily_billings(self, billing_date: date) -> dict: ...


class AutoDisconnectJob:
    """Queue RADIUS disconnects for accounts past the disconnection day."""

    name = "auto-disconnect"

    def __init__(
        self,
        queue: RetryQueue,
        candidates: CandidateSource,
        today: Callable[[], date],
        offset_days: int = 4,
        disconnected_group: str = "Disconnected",
    ) -> None:
        self.queue = queue
        self.candidates = candidates
        self.today = today
        self.offset_days = offset_days
        self.disconnected_group = disconnected_group

    async def run(self, ctx: JobContext) -> JobResult:
        offset = int(ctx.params.get("offset_days", self.offset_days))
        cutoff = NoticeThresholds.days_overdue_cutoff(offset, self.today())
        result = JobResult(stats={"cutoff": cutoff.isoformat()})

        for candidate in await self.candidates.disconnect_candidates(cutoff):
            reason = _skip_reason(candidate)
            if reason:
                result.incr(f"skipped_{reason}")
                logger.debug("disconnect.skipped", account_no=candidate.account_no, reason=reason)
                continue
            self.queue.enqueue(
                WorkItemKind.RADIUS,
                {
                    "username": candidate.username,
                    "action": "disconnect",
                    "group": self.disconnected_group,
                    "account_no": candidate.account_no,
                },
                dedupe_key=f"disconnect:{candidate.username}",
            )
            result.incr("queued")
            logger.info("disconnect.queued", account_no=candidate.account_no, username=candidate.username)

        return result


def _skip_reason(candidate: DisconnectCandidate) -> str | None:
    if candidate.balance <= 0:
        return "paid"
    if candidate.status.strip().lower() in INACTIVE_STATUSES:
        return "inactive"
    if not candidate.username:
        return "no_username"
    return None


def generate_billing_job(generator: BillingGenerator, today: Callable[[], date]) -> FunctionJob:
    """``generate-billing``: one backend invoice run per day."""

    async def _generate(ctx: JobContext) -> dict:
        billing_date = date.fromisoformat(ctx.params["billing_date"]) if "billing_date" in ctx.params else today()
        summary = await generator.generate_daily_billings(billing_date)
        return {"billing_date": billing_date.isoformat(), **(summary if isinstance(summary, dict) else {})}

    return FunctionJob("generate-billing", _generate)


__all__ = ["AutoDisconnectJob", "generate_billing_job"]
