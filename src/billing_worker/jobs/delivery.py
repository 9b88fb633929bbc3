"""Queue delivery job: claim due work items and push them through a gateway.

One run::

    claim_batch(kind, limit) ──► gather(adapter.send(item)) ──► report_result(item)
                                  (at most max_concurrency)

A run succeeds even when every item failed; item outcomes are in the stats.
"""

from __future__ import annotations

from billing_worker.core.logging import get_logger
from billing_worker.core.models import WorkItem, WorkItemKind, WorkItemStatus
from billing_worker.execution.async_batch import AsyncBatchExecutor
from billing_worker.execution.retry_queue import RetryQueue
from billing_worker.gateways.base import GatewayAdapter, GatewayResult

from .base import JobContext, JobResult

logger = get_logger(__name__)


class DeliveryJob:
    """Deliver one kind of work item.

    ``retried`` narrows the claim: True takes only items that already failed
    once (the retry cadence), False only fresh ones, None both.
    """

    def __init__(
        self,
        name: str,
        queue: RetryQueue,
        adapter: GatewayAdapter,
        kind: WorkItemKind | str,
        limit: int = 50,
        *,
        retried: bool | None = None,
        max_concurrency: int = 10,
    ) -> None:
        self.name = name
        self.queue = queue
        self.adapter = adapter
        self.kind = WorkItemKind(kind)
        self.limit = limit
        self.retried = retried
        self.max_concurrency = max_concurrency

    async def run(self, ctx: JobContext) -> JobResult:
        limit = int(ctx.params.get("limit", self.limit))
        items = self.queue.claim_batch(self.kind, limit, retried=self.retried)
        result = JobResult(stats={"claimed": len(items), "succeeded": 0, "retrying": 0, "failed_permanent": 0})
        if not items:
            return result

        batch = AsyncBatchExecutor(max_concurrency=self.max_concurrency, label=self.name)
        for item in items:
            batch.add(item.id, self._deliver, {"item": item})
        outcome = await batch.run_all()

        for batch_item in outcome.items:
            if batch_item.status != "completed":
                result.incr("errors")
                continue
            updated: WorkItem | None = batch_item.result
            if updated is None:
                result.incr("lost")
            elif updated.status == WorkItemStatus.SUCCEEDED:
                result.incr("succeeded")
            elif updated.status == WorkItemStatus.FAILED_PERMANENT:
                result.incr("failed_permanent")
            else:
                result.incr("retrying")

        logger.info("delivery.batch_completed", job=self.name, kind=self.kind.value, **result.stats)
        return result

    async def _deliver(self, item: WorkItem) -> WorkItem | None:
        try:
            sent = await self.adapter.send(item)
        except Exception as e:
            logger.warning("delivery.adapter_raised", job=self.name, item_id=item.id, error=f"{type(e).__name__}: {e}")
            sent = GatewayResult.transient(f"{type(e).__name__}: {e}")
        return self.queue.report_result(
            item.id,
            sent.success,
            sent.error,
            permanent=sent.permanent,
            provider_ref=sent.provider_ref,
            claim_token=item.claim_token,
        )


__all__ = ["DeliveryJob"]
