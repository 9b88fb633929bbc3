"""Overdue notice jobs."""

from __future__ import annotations

from billing_worker.core.errors import JobError, WorkerError
from billing_worker.core.logging import get_logger
from billing_worker.core.models import WorkItemKind
from billing_worker.execution.retry_queue import RetryQueue
from billing_worker.notifications import AccountSource
from billing_worker.notifications.pipeline import DeferredNoticeAdapter, NotificationPipeline
from billing_worker.notifications.thresholds import NoticeThresholds

from .base import JobContext, JobResult
from .delivery import DeliveryJob

logger = get_logger(__name__)


class OverdueNoticeJob:
    """Send today's notices for every configured stage.

    For each stage the accounts whose invoice fell due exactly
    ``days_overdue`` days ago are fetched and handed to the pipeline. A
    stage whose accounts cannot be fetched is counted and skipped; the run
    fails only if no stage could be fetched at all.
    """

    name = "send-overdue-notices"

    def __init__(self, pipeline: NotificationPipeline, thresholds: NoticeThresholds, accounts: AccountSource) -> None:
        self.pipeline = pipeline
        self.thresholds = thresholds
        self.accounts = accounts

    async def run(self, ctx: JobContext) -> JobResult:
        today = self.pipeline.today()
        result = JobResult()
        failed_stages = []

        for stage in self.thresholds:
            due_date = self.thresholds.due_date_for(stage, today)
            try:
                accounts = await self.accounts.overdue_accounts(due_date)
            except WorkerError as e:
                failed_stages.append(stage.code)
                logger.error("notice.accounts_unavailable", stage=stage.code, due_date=str(due_date), error=e.message)
                continue

            report = await self.pipeline.notify(accounts, stage)
            for key, value in report.to_stats().items():
                result.incr(key, value)
            result.stats[stage.code] = report.accounts

        if failed_stages:
            result.stats["failed_stages"] = failed_stages
            if len(failed_stages) == len(self.thresholds):
                raise JobError(f"could not fetch overdue accounts for any stage: {', '.join(failed_stages)}")
        return result


class NoticeRetryJob(DeliveryJob):
    """Retry notices whose document could not be rendered in time."""

    def __init__(self, queue: RetryQueue, pipeline: NotificationPipeline, limit: int = 20, max_concurrency: int = 10):
        super().__init__(
            "process-notice-retries",
            queue,
            DeferredNoticeAdapter(pipeline),
            WorkItemKind.NOTICE,
            limit,
            max_concurrency=max_concurrency,
        )


__all__ = ["NoticeRetryJob", "OverdueNoticeJob"]
