"""Notification Pipeline: overdue and disconnection notices over SMS and email."""

from typing import Protocol

from billing_worker.core.models import NoticeAccount

from .ledger import NoticeLedger
from .pipeline import ChannelOutcome, DeferredNoticeAdapter, NotificationPipeline, PipelineReport
from .templates import notice_context, render
from .thresholds import NoticeStage, NoticeThresholds


class AccountSource(Protocol):
    """Where overdue accounts come from (the billing backend in production)."""

    async def overdue_accounts(self, due_date) -> list[NoticeAccount]: ...


__all__ = [
    "AccountSource",
    "ChannelOutcome",
    "DeferredNoticeAdapter",
    "NoticeAccount",
    "NoticeLedger",
    "NoticeStage",
    "NoticeThresholds",
    "NotificationPipeline",
    "PipelineReport",
    "notice_context",
    "render",
]
