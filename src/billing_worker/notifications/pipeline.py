"""Notification Pipeline: overdue and disconnection notices.

Per account, per stage::

    account ──┬── phone? ── compose SMS ──────────────────────── send ──┐
              │                                                        ├─ sent     → ledger
              └── email? ── document ─┬─ ok      → attach ────── send ─┤─ transient → one retry item + ledger
                                      ├─ degrade → no attachment ─┘    └─ permanent → logged
                                      └─ defer   → ``notice`` retry item

The two channels run concurrently and independently; accounts run
concurrently up to ``max_concurrency``. One account raising never stops
the batch. The ledger makes a second run on the same day a no-op for
channels already handled.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo

from billing_worker.core.errors import TransientGatewayError
from billing_worker.core.logging import get_logger
from billing_worker.core.models import NoticeAccount, WorkItem, WorkItemKind
from billing_worker.core.timestamps import Clock, utc_now
from billing_worker.execution.retry_queue import RetryQueue
from billing_worker.gateways.base import GatewayAdapter, GatewayResult
from billing_worker.gateways.documents import DocumentGenerator

from .ledger import DEFERRED, QUEUED, SENT, NoticeLedger
from .templates import notice_context, render
from .thresholds import NoticeStage

logger = get_logger(__name__)

AttachmentPolicy = Literal["degrade", "defer"]

# channel outcomes
OUTCOME_SENT = "sent"
OUTCOME_QUEUED = "queued"
OUTCOME_DEFERRED = "deferred"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_DUPLICATE = "duplicate"


@dataclass
class ChannelOutcome:
    account_no: str
    channel: str
    status: str
    error: str | None = None


@dataclass
class PipelineReport:
    """What one ``notify`` call did."""

    stage: str
    accounts: int = 0
    errors: int = 0
    outcomes: list[ChannelOutcome] = field(default_factory=list)

    def count(self, status: str, channel: str | None = None) -> int:
        return sum(1 for o in self.outcomes if o.status == status and (channel is None or o.channel == channel))

    def to_stats(self) -> dict[str, int]:
        return {
            "accounts": self.accounts,
            "sent": self.count(OUTCOME_SENT),
            "queued": self.count(OUTCOME_QUEUED),
            "deferred": self.count(OUTCOME_DEFERRED),
            "failed": self.count(OUTCOME_FAILED),
            "skipped": self.count(OUTCOME_SKIPPED),
            "duplicate": self.count(OUTCOME_DUPLICATE),
            "errors": self.errors,
        }


class NotificationPipeline:
    """Compose and deliver stage notices over SMS and email."""

    def __init__(
        self,
        sms: GatewayAdapter,
        email: GatewayAdapter,
        queue: RetryQueue,
        documents: DocumentGenerator | None = None,
        ledger: NoticeLedger | None = None,
        attachment_policy: AttachmentPolicy = "degrade",
        max_concurrency: int = 10,
        *,
        dc_offset_days: int = 4,
        retry_delay_seconds: float = 300,
        timezone: str = "UTC",
        context_extra: dict[str, Any] | None = None,
        clock: Clock = utc_now,
    ) -> None:
        if attachment_policy not in ("degrade", "defer"):
            raise ValueError(f"attachment_policy must be 'degrade' or 'defer', got {attachment_policy!r}")
        self.sms = sms
        self.email = email
        self.queue = queue
        self.documents = documents
        self.ledger = ledger
        self.attachment_policy = attachment_policy
        self.max_concurrency = max_concurrency
        self.dc_offset_days = dc_offset_days
        self.retry_delay_seconds = retry_delay_seconds
        self.tz = ZoneInfo(timezone)
        self.context_extra = dict(context_extra or {})
        self.clock = clock

    def today(self) -> date:
        return self.clock().astimezone(self.tz).date()

    async def notify(self, accounts: Iterable[NoticeAccount], stage: NoticeStage) -> PipelineReport:
        """Notify every account of ``stage``; never raises for one account."""
        unique = list({a.account_no: a for a in accounts}.values())
        report = PipelineReport(stage=stage.code, accounts=len(unique))
        notice_date = self.today()
        sem = asyncio.Semaphore(self.max_concurrency)

        async def _one(account: NoticeAccount) -> None:
            async with sem:
                try:
                    report.outcomes.extend(await self._notify_account(account, stage, notice_date))
                except Exception as e:
                    report.errors += 1
                    logger.error(
                        "notice.account_failed",
                        account_no=account.account_no,
                        stage=stage.code,
                        error=f"{type(e).__name__}: {e}",
                    )

        await asyncio.gather(*[_one(a) for a in unique])
        logger.info("notice.stage_completed", stage=stage.code, **report.to_stats())
        return report

    async def _notify_account(
        self, account: NoticeAccount, stage: NoticeStage, notice_date: date
    ) -> list[ChannelOutcome]:
        context = notice_context(account, stage, self.dc_offset_days, **self.context_extra)
        tasks = []
        skipped = []
        if account.phone:
            tasks.append(self._send_sms(account, stage, context, notice_date))
        else:
            skipped.append(ChannelOutcome(account.account_no, "sms", OUTCOME_SKIPPED, "no phone on record"))
        if account.email:
            tasks.append(self._send_email(account, stage, context, notice_date))
        else:
            skipped.append(ChannelOutcome(account.account_no, "email", OUTCOME_SKIPPED, "no email on record"))
        if not tasks:
            logger.info("notice.no_contact", account_no=account.account_no, stage=stage.code)
        return [*skipped, *await asyncio.gather(*tasks)]

    def _already_handled(self, account: NoticeAccount, stage: NoticeStage, channel: str, notice_date: date) -> bool:
        if self.ledger is None:
            return False
        if self.ledger.has_record(account.account_no, stage.code, channel, notice_date):
            logger.debug("notice.duplicate", account_no=account.account_no, stage=stage.code, channel=channel)
            return True
        return False

    async def _send_sms(
        self, account: NoticeAccount, stage: NoticeStage, context: dict[str, Any], notice_date: date
    ) -> ChannelOutcome:
        if self._already_handled(account, stage, "sms", notice_date):
            return ChannelOutcome(account.account_no, "sms", OUTCOME_DUPLICATE)
        payload = {"contact_no": account.phone, "message": render(stage.sms_template, context)}
        return await self._deliver(WorkItemKind.SMS, self.sms, payload, account, stage, notice_date)

    async def _send_email(
        self, account: NoticeAccount, stage: NoticeStage, context: dict[str, Any], notice_date: date
    ) -> ChannelOutcome:
        if self._already_handled(account, stage, "email", notice_date):
            return ChannelOutcome(account.account_no, "email", OUTCOME_DUPLICATE)

        payload: dict[str, Any] = {
            "to": account.email,
            "subject": render(stage.subject, context),
            "html": render(stage.email_template, context),
        }
        document = {
            "template": stage.document_template,
            "filename": f"{stage.code}-{account.account_no}-{notice_date.isoformat()}.pdf",
            "context": context,
        }

        if self.documents is not None:
            try:
                path = await self.documents.generate(document["template"], document["context"], document["filename"])
                payload["attachment_path"] = str(path)
            except Exception as e:
                if self.attachment_policy == "defer":
                    return self._defer(account, stage, notice_date, payload, document, str(e))
                logger.warning(
                    "notice.document_failed",
                    account_no=account.account_no,
                    stage=stage.code,
                    policy="degrade",
                    error=str(e),
                )

        return await self._deliver(WorkItemKind.EMAIL, self.email, payload, account, stage, notice_date)

    def _defer(
        self,
        account: NoticeAccount,
        stage: NoticeStage,
        notice_date: date,
        email: dict[str, Any],
        document: dict[str, Any],
        reason: str,
    ) -> ChannelOutcome:
        self.queue.enqueue(
            WorkItemKind.NOTICE,
            {
                "account_no": account.account_no,
                "stage": stage.code,
                "notice_date": notice_date.isoformat(),
                "email": email,
                "document": document,
            },
            delay_seconds=self.retry_delay_seconds,
            dedupe_key=_dedupe_key(account, stage, "email", notice_date),
        )
        if self.ledger is not None:
            self.ledger.record(account.account_no, stage.code, "email", notice_date, DEFERRED)
        logger.warning("notice.deferred", account_no=account.account_no, stage=stage.code, error=reason)
        return ChannelOutcome(account.account_no, "email", OUTCOME_DEFERRED, reason)

    async def _deliver(
        self,
        kind: WorkItemKind,
        adapter: GatewayAdapter,
        payload: dict[str, Any],
        account: NoticeAccount,
        stage: NoticeStage,
        notice_date: date,
    ) -> ChannelOutcome:
        channel = kind.value
        item = WorkItem(id=f"inline:{account.account_no}:{channel}", kind=kind, payload=payload)
        try:
            result = await adapter.send(item)
        except Exception as e:
            result = GatewayResult.transient(f"{type(e).__name__}: {e}")

        if result.success:
            if self.ledger is not None:
                self.ledger.record(account.account_no, stage.code, channel, notice_date, SENT)
            return ChannelOutcome(account.account_no, channel, OUTCOME_SENT)

        if result.permanent:
            logger.error(
                "notice.delivery_rejected",
                account_no=account.account_no,
                stage=stage.code,
                channel=channel,
                error=result.error,
            )
            return ChannelOutcome(account.account_no, channel, OUTCOME_FAILED, result.error)

        # the inline send is the first attempt
        if self.queue.default_max_attempts <= 1:
            logger.error(
                "notice.delivery_exhausted",
                account_no=account.account_no,
                stage=stage.code,
                channel=channel,
                error=result.error,
            )
            return ChannelOutcome(account.account_no, channel, OUTCOME_FAILED, result.error)

        self.queue.enqueue(
            kind,
            payload,
            delay_seconds=self.retry_delay_seconds,
            dedupe_key=_dedupe_key(account, stage, channel, notice_date),
            attempts_made=1,
        )
        if self.ledger is not None:
            self.ledger.record(account.account_no, stage.code, channel, notice_date, QUEUED)
        logger.warning(
            "notice.delivery_queued",
            account_no=account.account_no,
            stage=stage.code,
            channel=channel,
            error=result.error,
        )
        return ChannelOutcome(account.account_no, channel, OUTCOME_QUEUED, result.error)

    async def dispatch_deferred(self, item: WorkItem) -> GatewayResult:
        """Retry a deferred notice: render its document, then send the email.

        While attempts remain, a document failure is transient. On the last
        attempt the email goes out without the attachment.
        """
        email = dict(item.payload.get("email") or {})
        document = item.payload.get("document") or {}
        if not email.get("to"):
            return GatewayResult.rejected("deferred notice has no email payload")

        if self.documents is not None and document:
            try:
                path: Path = await self.documents.generate(
                    document["template"], document.get("context", {}), document["filename"]
                )
                email["attachment_path"] = str(path)
            except Exception as e:
                last_attempt = item.attempt_count + 1 >= item.max_attempts
                if not last_attempt:
                    return GatewayResult.from_error(TransientGatewayError(f"document still unavailable: {e}"))
                logger.warning(
                    "notice.deferred_degraded",
                    item_id=item.id,
                    account_no=item.payload.get("account_no"),
                    error=str(e),
                )

        result = await self.email.send(
            WorkItem(id=item.id, kind=WorkItemKind.EMAIL, payload=email, attempt_count=item.attempt_count)
        )
        if result.success and self.ledger is not None and item.payload.get("notice_date"):
            self.ledger.update_outcome(
                str(item.payload.get("account_no")),
                str(item.payload.get("stage")),
                "email",
                date.fromisoformat(item.payload["notice_date"]),
                SENT,
            )
        return result


class DeferredNoticeAdapter:
    """Gateway-shaped wrapper so deferred notices flow through DeliveryJob."""

    name = "notice"

    def __init__(self, pipeline: NotificationPipeline) -> None:
        self.pipeline = pipeline

    async def send(self, item: WorkItem) -> GatewayResult:
        return await self.pipeline.dispatch_deferred(item)


def _dedupe_key(account: NoticeAccount, stage: NoticeStage, channel: str, notice_date: date) -> str:
    return f"notice:{stage.code}:{account.account_no}:{channel}:{notice_date.isoformat()}"


__all__ = [
    "ChannelOutcome",
    "DeferredNoticeAdapter",
    "NotificationPipeline",
    "PipelineReport",
]
