"""Default job catalog and the wiring that builds it from settings.

    job                       cadence          body
    ─────────────────────     ──────────────   ───────────────────────────────
    process-email-queue       every minute     DeliveryJob(email, fresh)
    retry-failed-emails       every 5 minutes  DeliveryJob(email, retried)
    process-sms-queue         every minute     DeliveryJob(sms)
    process-payments          every 2 minutes  DeliveryJob(payment, fresh)
    retry-failed-payments     daily 14:00      DeliveryJob(payment, retried)
    process-radius-actions    every 2 minutes  DeliveryJob(radius)
    sync-radius-status        every 2 minutes  SyncJob(RadiusSessionSource)
    generate-billing          daily 01:00      FunctionJob(billing backend invoice run)
    auto-disconnect           daily 02:00      AutoDisconnectJob
    send-overdue-notices      daily 10:00      OverdueNoticeJob
    process-notice-retries    every 5 minutes  NoticeRetryJob
    cleanup-locks             hourly           LockSweepJob
    reap-stale-claims         every 5 minutes  ReaperJob
    prune-history             daily 03:00      PruneJob

Jobs whose external system is not configured (no billing backend, no
RADIUS endpoint) are registered disabled so they still show up in
``billing-worker jobs``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from billing_worker.core.errors import ConfigError
from billing_worker.core.events import EventSink, FanOutEventSink, LoggingEventSink, WebhookEventSink
from billing_worker.core.logging import get_logger
from billing_worker.core.models import WorkItemKind
from billing_worker.core.protocols import Connection
from billing_worker.core.settings import WorkerSettings
from billing_worker.core.timestamps import Clock, utc_now
from billing_worker.execution.retry import ConstantBackoff
from billing_worker.execution.retry_queue import RetryQueue
from billing_worker.gateways.billing_api import BillingApiClient
from billing_worker.gateways.documents import DocumentGenerator, HttpDocumentGenerator
from billing_worker.gateways.email import EmailGateway
from billing_worker.gateways.payment import PaymentGateway, SettledHook
from billing_worker.gateways.radius import RadiusControlGateway, RadiusRestClient, build_clients
from billing_worker.gateways.registry import GatewayRegistry
from billing_worker.gateways.sms import SmsGateway
from billing_worker.notifications.ledger import NoticeLedger
from billing_worker.notifications.pipeline import NotificationPipeline
from billing_worker.notifications.thresholds import NoticeThresholds
from billing_worker.scheduling.cadence import Cadence
from billing_worker.scheduling.dispatcher import JobSpec
from billing_worker.scheduling.job_runs import JobRunRepository
from billing_worker.scheduling.lock_manager import LockManager
from billing_worker.sync.engine import SyncEngine
from billing_worker.sync.radius import BillingApiSubjectDirectory, RadiusSessionSource
from billing_worker.sync.store import SyncRecordStore

from .billing import AutoDisconnectJob, generate_billing_job
from .delivery import DeliveryJob
from .maintenance import LockSweepJob, PruneJob, ReaperJob
from .notices import NoticeRetryJob, OverdueNoticeJob
from .sync import SyncJob

logger = get_logger(__name__)


@dataclass
class WorkerComponents:
    """Everything the default jobs need, built once per process."""

    settings: WorkerSettings
    lock_manager: LockManager
    queue: RetryQueue
    runs: JobRunRepository
    gateways: GatewayRegistry
    thresholds: NoticeThresholds
    pipeline: NotificationPipeline
    billing_api: BillingApiClient | None = None
    radius_clients: list[RadiusRestClient] = field(default_factory=list)
    sync_engine: SyncEngine | None = None
    radius_source: RadiusSessionSource | None = None


def reconnect_on_settled(queue: RetryQueue) -> SettledHook:
    """Payment hook: queue a RADIUS reconnect once the balance is cleared.

    The posting summary carries the account's remaining ``balance``, its
    RADIUS ``username`` and ``plan``; the plan's first word is the group.
    """

    def _hook(payment: dict[str, Any], posting: dict[str, Any]) -> None:
        try:
            balance = float(posting.get("balance", 1))
        except (TypeError, ValueError):
            return
        username = posting.get("username")
        plan = str(posting.get("plan") or "").split(" ")[0]
        if balance > 0 or not username or not plan:
            return
        queue.enqueue(
            WorkItemKind.RADIUS,
            {"username": username, "action": "reconnect", "group": plan, "account_no": payment.get("account_no")},
            dedupe_key=f"reconnect:{username}",
        )
        logger.info("payment.reconnect_queued", account_no=payment.get("account_no"), username=username)

    return _hook


def build_components(
    conn: Connection,
    settings: WorkerSettings,
    *,
    clock: Clock = utc_now,
    gateways: GatewayRegistry | None = None,
    documents: DocumentGenerator | None = None,
    sink: EventSink | None = None,
) -> WorkerComponents:
    """Wire stores, gateways, pipeline and sync from settings.

    ``gateways``, ``documents`` and ``sink`` replace the configured ones
    (tests pass fakes).
    """
    lock_manager = LockManager(conn, instance_id=settings.instance_id, clock=clock)
    queue = RetryQueue(
        conn,
        backoff=ConstantBackoff(delay=settings.retry_delay_seconds),
        default_max_attempts=settings.default_max_attempts,
        claim_timeout_seconds=settings.claim_timeout_seconds,
        clock=clock,
    )
    runs = JobRunRepository(conn, clock=clock)
    timeout = settings.gateway_timeout_seconds

    billing_api = BillingApiClient(settings.billing_api, timeout=timeout) if settings.billing_api.base_url else None
    radius_clients = build_clients(settings.radius)

    if gateways is None:
        gateways = GatewayRegistry()
        gateways.register(WorkItemKind.SMS, SmsGateway(settings.sms, timeout=timeout))
        gateways.register(WorkItemKind.EMAIL, EmailGateway(settings.email, timeout=timeout))
        if billing_api is not None:
            gateways.register(
                WorkItemKind.PAYMENT,
                PaymentGateway(settings.payment, billing_api, on_settled=reconnect_on_settled(queue), timeout=timeout),
            )
        if radius_clients:
            gateways.register(
                WorkItemKind.RADIUS, RadiusControlGateway(radius_clients, settings.radius.disconnected_group)
            )

    if documents is None and settings.documents.url and settings.notices.include_attachment:
        documents = HttpDocumentGenerator(settings.documents, clock=clock)

    if WorkItemKind.SMS not in gateways or WorkItemKind.EMAIL not in gateways:
        raise ConfigError("sms and email gateways are required")

    notices = settings.notices
    pipeline = NotificationPipeline(
        gateways.get(WorkItemKind.SMS),
        gateways.get(WorkItemKind.EMAIL),
        queue,
        documents=documents,
        ledger=NoticeLedger(conn, clock=clock),
        attachment_policy=notices.attachment_policy,
        max_concurrency=settings.max_concurrency,
        dc_offset_days=notices.disconnection_offset_days,
        retry_delay_seconds=settings.retry_delay_seconds,
        timezone=settings.timezone,
        context_extra={"Company_Name": notices.company_name, "Support_Contact": notices.support_contact},
        clock=clock,
    )

    if sink is None:
        sinks: list[EventSink] = [LoggingEventSink()]
        if settings.event_webhook_url:
            sinks.append(WebhookEventSink(settings.event_webhook_url))
        sink = sinks[0] if len(sinks) == 1 else FanOutEventSink(*sinks)

    radius_source = None
    sync_engine = None
    if radius_clients and billing_api is not None:
        radius_source = RadiusSessionSource(radius_clients, BillingApiSubjectDirectory(billing_api))
        sync_engine = SyncEngine(radius_source, SyncRecordStore(conn), sink, clock=clock)

    return WorkerComponents(
        settings=settings,
        lock_manager=lock_manager,
        queue=queue,
        runs=runs,
        gateways=gateways,
        thresholds=NoticeThresholds.from_settings(notices),
        pipeline=pipeline,
        billing_api=billing_api,
        radius_clients=radius_clients,
        sync_engine=sync_engine,
        radius_source=radius_source,
    )


def build_default_jobs(components: WorkerComponents) -> list[JobSpec]:
    """The standard job set, cadences evaluated in ``settings.timezone``."""
    s = components.settings
    tz = s.timezone
    ttl = s.default_lock_ttl_seconds
    queue = components.queue
    gateways = components.gateways
    batches = s.batches

    def delivery(name: str, kind: WorkItemKind, limit: int, cadence: Cadence, **kw: Any) -> JobSpec:
        if kind in gateways:
            job: Any = DeliveryJob(name, queue, gateways.get(kind), kind, limit, max_concurrency=s.max_concurrency, **kw)
            enabled = True
        else:
            job = _Unconfigured(name, f"no {kind.value} gateway configured")
            enabled = False
        return JobSpec(
            name,
            job,
            cadence,
            lock_ttl_seconds=s.payment_lock_ttl_seconds if kind == WorkItemKind.PAYMENT else ttl,
            enabled=enabled,
            description=f"Deliver queued {kind.value} items",
        )

    specs = [
        delivery("process-email-queue", WorkItemKind.EMAIL, batches.email, Cadence.every_minute(tz), retried=False),
        delivery("retry-failed-emails", WorkItemKind.EMAIL, batches.email_retry, Cadence.every_minutes(5, tz), retried=True),
        delivery("process-sms-queue", WorkItemKind.SMS, batches.sms, Cadence.every_minute(tz)),
        delivery("process-payments", WorkItemKind.PAYMENT, batches.payment, Cadence.every_minutes(2, tz), retried=False),
        delivery(
            "retry-failed-payments",
            WorkItemKind.PAYMENT,
            batches.payment_retry,
            Cadence.daily_at("14:00", tz),
            retried=True,
        ),
        delivery("process-radius-actions", WorkItemKind.RADIUS, batches.radius, Cadence.every_minutes(2, tz)),
    ]

    if components.sync_engine is not None and components.radius_source is not None:
        sync_job: Any = SyncJob("sync-radius-status", components.sync_engine, components.radius_source.subjects)
        sync_enabled = True
    else:
        sync_job = _Unconfigured("sync-radius-status", "radius endpoints or billing backend not configured")
        sync_enabled = False
    specs.append(
        JobSpec(
            "sync-radius-status",
            sync_job,
            Cadence.every_minutes(2, tz),
            lock_ttl_seconds=ttl,
            enabled=sync_enabled,
            description="Record RADIUS session status changes",
        )
    )

    billing_api = components.billing_api
    today = components.pipeline.today
    if billing_api is not None:
        generate_job: Any = generate_billing_job(billing_api, today)
    else:
        generate_job = _Unconfigured("generate-billing", "billing backend not configured")
    if billing_api is not None and WorkItemKind.RADIUS in gateways:
        disconnect_job: Any = AutoDisconnectJob(
            queue,
            billing_api,
            today,
            offset_days=s.notices.disconnection_offset_days,
            disconnected_group=s.radius.disconnected_group,
        )
    else:
        disconnect_job = _Unconfigured("auto-disconnect", "billing backend or radius endpoints not configured")
    specs += [
        JobSpec(
            "generate-billing",
            generate_job,
            Cadence.daily_at("01:00", tz),
            lock_ttl_seconds=ttl,
            enabled=billing_api is not None,
            description="Daily invoice generation in the billing backend",
        ),
        JobSpec(
            "auto-disconnect",
            disconnect_job,
            Cadence.daily_at("02:00", tz),
            lock_ttl_seconds=ttl,
            enabled=isinstance(disconnect_job, AutoDisconnectJob),
            description="Queue RADIUS disconnects for accounts past the disconnection day",
        ),
    ]

    if components.billing_api is not None:
        notice_job: Any = OverdueNoticeJob(components.pipeline, components.thresholds, components.billing_api)
        notice_enabled = True
    else:
        notice_job = _Unconfigured("send-overdue-notices", "billing backend not configured")
        notice_enabled = False
    specs += [
        JobSpec(
            "send-overdue-notices",
            notice_job,
            Cadence.daily_at("10:00", tz),
            lock_ttl_seconds=ttl,
            enabled=notice_enabled,
            description="Overdue and disconnection notices",
        ),
        JobSpec(
            "process-notice-retries",
            NoticeRetryJob(queue, components.pipeline, batches.notice, s.max_concurrency),
            Cadence.every_minutes(5, tz),
            lock_ttl_seconds=ttl,
            description="Deferred notices awaiting their document",
        ),
        JobSpec(
            "cleanup-locks",
            LockSweepJob(components.lock_manager),
            Cadence.hourly(tz),
            lock_ttl_seconds=ttl,
            description="Delete expired lock rows",
        ),
        JobSpec(
            "reap-stale-claims",
            ReaperJob(queue, s.claim_timeout_seconds),
            Cadence.every_minutes(5, tz),
            lock_ttl_seconds=ttl,
            description="Requeue items abandoned in flight",
        ),
        JobSpec(
            "prune-history",
            PruneJob(queue, components.runs, s.retention_days),
            Cadence.daily_at("03:00", tz),
            lock_ttl_seconds=ttl,
            description="Drop old succeeded items and job runs",
        ),
    ]
    return specs


class _Unconfigured:
    """Placeholder body for a job whose external system is missing."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason

    async def run(self, ctx: Any) -> Any:
        raise ConfigError(f"{self.name} cannot run: {self.reason}")


__all__ = ["WorkerComponents", "build_components", "build_default_jobs", "reconnect_on_settled"]
