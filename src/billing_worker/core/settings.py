"""Worker settings.

Configuration is read once at startup from ``BILLING_WORKER_*`` environment
variables (nested fields use ``__``, e.g. ``BILLING_WORKER_SMS__API_CODE``)
and an optional ``.env`` file.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    Cadences, batch sizes, lock TTLs and retry limits are operational knobs,
    not code, so every one of them lives here with the production default.

    - **Pydantic validation:** Type-checked at startup, not mid-run
    - **Environment-driven:** Reads from env vars and .env files
    - **Sensible defaults:** Works out of the box for development

Examples:
    >>> from billing_worker.core.settings import WorkerSettings
    >>> settings = WorkerSettings(db_path=":memory:")
    >>> settings.batches.email
    50

Tags:
    settings, configuration, pydantic, environment, billing-worker
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ── Gateways ─────────────────────────────────────────────────────────────


class SmsSettings(BaseModel):
    """Itexmo broadcast API credentials."""

    url: str = "https://api.itexmo.com/api/broadcast"
    email: str = ""
    password: str = ""
    api_code: str = ""
    sender_id: str = ""


class EmailSettings(BaseModel):
    """Resend API credentials and default sender."""

    url: str = "https://api.resend.com/emails"
    api_key: str = ""
    from_address: str = "billing@example.com"
    from_name: str = "Billing"
    reply_to: str | None = None


class PaymentSettings(BaseModel):
    """Xendit invoice API credentials."""

    base_url: str = "https://api.xendit.co"
    secret_key: str = ""


class RadiusEndpoint(BaseModel):
    """One MikroTik User-Manager REST endpoint."""

    name: str = "default"
    base_url: str
    username: str
    password: str
    verify_tls: bool = False


class RadiusSettings(BaseModel):
    """RADIUS REST endpoints and group names used for access control."""

    endpoints: list[RadiusEndpoint] = Field(default_factory=list)
    disconnected_group: str = "Disconnected"
    request_timeout_seconds: float = 10.0
    max_tries: int = 3
    retry_delay_seconds: float = 2.0


class DocumentSettings(BaseModel):
    """PDF rendering service."""

    url: str | None = None
    output_dir: Path = Path("var/notices")
    timeout_seconds: float = 60.0


class BillingApiSettings(BaseModel):
    """Billing backend acting as the system of record."""

    base_url: str | None = None
    api_token: str = ""


# ── Jobs ─────────────────────────────────────────────────────────────────


class BatchSettings(BaseModel):
    """Claim limits per delivery job."""

    email: int = 50
    email_retry: int = 20
    sms: int = 50
    payment: int = 20
    payment_retry: int = 10
    radius: int = 20
    notice: int = 20


class NoticeSettings(BaseModel):
    """Overdue notice thresholds (days past due) and delivery policy."""

    overdue_day: int = 1
    reminder_days: list[int] = Field(default_factory=lambda: [3, 7])
    disconnection_notice_day: int = 3
    disconnection_offset_days: int = 4
    include_attachment: bool = True
    attachment_policy: Literal["degrade", "defer"] = "degrade"
    company_name: str = "Your ISP"
    support_contact: str = ""


class WorkerSettings(BaseSettings):
    """Settings for a billing worker process.

    Fields
    ──────
    db_path          : SQLite file holding worker tables
    instance_id      : Lock holder identity (hostname-pid if unset)
    timezone         : Zone in which daily cadences are evaluated
    tick_interval    : Seconds between dispatcher ticks
    retry_delay_seconds / default_max_attempts : Retry Queue policy
    claim_timeout_seconds : In-flight claims older than this are reaped
    """

    model_config = SettingsConfigDict(
        env_prefix="BILLING_WORKER_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Runtime ──────────────────────────────────────────────────
    db_path: str = "var/billing_worker.db"
    instance_id: str | None = None
    timezone: str = "Asia/Manila"
    tick_interval: float = 10.0
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Coordination ─────────────────────────────────────────────
    default_lock_ttl_seconds: int = 3600
    payment_lock_ttl_seconds: int = 300
    retry_delay_seconds: int = 300
    default_max_attempts: int = 3
    claim_timeout_seconds: int = 600
    retention_days: int = 30
    max_concurrency: int = 10
    gateway_timeout_seconds: float = 30.0

    batches: BatchSettings = Field(default_factory=BatchSettings)
    notices: NoticeSettings = Field(default_factory=NoticeSettings)

    # ── External systems ─────────────────────────────────────────
    sms: SmsSettings = Field(default_factory=SmsSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)
    payment: PaymentSettings = Field(default_factory=PaymentSettings)
    radius: RadiusSettings = Field(default_factory=RadiusSettings)
    documents: DocumentSettings = Field(default_factory=DocumentSettings)
    billing_api: BillingApiSettings = Field(default_factory=BillingApiSettings)

    # Optional webhook receiving sync state-change events
    event_webhook_url: str | None = None

    @field_validator("default_max_attempts")
    @classmethod
    def _positive_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("default_max_attempts must be >= 1")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


@lru_cache(maxsize=1)
def get_settings() -> WorkerSettings:
    """Process-wide settings instance."""
    return WorkerSettings()


__all__ = [
    "BatchSettings",
    "BillingApiSettings",
    "DocumentSettings",
    "EmailSettings",
    "NoticeSettings",
    "PaymentSettings",
    "RadiusEndpoint",
    "RadiusSettings",
    "SmsSettings",
    "WorkerSettings",
    "get_settings",
]
