"""Payment settlement through the Xendit invoice API.

A ``payment`` work item represents an online payment awaiting settlement.
Delivering it means: confirm with the payment gateway that the invoice was
actually paid, then post the amount to the billing backend.

Payload::

    {
        "reference_no": "REF-20240501-0001",
        "account_no": "A-1001",
        "amount": 1299.0,
        "invoice_id": "65f1...",             # Xendit invoice id, checked remotely
        "gateway_status": "PAID",            # status from the callback, if any
        "channel": "GCASH"                   # optional
    }

    gateway status                    result
    ──────────────────────────────    ─────────────────────────────
    PAID / COMPLETED / SETTLED /      post to billing backend, success
    PAYMENT_SUCCESS
    PENDING                           transient (checked again later)
    anything else (EXPIRED, FAILED)   permanent
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx

from billing_worker.core.errors import DataError, PermanentFailure, TransientGatewayError
from billing_worker.core.logging import get_logger
from billing_worker.core.models import WorkItem
from billing_worker.core.settings import PaymentSettings

from .base import GatewayResult, HttpGateway, require

logger = get_logger(__name__)

PAID_STATUSES = frozenset({"PAID", "COMPLETED", "SETTLED", "PAYMENT_SUCCESS"})
PENDING_STATUSES = frozenset({"PENDING", "QUEUED", "PROCESSING"})

SettledHook = Callable[[dict[str, Any], dict[str, Any]], Awaitable[None] | None]


class PaymentPoster(Protocol):
    """Applies a settled payment to the account; returns a posting summary."""

    async def post_payment(
        self, account_no: str, amount: float, reference_no: str, channel: str | None = None
    ) -> dict[str, Any]: ...


class PaymentGateway(HttpGateway):
    """Verify and post online payments."""

    name = "payment"

    def __init__(
        self,
        settings: PaymentSettings,
        poster: PaymentPoster,
        *,
        on_settled: SettledHook | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(timeout=timeout, client=client)
        self.settings = settings
        self.poster = poster
        self.on_settled = on_settled

    async def fetch_invoice_status(self, invoice_id: str) -> str:
        response = await self.request(
            "GET",
            f"{self.settings.base_url.rstrip('/')}/v2/invoices/{invoice_id}",
            auth=(self.settings.secret_key, ""),
        )
        try:
            return str(response.json().get("status", "")).upper()
        except (ValueError, AttributeError) as e:
            raise DataError("payment gateway returned an unreadable invoice", cause=e) from e

    async def deliver(self, item: WorkItem) -> GatewayResult:
        payload = item.payload
        reference_no, account_no, amount = require(payload, "reference_no", "account_no", "amount")
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            raise DataError(f"invalid payment amount: {amount!r}") from None
        if amount <= 0:
            raise DataError(f"payment amount must be positive, got {amount}")

        invoice_id = payload.get("invoice_id")
        if invoice_id:
            status = await self.fetch_invoice_status(str(invoice_id))
        elif payload.get("gateway_status"):
            status = str(payload["gateway_status"]).upper()
        else:
            raise DataError("payment has neither invoice_id nor gateway_status")

        if status in PENDING_STATUSES:
            raise TransientGatewayError(f"payment {reference_no} is still {status}")
        if status not in PAID_STATUSES:
            raise PermanentFailure(f"payment {reference_no} has status {status or 'UNKNOWN'}").with_context(
                account_no=account_no
            )

        posting = await self.poster.post_payment(account_no, amount, reference_no, payload.get("channel"))
        logger.info(
            "payment.posted",
            reference_no=reference_no,
            account_no=account_no,
            amount=amount,
            balance=posting.get("balance"),
        )

        # The payment is posted at this point; a retry would post it twice.
        if self.on_settled is not None:
            try:
                value = self.on_settled(dict(payload), posting)
                if inspect.isawaitable(value):
                    await value
            except Exception:
                logger.exception("payment.settled_hook_failed", reference_no=reference_no, account_no=account_no)

        return GatewayResult.ok(provider_ref=str(invoice_id or reference_no))


__all__ = ["PAID_STATUSES", "PaymentGateway", "PaymentPoster"]
