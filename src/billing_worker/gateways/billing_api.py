"""Client for the billing backend, the system of record for accounts.

Invoice generation, payment distribution and account balances are owned by
the billing backend; the worker only reads the views it needs and posts
settled payments back.

    GET  /api/worker/overdue-accounts?due_date=YYYY-MM-DD   → [{account_no, ...}]
    GET  /api/worker/radius-subjects                         → [{account_no, username}]
    GET  /api/worker/disconnect-candidates?due_on_or_before= → [{account_no, username, balance, status}]
    POST /api/worker/payments                                → {balance, ...}
    POST /api/worker/billings/generate                       → {generated, ...}
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

import httpx

from billing_worker.core.errors import ConfigError, DataError
from billing_worker.core.logging import get_logger
from billing_worker.core.models import NoticeAccount
from billing_worker.core.settings import BillingApiSettings

from .base import HttpService

logger = get_logger(__name__)


@dataclass(frozen=True)
class DisconnectCandidate:
    account_no: str
    username: str | None
    balance: float
    status: str = ""


class BillingApiClient(HttpService):
    """Read overdue accounts and RADIUS subjects; post payments; start invoice runs."""

    name = "billing_api"

    def __init__(
        self,
        settings: BillingApiSettings,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(timeout=timeout, client=client)
        if not settings.base_url:
            raise ConfigError("billing_api.base_url is not configured")
        self.settings = settings
        self.base_url = settings.base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.settings.api_token:
            headers["Authorization"] = f"Bearer {self.settings.api_token}"
        return headers

    async def overdue_accounts(self, due_date: date) -> list[NoticeAccount]:
        """Accounts with an unpaid invoice due on ``due_date``."""
        response = await self.request(
            "GET",
            f"{self.base_url}/api/worker/overdue-accounts",
            params={"due_date": due_date.isoformat()},
            headers=self._headers(),
        )
        accounts = []
        for row in _data(response):
            try:
                accounts.append(_to_account(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("billing_api.bad_account_row", row=row, error=str(e))
        return accounts

    async def radius_subjects(self) -> dict[str, str]:
        """Map of account number to RADIUS username for active accounts."""
        response = await self.request("GET", f"{self.base_url}/api/worker/radius-subjects", headers=self._headers())
        return {
            str(row["account_no"]): str(row["username"])
            for row in _data(response)
            if row.get("account_no") and row.get("username")
        }

    async def post_payment(self, account_no: str, amount: float, reference_no: str, channel: str | None = None) -> dict[str, Any]:
        """Apply a settled payment; returns the backend's posting summary."""
        response = await self.request(
            "POST",
            f"{self.base_url}/api/worker/payments",
            json={
                "account_no": account_no,
                "amount": amount,
                "reference_no": reference_no,
                "channel": channel,
            },
            headers=self._headers(),
        )
        body = response.json()
        if not isinstance(body, dict):
            raise DataError("billing backend returned a non-object payment summary")
        return body.get("data", body)

    async def disconnect_candidates(self, due_on_or_before: date) -> list[DisconnectCandidate]:
        """Accounts with an unpaid or partial invoice due on or before the date."""
        response = await self.request(
            "GET",
            f"{self.base_url}/api/worker/disconnect-candidates",
            params={"due_on_or_before": due_on_or_before.isoformat()},
            headers=self._headers(),
        )
        candidates = []
        for row in _data(response):
            try:
                candidates.append(
                    DisconnectCandidate(
                        account_no=str(row["account_no"]),
                        username=row.get("username") or None,
                        balance=float(row.get("balance") or row.get("account_balance") or 0),
                        status=str(row.get("status") or ""),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("billing_api.bad_candidate_row", row=row, error=str(e))
        return candidates

    async def generate_daily_billings(self, billing_date: date) -> dict[str, Any]:
        """Ask the backend to generate the invoices and SOAs due on ``billing_date``."""
        response = await self.request(
            "POST",
            f"{self.base_url}/api/worker/billings/generate",
            json={"billing_date": billing_date.isoformat()},
            headers=self._headers(),
        )
        body = response.json()
        if not isinstance(body, dict):
            raise DataError("billing backend returned a non-object generation summary")
        summary = body.get("data", body)
        logger.info("billing_api.billings_generated", billing_date=billing_date.isoformat(), summary=summary)
        return summary


def _data(response: httpx.Response) -> list[dict[str, Any]]:
    try:
        body = response.json()
    except ValueError as e:
        raise DataError("billing backend returned invalid JSON", cause=e) from e
    rows = body.get("data", []) if isinstance(body, dict) else body
    if not isinstance(rows, list):
        raise DataError("billing backend returned an unexpected shape")
    return rows


def _to_account(row: dict[str, Any]) -> NoticeAccount:
    return NoticeAccount(
        account_no=str(row["account_no"]),
        full_name=str(row.get("full_name") or ""),
        due_date=date.fromisoformat(str(row["due_date"])[:10]),
        amount_due=float(row.get("amount_due") or row.get("account_balance") or 0),
        email=row.get("email") or row.get("email_address"),
        phone=row.get("phone") or row.get("contact_number_primary"),
        invoice_id=str(row["invoice_id"]) if row.get("invoice_id") else None,
        plan=row.get("plan") or row.get("desired_plan"),
        address=row.get("address"),
    )


__all__ = ["BillingApiClient", "DisconnectCandidate"]
