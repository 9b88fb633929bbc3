"""``{{Key}}`` placeholder rendering for notice SMS, email and documents."""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Any

from billing_worker.core.models import NoticeAccount

from .thresholds import NoticeStage

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")

DATE_FORMAT = "%B %d, %Y"


def render(template: str, context: dict[str, Any]) -> str:
    """Substitute ``{{Key}}`` placeholders; unknown keys are left in place."""

    def _sub(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in context or context[key] is None:
            return match.group(0)
        return str(context[key])

    return _PLACEHOLDER.sub(_sub, template)


def notice_context(
    account: NoticeAccount,
    stage: NoticeStage,
    dc_offset_days: int = 4,
    **extra: Any,
) -> dict[str, Any]:
    """Placeholder values for one account at one stage.

    The disconnection date is ``dc_offset_days`` after the due date.
    """
    dc_date = account.due_date + timedelta(days=dc_offset_days)
    context: dict[str, Any] = {
        "Full_Name": account.full_name,
        "Account_No": account.account_no,
        "Amount_Due": f"{account.amount_due:,.2f}",
        "Due_Date": account.due_date.strftime(DATE_FORMAT),
        "DC_Date": dc_date.strftime(DATE_FORMAT),
        "Days_Overdue": stage.days_overdue,
        "Stage": stage.code,
        "Plan": account.plan or "N/A",
        "Address": account.address or "",
        "Contact_No": account.phone or "N/A",
        "Email": account.email or "",
        "Invoice_Id": account.invoice_id or "",
    }
    context.update(extra)
    return context


__all__ = ["DATE_FORMAT", "notice_context", "render"]
