"""Fixtures for notification tests."""

from __future__ import annotations

from datetime import date

import pytest

from billing_worker.core.models import NoticeAccount
from billing_worker.core.settings import NoticeSettings
from billing_worker.notifications.ledger import NoticeLedger
from billing_worker.notifications.thresholds import NoticeThresholds


@pytest.fixture
def make_account():
    def _make(n: int = 1, **overrides) -> NoticeAccount:
        fields = {
            "account_no": f"A-{1000 + n}",
            "full_name": f"Subscriber {n}",
            "due_date": date(2024, 4, 30),
            "amount_due": 1299.0,
            "email": f"sub{n}@example.com",
            "phone": f"0917000{n:04d}",
            "plan": "Fiber-50 Unlimited",
        }
        fields.update(overrides)
        return NoticeAccount(**fields)

    return _make


@pytest.fixture
def thresholds() -> NoticeThresholds:
    return NoticeThresholds.from_settings(NoticeSettings())


@pytest.fixture
def ledger(conn, clock) -> NoticeLedger:
    return NoticeLedger(conn, clock=clock)
