"""Overdue notice stages and the thresholds that select them.

An account receives a stage's notice on the day it is exactly
``days_overdue`` days past its due date:

    ┌──────────────────────┬──────────────┬────────────────────┐
    │ stage                │ days overdue │ document           │
    ├──────────────────────┼──────────────┼────────────────────┤
    │ OVERDUE_DAY_1        │ overdue_day  │ OVERDUE_DESIGN     │
    │ OVERDUE_DAY_3        │ 3            │ OVERDUE_DESIGN     │
    │ OVERDUE_DAY_7        │ 7            │ OVERDUE_DESIGN     │
    │ DISCONNECTION_NOTICE │ dc notice    │ DCNOTICE_DESIGN    │
    └──────────────────────┴──────────────┴────────────────────┘

The day counts come from ``NoticeSettings``; nothing here is hard-wired to
a particular billing configuration.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, timedelta

from billing_worker.core.errors import ConfigError
from billing_worker.core.settings import NoticeSettings

OVERDUE_SMS = (
    "Dear {{Full_Name}}, your account ({{Account_No}}) is now {{Days_Overdue}} day(s) overdue. "
    "Balance: PHP {{Amount_Due}}. Due date was {{Due_Date}}. "
    "Please settle your payment to avoid service interruption. Thank you!"
)
URGENT_SMS = (
    "URGENT: Dear {{Full_Name}}, your account ({{Account_No}}) is now {{Days_Overdue}} days overdue. "
    "Balance: PHP {{Amount_Due}}. Disconnection is imminent. Please settle your payment immediately. Thank you!"
)
DISCONNECTION_SMS = (
    "FINAL NOTICE: Dear {{Full_Name}}, your account ({{Account_No}}) will be disconnected on {{DC_Date}}. "
    "Balance: PHP {{Amount_Due}}. Please settle immediately to avoid service interruption. Thank you!"
)

OVERDUE_EMAIL = (
    "<p>Dear {{Full_Name}},</p>"
    "<p>Your account <strong>{{Account_No}}</strong> is {{Days_Overdue}} day(s) past due. "
    "The outstanding balance is <strong>PHP {{Amount_Due}}</strong> (due {{Due_Date}}).</p>"
    "<p>Please settle your payment to avoid service interruption.</p>"
    "<p>{{Company_Name}} {{Support_Contact}}</p>"
)
DISCONNECTION_EMAIL = (
    "<p>Dear {{Full_Name}},</p>"
    "<p>This is a final notice for account <strong>{{Account_No}}</strong>. "
    "Unless the balance of <strong>PHP {{Amount_Due}}</strong> is settled, "
    "service will be disconnected on <strong>{{DC_Date}}</strong>.</p>"
    "<p>{{Company_Name}} {{Support_Contact}}</p>"
)


@dataclass(frozen=True)
class NoticeStage:
    code: str
    days_overdue: int
    subject: str
    sms_template: str
    email_template: str
    document_template: str


class NoticeThresholds:
    """The configured stages, with the one day-arithmetic used everywhere."""

    def __init__(self, stages: list[NoticeStage]) -> None:
        codes = [s.code for s in stages]
        if len(codes) != len(set(codes)):
            raise ConfigError(f"duplicate notice stage codes: {codes}")
        for stage in stages:
            if stage.days_overdue < 0:
                raise ConfigError(f"stage {stage.code} has negative days_overdue")
        self._stages = {s.code: s for s in stages}

    @classmethod
    def from_settings(cls, settings: NoticeSettings) -> NoticeThresholds:
        stages = [
            NoticeStage(
                code="OVERDUE_DAY_1",
                days_overdue=settings.overdue_day,
                subject="Overdue notice for account {{Account_No}}",
                sms_template=OVERDUE_SMS,
                email_template=OVERDUE_EMAIL,
                document_template="OVERDUE_DESIGN",
            )
        ]
        for days in settings.reminder_days:
            if days == settings.overdue_day:
                continue
            stages.append(
                NoticeStage(
                    code=f"OVERDUE_DAY_{days}",
                    days_overdue=days,
                    subject="Overdue notice for account {{Account_No}}",
                    sms_template=URGENT_SMS if days >= 7 else OVERDUE_SMS,
                    email_template=OVERDUE_EMAIL,
                    document_template="OVERDUE_DESIGN",
                )
            )
        stages.append(
            NoticeStage(
                code="DISCONNECTION_NOTICE",
                days_overdue=settings.disconnection_notice_day,
                subject="Disconnection notice for account {{Account_No}}",
                sms_template=DISCONNECTION_SMS,
                email_template=DISCONNECTION_EMAIL,
                document_template="DCNOTICE_DESIGN",
            )
        )
        return cls(stages)

    def __iter__(self) -> Iterator[NoticeStage]:
        return iter(self._stages.values())

    def __len__(self) -> int:
        return len(self._stages)

    def get(self, code: str) -> NoticeStage:
        try:
            return self._stages[code]
        except KeyError:
            raise ConfigError(f"unknown notice stage: {code}") from None

    def stages_for(self, due_date: date, today: date) -> list[NoticeStage]:
        """Stages whose notice falls on ``today`` for an invoice due ``due_date``."""
        days = (today - due_date).days
        return [s for s in self._stages.values() if s.days_overdue == days]

    def due_date_for(self, stage: NoticeStage, today: date) -> date:
        """The due date an invoice must have to receive ``stage`` today."""
        return self.days_overdue_cutoff(stage.days_overdue, today)

    @staticmethod
    def days_overdue_cutoff(days: int, today: date) -> date:
        """The due date that is ``days`` days overdue on ``today``."""
        if days < 0:
            raise ConfigError(f"days overdue must not be negative, got {days}")
        return today - timedelta(days=days)


__all__ = ["NoticeStage", "NoticeThresholds"]
