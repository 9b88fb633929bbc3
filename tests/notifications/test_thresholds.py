"""Tests for notice stages and thresholds."""

from __future__ import annotations

from datetime import date

import pytest

from billing_worker.core.errors import ConfigError
from billing_worker.core.settings import NoticeSettings
from billing_worker.notifications.thresholds import URGENT_SMS, NoticeStage, NoticeThresholds


class TestFromSettings:
    def test_default_stages(self, thresholds):
        assert [(s.code, s.days_overdue) for s in thresholds] == [
            ("OVERDUE_DAY_1", 1),
            ("OVERDUE_DAY_3", 3),
            ("OVERDUE_DAY_7", 7),
            ("DISCONNECTION_NOTICE", 3),
        ]
        assert thresholds.get("OVERDUE_DAY_7").sms_template == URGENT_SMS
        assert thresholds.get("DISCONNECTION_NOTICE").document_template == "DCNOTICE_DESIGN"

    def test_reminder_on_overdue_day_not_duplicated(self):
        thresholds = NoticeThresholds.from_settings(NoticeSettings(overdue_day=3, reminder_days=[3, 5]))
        assert [s.code for s in thresholds] == ["OVERDUE_DAY_1", "OVERDUE_DAY_5", "DISCONNECTION_NOTICE"]

    def test_unknown_code(self, thresholds):
        with pytest.raises(ConfigError):
            thresholds.get("OVERDUE_DAY_99")


class TestValidation:
    def _stage(self, code, days):
        return NoticeStage(code, days, "s", "sms", "email", "doc")

    def test_duplicate_codes(self):
        with pytest.raises(ConfigError):
            NoticeThresholds([self._stage("A", 1), self._stage("A", 2)])

    def test_negative_days(self):
        with pytest.raises(ConfigError):
            NoticeThresholds([self._stage("A", -1)])


class TestDayArithmetic:
    def test_stages_for(self, thresholds):
        today = date(2024, 5, 8)
        assert [s.code for s in thresholds.stages_for(date(2024, 5, 7), today)] == ["OVERDUE_DAY_1"]
        assert [s.code for s in thresholds.stages_for(date(2024, 5, 1), today)] == ["OVERDUE_DAY_7"]
        assert thresholds.stages_for(date(2024, 5, 8), today) == []

    def test_due_date_for_crosses_month(self, thresholds):
        stage = thresholds.get("OVERDUE_DAY_7")
        assert thresholds.due_date_for(stage, date(2024, 3, 3)) == date(2024, 2, 25)

    def test_round_trip(self, thresholds):
        today = date(2024, 5, 8)
        for stage in thresholds:
            assert stage in thresholds.stages_for(thresholds.due_date_for(stage, today), today)
