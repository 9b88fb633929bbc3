"""Tests for notice placeholder rendering."""

from __future__ import annotations

from datetime import date

from billing_worker.notifications.templates import notice_context, render


class TestRender:
    def test_substitutes_known_keys(self):
        assert render("Hi {{Full_Name}}, pay {{ Amount_Due }}", {"Full_Name": "Juan", "Amount_Due": "1.00"}) == "Hi Juan, pay 1.00"

    def test_unknown_and_none_left_in_place(self):
        assert render("{{Missing}} {{Empty}}", {"Empty": None}) == "{{Missing}} {{Empty}}"

    def test_no_recursive_expansion(self):
        assert render("{{A}}", {"A": "{{B}}", "B": "x"}) == "{{B}}"


class TestNoticeContext:
    def test_fields(self, make_account, thresholds):
        account = make_account(1, amount_due=12345.5, due_date=date(2024, 4, 30), address=None)
        context = notice_context(account, thresholds.get("DISCONNECTION_NOTICE"), dc_offset_days=4, Company_Name="FiberNet")

        assert context["Full_Name"] == "Subscriber 1"
        assert context["Amount_Due"] == "12,345.50"
        assert context["Due_Date"] == "April 30, 2024"
        assert context["DC_Date"] == "May 04, 2024"
        assert context["Days_Overdue"] == 3
        assert context["Stage"] == "DISCONNECTION_NOTICE"
        assert context["Address"] == ""
        assert context["Company_Name"] == "FiberNet"

    def test_rendered_sms(self, make_account, thresholds):
        stage = thresholds.get("OVERDUE_DAY_1")
        message = render(stage.sms_template, notice_context(make_account(2), stage))
        assert "Subscriber 2" in message
        assert "A-1002" in message
        assert "{{" not in message
