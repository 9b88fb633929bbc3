"""Tests for the SMS adapter."""

from __future__ import annotations

import httpx
import pytest

from billing_worker.core.errors import DataError
from billing_worker.core.settings import SmsSettings
from billing_worker.gateways.sms import SmsGateway, normalize_mobile_number


@pytest.fixture
def settings() -> SmsSettings:
    return SmsSettings(url="https://sms.example/api/broadcast", email="ops@isp.ph", password="pw", api_code="PR-1", sender_id="ISP")


class TestNormalizeMobileNumber:
    @pytest.mark.parametrize(
        "raw",
        ["09171234567", "9171234567", "639171234567", "+63 917 123 4567", "0917-123-4567"],
    )
    def test_accepted_forms(self, raw):
        assert normalize_mobile_number(raw) == "09171234567"

    @pytest.mark.parametrize("raw", ["", "12345", "08171234567", "6381712345678", None])
    def test_rejected(self, raw):
        with pytest.raises(DataError):
            normalize_mobile_number(raw)


class TestSmsGateway:
    @pytest.mark.asyncio
    async def test_sends_normalised_number(self, settings, recorder_factory, make_item):
        recorder = recorder_factory(default=httpx.Response(200, json={"ReferenceId": "R-99"}))
        gateway = SmsGateway(settings, client=recorder.client())

        result = await gateway.send(make_item("sms", {"contact_no": "+63 917 123 4567", "message": "Due today"}))

        assert result.success is True
        assert result.provider_ref == "R-99"
        body = recorder.json_body()
        assert body["Recipients"] == ["09171234567"]
        assert body["Message"] == "Due today"
        assert body["ApiCode"] == "PR-1"
        assert str(recorder.requests[0].url) == "https://sms.example/api/broadcast"

    @pytest.mark.asyncio
    async def test_invalid_number_is_rejected_without_request(self, settings, recorder_factory, make_item):
        recorder = recorder_factory()
        gateway = SmsGateway(settings, client=recorder.client())

        result = await gateway.send(make_item("sms", {"contact_no": "12345", "message": "x"}))

        assert result.permanent is True
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_missing_message(self, settings, recorder_factory, make_item):
        gateway = SmsGateway(settings, client=recorder_factory().client())
        result = await gateway.send(make_item("sms", {"contact_no": "09171234567"}))
        assert result.permanent is True
        assert "message" in result.error

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, settings, recorder_factory, make_item):
        recorder = recorder_factory(default=httpx.Response(503, text="maintenance"))
        gateway = SmsGateway(settings, client=recorder.client())
        result = await gateway.send(make_item("sms", {"contact_no": "09171234567", "message": "x"}))
        assert result.success is False
        assert result.permanent is False

    @pytest.mark.asyncio
    async def test_missing_credentials_rejected(self, recorder_factory, make_item):
        gateway = SmsGateway(SmsSettings(), client=recorder_factory().client())
        result = await gateway.send(make_item("sms", {"contact_no": "09171234567", "message": "x"}))
        assert result.permanent is True
        assert "credentials" in result.error
