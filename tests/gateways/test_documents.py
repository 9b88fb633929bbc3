"""Tests for the HTTP document generator."""

from __future__ import annotations

import httpx
import pytest

from billing_worker.core.errors import ConfigError, DataError, TransientGatewayError
from billing_worker.core.settings import DocumentSettings
from billing_worker.gateways.documents import DocumentGenerator, HttpDocumentGenerator


@pytest.fixture
def settings(tmp_path) -> DocumentSettings:
    return DocumentSettings(url="https://render.example/pdf", output_dir=tmp_path / "notices")


class TestHttpDocumentGenerator:
    def test_requires_url(self, tmp_path):
        with pytest.raises(ConfigError):
            HttpDocumentGenerator(DocumentSettings(output_dir=tmp_path))

    def test_satisfies_protocol(self, settings):
        assert isinstance(HttpDocumentGenerator(settings), DocumentGenerator)

    @pytest.mark.asyncio
    async def test_writes_dated_file(self, settings, recorder_factory, clock):
        recorder = recorder_factory(default=httpx.Response(200, content=b"%PDF-1.4"))
        generator = HttpDocumentGenerator(settings, client=recorder.client(), clock=clock)

        path = await generator.generate("OVERDUE_DESIGN", {"Full_Name": "Juan"}, "OVERDUE_DAY_1-A-1.pdf")

        assert path == settings.output_dir / "2024" / "05" / "01" / "OVERDUE_DAY_1-A-1.pdf"
        assert path.read_bytes() == b"%PDF-1.4"
        assert recorder.json_body() == {"template": "OVERDUE_DESIGN", "data": {"Full_Name": "Juan"}}

    @pytest.mark.asyncio
    async def test_empty_body(self, settings, recorder_factory):
        recorder = recorder_factory(default=httpx.Response(200, content=b""))
        generator = HttpDocumentGenerator(settings, client=recorder.client())
        with pytest.raises(DataError):
            await generator.generate("OVERDUE_DESIGN", {}, "x.pdf")

    @pytest.mark.asyncio
    async def test_service_outage(self, settings, recorder_factory):
        recorder = recorder_factory(default=httpx.Response(500))
        generator = HttpDocumentGenerator(settings, client=recorder.client())
        with pytest.raises(TransientGatewayError):
            await generator.generate("OVERDUE_DESIGN", {}, "x.pdf")
