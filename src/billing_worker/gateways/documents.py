"""Notice documents (PDF) rendered by an external service.

The pipeline asks for a document before composing the email; the file is
attached to the message. Rendering is delegated over HTTP::

    POST {url}  {"template": "OVERDUE_DESIGN", "data": {...}}  → application/pdf

Files are written under ``output_dir/YYYY/MM/DD/``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import httpx

from billing_worker.core.errors import ConfigError, DataError
from billing_worker.core.logging import get_logger
from billing_worker.core.settings import DocumentSettings
from billing_worker.core.timestamps import Clock, utc_now

from .base import HttpService

logger = get_logger(__name__)


@runtime_checkable
class DocumentGenerator(Protocol):
    """Renders a document and returns the local file path."""

    async def generate(self, template: str, context: dict[str, Any], filename: str) -> Path: ...


class HttpDocumentGenerator(HttpService):
    name = "documents"

    def __init__(
        self,
        settings: DocumentSettings,
        *,
        client: httpx.AsyncClient | None = None,
        clock: Clock = utc_now,
    ) -> None:
        super().__init__(timeout=settings.timeout_seconds, client=client)
        if not settings.url:
            raise ConfigError("documents.url is not configured")
        self.settings = settings
        self._clock = clock

    async def generate(self, template: str, context: dict[str, Any], filename: str) -> Path:
        response = await self.request("POST", self.settings.url, json={"template": template, "data": context})
        if not response.content:
            raise DataError(f"document service returned an empty body for {filename}")

        folder = self.settings.output_dir / self._clock().strftime("%Y/%m/%d")
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / filename
        path.write_bytes(response.content)
        logger.info("documents.generated", template=template, path=str(path), size=len(response.content))
        return path


__all__ = ["DocumentGenerator", "HttpDocumentGenerator"]
