"""Email delivery through the Resend API.

Payload::

    {
        "to": "juan@example.com" | ["a@x", "b@y"],
        "subject": "...",
        "html": "...",
        "cc": "a@x, b@y",                 # optional, list or comma separated
        "bcc": [...],                     # optional
        "reply_to": "support@isp.ph",     # optional
        "sender_name": "...",             # optional, overrides the default
        "email_sender": "...",            # optional, overrides the default
        "attachment_path": "/var/notices/A-1001.pdf"   # optional
    }

A missing attachment file is logged and the message goes out without it.
"""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Any

import httpx

from billing_worker.core.errors import ConfigError
from billing_worker.core.logging import get_logger
from billing_worker.core.models import WorkItem
from billing_worker.core.settings import EmailSettings

from .base import GatewayResult, HttpGateway, require

logger = get_logger(__name__)


def parse_addresses(value: Any) -> list[str]:
    """Accept a list or a comma separated string; drop blanks."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [v.strip() for v in value if v and str(v).strip()]


class EmailGateway(HttpGateway):
    """Send one email per work item."""

    name = "email"

    def __init__(
        self,
        settings: EmailSettings,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(timeout=timeout, client=client)
        self.settings = settings

    def build_message(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Translate a work item payload into the Resend request body."""
        to, subject, html = require(payload, "to", "subject", "html")
        sender = payload.get("email_sender") or self.settings.from_address
        sender_name = payload.get("sender_name") or self.settings.from_name

        message: dict[str, Any] = {
            "from": f"{sender_name} <{sender}>",
            "to": parse_addresses(to),
            "subject": subject,
            "html": html,
        }
        reply_to = payload.get("reply_to") or self.settings.reply_to
        if reply_to:
            message["reply_to"] = reply_to
        for field in ("cc", "bcc"):
            addresses = parse_addresses(payload.get(field))
            if addresses:
                message[field] = addresses

        attachment = payload.get("attachment_path")
        if attachment:
            path = Path(attachment)
            if path.is_file():
                message["attachments"] = [
                    {"filename": path.name, "content": base64.b64encode(path.read_bytes()).decode("ascii")}
                ]
            else:
                logger.warning("email.attachment_missing", path=str(path))
        return message

    async def deliver(self, item: WorkItem) -> GatewayResult:
        message = self.build_message(item.payload)
        if not self.settings.api_key:
            raise ConfigError("Email gateway API key is not configured").with_context(gateway=self.name)

        response = await self.request(
            "POST",
            self.settings.url,
            json=message,
            headers={"Authorization": f"Bearer {self.settings.api_key}"},
        )
        try:
            ref = response.json().get("id")
        except (ValueError, AttributeError):
            ref = None
        return GatewayResult.ok(provider_ref=ref)


__all__ = ["EmailGateway", "parse_addresses"]
