"""SMS delivery through the Itexmo broadcast API.

Payload::

    {"contact_no": "09171234567", "message": "Your bill is overdue ..."}
"""

from __future__ import annotations

import re

import httpx

from billing_worker.core.errors import ConfigError, DataError
from billing_worker.core.models import WorkItem
from billing_worker.core.settings import SmsSettings

from .base import GatewayResult, HttpGateway, require

_NON_DIGITS = re.compile(r"[^\d]")


def normalize_mobile_number(raw: str) -> str:
    """Normalise a Philippine mobile number to ``09XXXXXXXXX``.

    Accepts ``9XXXXXXXXX``, ``09XXXXXXXXX``, ``639XXXXXXXXX`` and
    ``+63 9XX XXX XXXX``.

    Raises:
        DataError: If the result is not an 11-digit ``09`` number
    """
    digits = _NON_DIGITS.sub("", str(raw or ""))
    if len(digits) == 10 and digits.startswith("9"):
        digits = "0" + digits
    elif len(digits) == 12 and digits.startswith("639"):
        digits = "0" + digits[2:]
    if len(digits) != 11 or not digits.startswith("09"):
        raise DataError(f"invalid mobile number: {raw!r}")
    return digits


class SmsGateway(HttpGateway):
    """Send one text message per work item."""

    name = "sms"

    def __init__(self, settings: SmsSettings, *, timeout: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(timeout=timeout, client=client)
        self.settings = settings

    async def deliver(self, item: WorkItem) -> GatewayResult:
        contact_no, message = require(item.payload, "contact_no", "message")
        number = normalize_mobile_number(contact_no)

        if not (self.settings.email and self.settings.api_code):
            raise ConfigError("SMS gateway credentials are not configured").with_context(gateway=self.name)

        body = {
            "Email": self.settings.email,
            "Password": self.settings.password,
            "ApiCode": self.settings.api_code,
            "Recipients": [number],
            "Message": message,
            "SenderId": self.settings.sender_id,
        }
        response = await self.request("POST", self.settings.url, json=body)
        return GatewayResult.ok(provider_ref=_reference_from(response))


def _reference_from(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        for key in ("ReferenceId", "reference_id", "TransactionId", "id"):
            if data.get(key):
                return str(data[key])
    return None


__all__ = ["SmsGateway", "normalize_mobile_number"]
