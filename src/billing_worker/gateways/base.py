"""Gateway adapter contract and the shared HTTP base.

Every external system the worker pushes work to (SMS, email, payment,
RADIUS control) sits behind the same narrow interface::

    async send(item: WorkItem) -> GatewayResult

Adapters do not raise for delivery failures. They classify them:

    ┌──────────────────────────────────────┬───────────────────────────┐
    │ timeout, connection error            │ transient (retry later)   │
    │ HTTP 5xx, 408, 429                   │ transient                 │
    │ other HTTP 4xx                       │ permanent                 │
    │ missing / malformed payload field    │ permanent (DataError)     │
    └──────────────────────────────────────┴───────────────────────────┘
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx

from billing_worker.core.errors import (
    DataError,
    GatewayTimeoutError,
    PermanentFailure,
    RateLimitedError,
    TransientGatewayError,
    WorkerError,
)
from billing_worker.core.logging import get_logger
from billing_worker.core.models import WorkItem

logger = get_logger(__name__)


@dataclass(frozen=True)
class GatewayResult:
    """Outcome of one delivery attempt."""

    success: bool
    provider_ref: str | None = None
    error: str | None = None
    permanent: bool = False

    @classmethod
    def ok(cls, provider_ref: str | None = None) -> GatewayResult:
        return cls(success=True, provider_ref=provider_ref)

    @classmethod
    def transient(cls, error: str) -> GatewayResult:
        return cls(success=False, error=error)

    @classmethod
    def rejected(cls, error: str) -> GatewayResult:
        return cls(success=False, error=error, permanent=True)

    @classmethod
    def from_error(cls, error: WorkerError) -> GatewayResult:
        if error.retryable:
            return cls.transient(error.message)
        return cls.rejected(error.message)


@runtime_checkable
class GatewayAdapter(Protocol):
    """Anything that can deliver a work item."""

    name: str

    async def send(self, item: WorkItem) -> GatewayResult: ...


def require(payload: Mapping[str, Any], *fields: str) -> list[Any]:
    """Return the values of required payload fields.

    Raises:
        DataError: If any field is missing or empty
    """
    missing = [f for f in fields if payload.get(f) in (None, "", [])]
    if missing:
        raise DataError(f"payload missing required field(s): {', '.join(missing)}")
    return [payload[f] for f in fields]


def classify_response(response: httpx.Response, gateway: str) -> None:
    """Raise the matching WorkerError for a non-2xx response."""
    status = response.status_code
    if 200 <= status < 300:
        return

    detail = response.text[:300] if response.content else ""
    message = f"{gateway} returned HTTP {status}" + (f": {detail}" if detail else "")

    if status == 429:
        retry_after = response.headers.get("Retry-After")
        raise RateLimitedError(
            message,
            retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
        ).with_context(gateway=gateway, http_status=status, url=str(response.request.url))
    if status >= 500 or status == 408:
        raise TransientGatewayError(message).with_context(
            gateway=gateway, http_status=status, url=str(response.request.url)
        )
    raise PermanentFailure(message).with_context(gateway=gateway, http_status=status, url=str(response.request.url))


class HttpService:
    """httpx plumbing shared by gateways and source-of-record clients.

    :meth:`request` turns transport problems and error statuses into typed
    errors. An ``httpx.AsyncClient`` may be injected (tests use one built on
    ``httpx.MockTransport``); otherwise a client is opened per call.
    """

    name = "http"

    def __init__(self, *, timeout: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
        self.timeout = timeout
        self._client = client

    def client_options(self) -> dict[str, Any]:
        """Keyword arguments for a freshly opened ``httpx.AsyncClient``."""
        return {"timeout": self.timeout}

    @asynccontextmanager
    async def _open(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(**self.client_options()) as client:
                yield client

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Perform one HTTP request and classify the outcome."""
        try:
            async with self._open() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(f"{self.name} timed out after {self.timeout}s", cause=e).with_context(
                gateway=self.name, url=url
            ) from e
        except httpx.TransportError as e:
            raise TransientGatewayError(f"{self.name} unreachable: {e}", cause=e).with_context(
                gateway=self.name, url=url
            ) from e
        classify_response(response, self.name)
        return response


class Gateway(ABC):
    """Base class for adapters.

    Subclasses implement :meth:`deliver`; :meth:`send` converts raised
    WorkerErrors into a :class:`GatewayResult`.
    """

    name = "gateway"

    async def send(self, item: WorkItem) -> GatewayResult:
        try:
            result = await self.deliver(item)
        except WorkerError as e:
            level = "warning" if e.retryable else "error"
            getattr(logger, level)(
                "gateway.delivery_failed",
                gateway=self.name,
                item_id=item.id,
                retryable=e.retryable,
                error=e.message,
            )
            return GatewayResult.from_error(e)
        logger.debug("gateway.delivered", gateway=self.name, item_id=item.id, provider_ref=result.provider_ref)
        return result

    @abstractmethod
    async def deliver(self, item: WorkItem) -> GatewayResult:
        """Deliver one item; raise WorkerError subclasses on failure."""
        ...


class HttpGateway(HttpService, Gateway):
    """Adapter that delivers work items over HTTP."""

    name = "http"


__all__ = [
    "Gateway",
    "GatewayAdapter",
    "GatewayResult",
    "HttpGateway",
    "HttpService",
    "classify_response",
    "require",
]
