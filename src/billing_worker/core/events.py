"""State-change events: notify downstream consumers when remote state moves.

WHY
───
The sync engine only records *that* a subject changed; what happens next
(pushing an "Online" badge to a dashboard, alerting support when a paid
account is still blocked) belongs to someone else. Events decouple the two.

ARCHITECTURE
────────────
::

    StateChangeEvent
      ├── subject_id  ─ which account / RADIUS user
      ├── previous    ─ last recorded remote state (None on first sight)
      ├── current     ─ newly observed remote state
      └── observed_at ─ when

    EventSink.emit(event)
      ├── LoggingEventSink     ─ structured log line (default)
      ├── CollectingEventSink  ─ in-memory list (tests, CLI dry runs)
      └── WebhookEventSink     ─ POST JSON to an operator webhook

Sinks are best-effort: a failing sink is logged and never blocks a sync.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

import httpx

from .logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StateChangeEvent:
    """A subject's remote state differs from the last recorded one."""

    subject_id: str
    previous: dict[str, Any] | None
    current: dict[str, Any]
    observed_at: datetime
    source: str = "sync"

    @property
    def changed_fields(self) -> list[str]:
        before = self.previous or {}
        keys = set(before) | set(self.current)
        return sorted(k for k in keys if before.get(k) != self.current.get(k))

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "previous": self.previous,
            "current": self.current,
            "changed_fields": self.changed_fields,
            "observed_at": self.observed_at.isoformat(),
            "source": self.source,
        }


@runtime_checkable
class EventSink(Protocol):
    """Receiver for state-change events."""

    async def emit(self, event: StateChangeEvent) -> None: ...


class LoggingEventSink:
    """Write each event as a structured log line."""

    async def emit(self, event: StateChangeEvent) -> None:
        logger.info(
            "sync.state_changed",
            subject_id=event.subject_id,
            changed=event.changed_fields,
            status=event.current.get("status"),
        )


@dataclass
class CollectingEventSink:
    """Keep events in memory."""

    events: list[StateChangeEvent] = field(default_factory=list)

    async def emit(self, event: StateChangeEvent) -> None:
        self.events.append(event)


class WebhookEventSink:
    """POST events as JSON to a webhook URL."""

    def __init__(self, url: str, *, timeout: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
        self.url = url
        self._timeout = timeout
        self._client = client

    async def emit(self, event: StateChangeEvent) -> None:
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=event.to_dict(), timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self.url, json=event.to_dict())
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("event_sink.webhook_failed", url=self.url, subject_id=event.subject_id, error=str(e))


class FanOutEventSink:
    """Deliver each event to several sinks."""

    def __init__(self, *sinks: EventSink) -> None:
        self.sinks = list(sinks)

    async def emit(self, event: StateChangeEvent) -> None:
        for sink in self.sinks:
            try:
                await sink.emit(event)
            except Exception as e:
                logger.warning("event_sink.failed", sink=type(sink).__name__, error=str(e))


__all__ = [
    "CollectingEventSink",
    "EventSink",
    "FanOutEventSink",
    "LoggingEventSink",
    "StateChangeEvent",
    "WebhookEventSink",
]
