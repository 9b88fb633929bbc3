"""Dispatcher backend protocol.

┌──────────────────────────────────────────────────────────────────────┐
│  BEAT-AS-POLLER                                                      │
│                                                                      │
│   ┌──────────────────┐     tick()      ┌──────────────────────┐      │
│   │  Backend         │ ──────────────► │  JobDispatcher       │      │
│   │  (timing only)   │                 │  - which jobs due    │      │
│   └──────────────────┘                 │  - acquire lock      │      │
│                                        │  - run + record      │      │
│                                        │  - advance next fire │      │
│                                        └──────────────────────┘      │
│                                                                      │
│  Backend: decides WHEN to tick.  Dispatcher: decides WHAT runs.      │
└──────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Awaitable[Any]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Pluggable timing backend.

    A backend only calls ``tick_callback`` every ``interval_seconds``.
    Cadence evaluation, locking and recording live in the dispatcher.
    """

    name: str

    def start(self, tick_callback: TickCallback, interval_seconds: float = 10.0) -> None: ...

    def stop(self) -> None: ...

    def get_health(self) -> BackendHealth: ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }
