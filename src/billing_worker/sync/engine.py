"""Sync Engine: reconcile remote state against the last recorded state.

One cycle::

    subjects ──► source.fetch() ──► SyncSnapshot(states, failures)
                                        │
                   for each subject ◄───┘
                     ├─ failure         → counted, retried next cycle
                     ├─ same as stored  → no-op
                     └─ different       → save SyncRecord, emit StateChangeEvent

Equality is canonical JSON equality, so key order never registers as a
change. Re-running a cycle against an identical snapshot writes nothing
and emits nothing.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from billing_worker.core.errors import SyncError, WorkerError
from billing_worker.core.events import EventSink, LoggingEventSink, StateChangeEvent
from billing_worker.core.logging import get_logger
from billing_worker.core.models import SyncRecord
from billing_worker.core.timestamps import Clock, utc_now

from .store import SyncRecordStore, canonical_json

logger = get_logger(__name__)


@dataclass
class SyncSnapshot:
    """Remote states fetched in one pass, plus subjects that could not be read."""

    states: dict[str, dict[str, Any]] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class SyncSource(Protocol):
    """Reads the current remote state of a set of subjects.

    Raises when the remote system cannot be read at all; per-subject
    problems go into ``SyncSnapshot.failures``.
    """

    name: str

    async def fetch(self, subjects: list[str]) -> SyncSnapshot: ...


@dataclass
class SyncCycleReport:
    source: str
    started_at: datetime
    finished_at: datetime | None = None
    checked: int = 0
    changed: int = 0
    unchanged: int = 0
    failed: int = 0
    failures: dict[str, str] = field(default_factory=dict)

    def to_stats(self) -> dict[str, int]:
        return {
            "checked": self.checked,
            "changed": self.changed,
            "unchanged": self.unchanged,
            "failed": self.failed,
        }


class SyncEngine:
    """Compare, persist and announce remote state changes."""

    def __init__(
        self,
        source: SyncSource,
        store: SyncRecordStore,
        sink: EventSink | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.source = source
        self.store = store
        self.sink = sink or LoggingEventSink()
        self.clock = clock

    async def run_cycle(self, subjects: Iterable[str]) -> SyncCycleReport:
        """Run one reconciliation pass over ``subjects``.

        Raises:
            SyncError: If the source could not be read at all
        """
        subject_ids = list(dict.fromkeys(subjects))
        report = SyncCycleReport(source=self.source.name, started_at=self.clock())

        try:
            snapshot = await self.source.fetch(subject_ids)
        except WorkerError:
            raise
        except Exception as e:
            raise SyncError(f"sync source {self.source.name} failed: {e}", cause=e) from e

        observed_at = self.clock()
        previous = self.store.latest_many(subject_ids)

        for subject_id in subject_ids:
            report.checked += 1
            if subject_id in snapshot.failures or subject_id not in snapshot.states:
                reason = snapshot.failures.get(subject_id, "missing from snapshot")
                report.failed += 1
                report.failures[subject_id] = reason
                logger.warning("sync.subject_failed", source=self.source.name, subject_id=subject_id, error=reason)
                continue

            current = snapshot.states[subject_id]
            last = previous.get(subject_id)
            last_state = last.remote_state if last else None
            if canonical_json(current) == canonical_json(last_state):
                report.unchanged += 1
                continue

            try:
                self.store.save(
                    SyncRecord(
                        subject_id=subject_id,
                        remote_state=current,
                        observed_at=observed_at,
                        local_state=last_state,
                    )
                )
            except Exception as e:
                report.failed += 1
                report.failures[subject_id] = str(e)
                logger.error("sync.record_failed", subject_id=subject_id, error=str(e))
                continue

            report.changed += 1
            event = StateChangeEvent(
                subject_id=subject_id,
                previous=last_state,
                current=current,
                observed_at=observed_at,
                source=self.source.name,
            )
            try:
                await self.sink.emit(event)
            except Exception as e:
                logger.warning("sync.emit_failed", subject_id=subject_id, error=str(e))

        report.finished_at = self.clock()
        logger.info("sync.cycle_completed", source=self.source.name, **report.to_stats())
        return report


__all__ = ["SyncCycleReport", "SyncEngine", "SyncSnapshot", "SyncSource"]
