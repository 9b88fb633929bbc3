"""Sync Engine: poll remote state, record changes, emit events."""

from .engine import SyncCycleReport, SyncEngine, SyncSnapshot, SyncSource
from .store import SyncRecordStore, canonical_json

__all__ = [
    "SyncCycleReport",
    "SyncEngine",
    "SyncRecordStore",
    "SyncSnapshot",
    "SyncSource",
    "canonical_json",
]
