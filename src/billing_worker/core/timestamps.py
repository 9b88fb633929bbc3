"""
ULID generation and timestamp utilities.

Manifesto:
    Locks, work items and job runs are compared by time inside SQL
    (``expires_at <= ?``, ``next_attempt_at <= ?``). Timestamps are
    therefore stored as fixed-width UTC strings so that lexical order and
    chronological order are the same thing.

Features:
    - **utc_now():** Timezone-aware UTC datetime
    - **to_iso8601() / from_iso8601():** Fixed-width ``...Z`` round-trip
    - **generate_ulid():** Time-sortable unique IDs (26-char, base32)
    - **Clock:** Type of the injectable ``now`` callable every component takes

Tags:
    timestamps, ulid, utc, datetime, billing-worker
"""

from __future__ import annotations

import random
from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]

_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to a fixed-width UTC ISO 8601 string.

    Naive datetimes are taken to be UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).strftime(_ISO_FORMAT)


def from_iso8601(s: str | None) -> datetime | None:
    """Parse an ISO 8601 string to an aware UTC datetime."""
    if s is None:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def generate_ulid(at: datetime | None = None) -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, base32 encoded, time-sortable. ``at`` pins the
    time component, which keeps ids ordered under an injected clock.
    """
    moment = at or utc_now()
    timestamp_ms = int(moment.timestamp() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, 10)
    random_part = "".join(random.choices(_ENCODING, k=16))
    return timestamp_chars + random_part


# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))


__all__ = ["Clock", "utc_now", "to_iso8601", "from_iso8601", "generate_ulid"]
