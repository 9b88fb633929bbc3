"""Job cadences.

A cadence is a cron expression evaluated in a configured timezone, so that
"daily at 10:00" means 10:00 on the wall clock of the billing office rather
than 10:00 UTC. Results are always returned in UTC.

    Cadence.every_minute()          * * * * *
    Cadence.every_minutes(5)        */5 * * * *
    Cadence.hourly()                0 * * * *
    Cadence.daily_at("01:00")       0 1 * * *
    Cadence.cron("30 14 * * 1-5")   anything croniter accepts
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from croniter import croniter

from billing_worker.core.errors import ConfigError


@dataclass(frozen=True)
class Cadence:
    """Cron expression plus the timezone it is evaluated in."""

    expression: str
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        if not croniter.is_valid(self.expression):
            raise ConfigError(f"Invalid cron expression: {self.expression!r}")
        try:
            ZoneInfo(self.timezone)
        except (KeyError, ValueError) as e:
            raise ConfigError(f"Unknown timezone: {self.timezone!r}", cause=e) from e

    # ── Constructors ─────────────────────────────────────────────

    @classmethod
    def cron(cls, expression: str, timezone: str = "UTC") -> Cadence:
        return cls(expression, timezone)

    @classmethod
    def every_minute(cls, timezone: str = "UTC") -> Cadence:
        return cls("* * * * *", timezone)

    @classmethod
    def every_minutes(cls, minutes: int, timezone: str = "UTC") -> Cadence:
        if not 1 <= minutes <= 59:
            raise ConfigError(f"every_minutes expects 1-59, got {minutes}")
        if minutes == 1:
            return cls.every_minute(timezone)
        return cls(f"*/{minutes} * * * *", timezone)

    @classmethod
    def hourly(cls, timezone: str = "UTC") -> Cadence:
        return cls("0 * * * *", timezone)

    @classmethod
    def daily_at(cls, at: str, timezone: str = "UTC") -> Cadence:
        """Daily at ``HH:MM`` local time."""
        try:
            hour_s, minute_s = at.split(":")
            hour, minute = int(hour_s), int(minute_s)
        except ValueError as e:
            raise ConfigError(f"daily_at expects HH:MM, got {at!r}", cause=e) from e
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ConfigError(f"daily_at expects HH:MM, got {at!r}")
        return cls(f"{minute} {hour} * * *", timezone)

    # ── Evaluation ───────────────────────────────────────────────

    def next_after(self, after: datetime) -> datetime:
        """First fire time strictly after ``after``, in UTC."""
        if after.tzinfo is None:
            after = after.replace(tzinfo=UTC)
        local = after.astimezone(ZoneInfo(self.timezone))
        next_local = croniter(self.expression, local).get_next(datetime)
        return next_local.astimezone(UTC)

    def __str__(self) -> str:
        return f"{self.expression} ({self.timezone})"


__all__ = ["Cadence"]
