"""Backoff policies and in-call retry helpers.

Two retry layers exist in the worker:

- **Queue retries**: a failed work item is rescheduled by the Retry Queue
  ``next_delay(attempt)`` seconds later and picked up by a future job run.
  The default is a constant five minutes, the cadence of the retry jobs.
- **In-call retries**: a gateway call is repeated a few times within one
  run (``RetryContext.run_async``), e.g. the RADIUS REST client's three
  tries two seconds apart.

Example:
    >>> policy = ExponentialBackoff(base_delay=60, max_delay=3600, jitter=False)
    >>> [policy.next_delay(a) for a in range(3)]
    [60.0, 120.0, 240.0]
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from billing_worker.core.errors import is_retryable
from billing_worker.core.timestamps import utc_now


class RetryStrategy(ABC):
    """Abstract base for backoff policies."""

    max_retries: int = 0

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before the next attempt.

        Args:
            attempt: Zero-based index of the failed attempt (0 = first failure)
        """
        ...

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Whether another in-call attempt is allowed after ``attempt`` tries."""
        if attempt >= self.max_retries:
            return False
        return error is None or is_retryable(error)


@dataclass
class ConstantBackoff(RetryStrategy):
    """Fixed delay between attempts."""

    delay: float = 300.0
    max_retries: int = 3

    def next_delay(self, attempt: int) -> float:
        return self.delay


@dataclass
class LinearBackoff(RetryStrategy):
    """Delay = base_delay + increment * attempt, capped at max_delay."""

    base_delay: float = 300.0
    increment: float = 300.0
    max_delay: float = 3600.0
    max_retries: int = 3

    def next_delay(self, attempt: int) -> float:
        return min(self.base_delay + self.increment * attempt, self.max_delay)


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Delay = min(base_delay * multiplier ** attempt, max_delay) ± jitter."""

    base_delay: float = 60.0
    max_delay: float = 3600.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25
    max_retries: int = 3

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            spread = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-spread, spread))
        return delay


@dataclass
class RetryContext:
    """Run an async call with bounded in-call retries.

    Only retryable errors (see ``core.errors.is_retryable``) are retried;
    a ``DataError`` is re-raised at once.

    Example:
        >>> ctx = RetryContext(ConstantBackoff(delay=2, max_retries=3))
        >>> users = await ctx.run_async(client.get_json, "/rest/user-manage/user")
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, Exception, float], None] | None = None
    sleep: Callable[[float], Any] = asyncio.sleep
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    started_at: datetime = field(default_factory=utc_now, init=False)
    errors: list[tuple[int, Exception]] = field(default_factory=list, init=False)

    async def run_async(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Await ``func`` until it succeeds or retries are exhausted.

        Raises:
            The last exception once no further attempt is allowed
        """
        while True:
            self.attempt += 1
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e))
                if not self.strategy.should_retry(self.attempt, e):
                    raise
                delay = self.strategy.next_delay(self.attempt - 1)
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)
                await self.sleep(delay)


__all__ = [
    "ConstantBackoff",
    "ExponentialBackoff",
    "LinearBackoff",
    "RetryContext",
    "RetryStrategy",
]
