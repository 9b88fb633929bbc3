"""Async batch executor: bounded fan-out for gateway calls.

WHY
───
A delivery run claims up to fifty emails and a notice run walks hundreds of
overdue accounts. Each item is an HTTP round-trip, so they run
concurrently, but a gateway must not see hundreds of simultaneous
connections from one worker. ``asyncio.gather`` behind a semaphore gives
both, and a failure in one item is captured on that item only.

ARCHITECTURE
────────────
::

    AsyncBatchExecutor(max_concurrency=10)
      ├── .add(name, handler, params)   ─ queue an item
      ├── .run_all()                    ─ gather + semaphore
      └── AsyncBatchResult              ─ succeeded / failed / items

Example::

    batch = AsyncBatchExecutor(max_concurrency=10)
    for item in claimed:
        batch.add(item.id, deliver, {"item": item})
    result = await batch.run_all()
    print(result.succeeded, result.failed)
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from billing_worker.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AsyncBatchItem:
    """A single item in an async batch."""

    name: str
    handler: Callable[..., Coroutine[Any, Any, Any]]
    params: dict[str, Any] = field(default_factory=dict)
    status: str = "pending"
    result: Any = None
    error: BaseException | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


@dataclass
class AsyncBatchResult:
    """Aggregate result of running an async batch."""

    batch_id: str
    items: list[AsyncBatchItem]
    started_at: datetime
    completed_at: datetime

    @property
    def succeeded(self) -> int:
        return sum(1 for i in self.items if i.status == "completed")

    @property
    def failed(self) -> int:
        return sum(1 for i in self.items if i.status == "failed")

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def failures(self) -> list[AsyncBatchItem]:
        return [i for i in self.items if i.status == "failed"]


class AsyncBatchExecutor:
    """Run coroutines concurrently, at most ``max_concurrency`` at a time.

    Handlers are called as ``handler(**params)``. An exception raised by one
    handler marks that item failed; the rest of the batch continues.
    """

    def __init__(self, max_concurrency: int = 10, label: str = "batch") -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._max_concurrency = max_concurrency
        self._items: list[AsyncBatchItem] = []
        self._batch_id = str(uuid.uuid4())
        self._label = label

    def add(
        self,
        name: str,
        handler: Callable[..., Coroutine[Any, Any, Any]],
        params: dict[str, Any] | None = None,
    ) -> AsyncBatchExecutor:
        """Queue an item. Returns ``self`` for chaining."""
        self._items.append(AsyncBatchItem(name=name, handler=handler, params=params or {}))
        return self

    async def run_all(self) -> AsyncBatchResult:
        """Execute all items and wait for every one of them."""
        sem = asyncio.Semaphore(self._max_concurrency)
        started_at = datetime.now(UTC)

        logger.debug(
            "async_batch.start",
            label=self._label,
            batch_id=self._batch_id,
            items=len(self._items),
            max_concurrency=self._max_concurrency,
        )

        async def _run_one(item: AsyncBatchItem) -> AsyncBatchItem:
            async with sem:
                item.started_at = datetime.now(UTC)
                item.status = "running"
                try:
                    item.result = await item.handler(**item.params)
                    item.status = "completed"
                except Exception as e:
                    item.status = "failed"
                    item.error = e
                    logger.warning(
                        "async_batch.item_failed",
                        label=self._label,
                        batch_id=self._batch_id,
                        name=item.name,
                        error=f"{type(e).__name__}: {e}",
                    )
                item.completed_at = datetime.now(UTC)
                return item

        await asyncio.gather(*[_run_one(item) for item in self._items])

        result = AsyncBatchResult(
            batch_id=self._batch_id,
            items=self._items,
            started_at=started_at,
            completed_at=datetime.now(UTC),
        )
        logger.debug(
            "async_batch.complete",
            label=self._label,
            batch_id=self._batch_id,
            succeeded=result.succeeded,
            failed=result.failed,
            duration_seconds=result.duration_seconds,
        )
        return result

    @property
    def item_count(self) -> int:
        return len(self._items)

    @property
    def batch_id(self) -> str:
        return self._batch_id


__all__ = ["AsyncBatchExecutor", "AsyncBatchItem", "AsyncBatchResult"]
