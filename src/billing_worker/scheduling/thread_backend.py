"""Threading-based dispatcher backend (the default).

    start()
      └── daemon thread:
            asyncio.run(_run())                  one event loop for the thread's lifetime
              every interval:
                tick_count += 1
                create_task(tick_callback())     not awaited before the next interval

    stop()
      └── stop_event.set(); wake the loop; in-flight ticks finish; thread.join(timeout)

Ticks are scheduled as tasks on the one loop, so a job body that runs past
the interval never delays the next tick. The dispatcher's per-job lock
turns a refire of the still-running job into a ``skipped_overlap`` run.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
from datetime import UTC, datetime

from billing_worker.core.logging import get_logger

from .protocol import BackendHealth, TickCallback

logger = get_logger(__name__)


class ThreadSchedulerBackend:
    """Tick a callback from a daemon thread.

    Example:
        >>> backend = ThreadSchedulerBackend()
        >>> backend.start(dispatcher.tick, interval_seconds=10.0)
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self, join_timeout: float = 30.0) -> None:
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeup: asyncio.Event | None = None
        self._pending: set[asyncio.Task] = set()
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 10.0
        self._join_timeout = join_timeout
        self._lock = threading.Lock()

    def start(self, tick_callback: TickCallback, interval_seconds: float = 10.0) -> None:
        """Start the tick loop in a daemon thread."""
        if self.is_running:
            logger.warning("backend.already_started", backend=self.name)
            return

        self._interval = interval_seconds
        self._stop_event.clear()

        def _loop() -> None:
            logger.info("backend.started", backend=self.name, interval_seconds=interval_seconds)
            try:
                asyncio.run(self._run(tick_callback, interval_seconds))
            except Exception:
                logger.exception("backend.loop_failed", backend=self.name)
            finally:
                self._loop = None
            logger.info("backend.stopped", backend=self.name)

        self._thread = threading.Thread(target=_loop, daemon=True, name="billing-worker-dispatcher")
        self._thread.start()

    async def _run(self, tick_callback: TickCallback, interval_seconds: float) -> None:
        self._wakeup = asyncio.Event()
        self._loop = asyncio.get_running_loop()

        while not self._stop_event.is_set():
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._wakeup.wait(), timeout=interval_seconds)
            if self._stop_event.is_set():
                break
            with self._lock:
                self._tick_count += 1
                self._last_tick = datetime.now(UTC)
            task = asyncio.create_task(self._tick(tick_callback))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        if self._pending:
            logger.info("backend.draining", backend=self.name, ticks_in_flight=len(self._pending))
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _tick(self, tick_callback: TickCallback) -> None:
        try:
            await tick_callback()
        except Exception:
            logger.exception("backend.tick_failed", backend=self.name)

    def stop(self) -> None:
        """Stop the loop, waiting for in-flight ticks to finish."""
        if self._thread is None:
            return
        self._stop_event.set()
        loop, wakeup = self._loop, self._wakeup
        if loop is not None and wakeup is not None:
            # the loop may close between the check and the call
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(wakeup.set)
        self._thread.join(timeout=self._join_timeout)
        if self._thread.is_alive():
            logger.warning("backend.stop_timeout", backend=self.name, timeout=self._join_timeout)
        self._thread = None

    def wait(self) -> None:
        """Block the calling thread until ``stop`` is called."""
        self._stop_event.wait()

    def get_health(self) -> BackendHealth:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval, "ticks_in_flight": len(self._pending)},
        )

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count
