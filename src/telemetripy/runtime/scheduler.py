"""Periodic flush scheduling on the running asyncio loop."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from telemetripy.adapters.logging import get_logger

logger = get_logger(__name__)

FlushFn = Callable[[], Awaitable[Any]]


class FlushScheduler:
    """A cancellable repeating task that invokes one sink's flush.

    One scheduler exists per sink. ``start`` is idempotent and ``stop`` never
    flushes what is still pending: callers that want a final delivery await
    the flush themselves before stopping.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval_ms: int, flush_fn: FlushFn) -> asyncio.Task[None] | None:
        """Start invoking ``flush_fn`` every ``interval_ms`` milliseconds.

        Must be called from a running event loop.

        Args:
            interval_ms: Period between flushes; ``<= 0`` disables scheduling.
            flush_fn: Coroutine function performing the flush.

        Returns:
            The task handle (the existing one if already running), or None
            when scheduling is disabled.
        """
        if self.running:
            return self._task
        if interval_ms <= 0:
            return None
        self._task = asyncio.get_running_loop().create_task(
            self._run(interval_ms / 1000, flush_fn),
            name=f"telemetripy-flush-{self.name}",
        )
        return self._task

    async def _run(self, interval_seconds: float, flush_fn: FlushFn) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await flush_fn()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Scheduled flush failed", sink=self.name)

    def stop(self) -> None:
        """Cancel the repeating task. Safe to call when not running."""
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def stop_and_wait(self) -> None:
        """Cancel the task and wait until it has finished unwinding."""
        task = self._task
        self.stop()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
