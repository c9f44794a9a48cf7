"""Cancellable fixed-interval asyncio loop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

_logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run *callback* every *interval* seconds until :meth:`stop`.

    The callback may be sync or async. Exceptions are logged and the loop
    keeps ticking; cancellation always propagates.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[object] | object],
        *,
        run_immediately: bool = False,
    ) -> None:
        self.name = name
        self.interval = interval
        self._callback = callback
        self._run_immediately = run_immediately
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def cancel(self) -> None:
        """Non-awaiting stop for use from synchronous code."""
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self.interval)
        while True:
            try:
                result = self._callback()
                if asyncio.iscoroutine(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.exception("Periodic task %s failed", self.name)
            await asyncio.sleep(self.interval)
