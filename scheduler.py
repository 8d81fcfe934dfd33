"""Idle-time scheduling of deferred local recomputation."""

from __future__ import annotations
import asyncio
import itertools
from typing import Callable, Optional

from loguru import logger


class IdleHandle:
    """Handle returned by ``run_when_idle`` and accepted by ``cancel``."""

    _ids = itertools.count(1)

    def __init__(self, timer: Optional[asyncio.Handle] = None) -> None:
        self.id = next(self._ids)
        self._timer = timer
        self.cancelled = False
        self.done = False

    def __repr__(self) -> str:
        return f"IdleHandle(id={self.id}, done={self.done}, cancelled={self.cancelled})"


class SynchronousScheduler:
    """Fallback scheduler for hosts without an event loop; runs tasks at once."""

    def run_when_idle(self, task: Callable[[], None]) -> IdleHandle:
        handle = IdleHandle()
        task()
        handle.done = True
        return handle

    def cancel(self, handle: IdleHandle) -> None:
        if not handle.done:
            handle.cancelled = True


class AsyncioIdleScheduler:
    """Defer work onto the asyncio loop after pending callbacks.

    ``idle_delay`` is the grace period in seconds before the task runs; with
    ``0`` the task is queued behind callbacks that are already ready.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        idle_delay: float = 0.0,
    ) -> None:
        self._loop = loop
        self.idle_delay = max(0.0, idle_delay)

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def run_when_idle(self, task: Callable[[], None]) -> IdleHandle:
        loop = self._get_loop()
        handle = IdleHandle()

        def _run() -> None:
            if handle.cancelled:
                return
            try:
                task()
            finally:
                handle.done = True

        if self.idle_delay > 0:
            handle._timer = loop.call_later(self.idle_delay, _run)
        else:
            handle._timer = loop.call_soon(_run)
        logger.debug("Deferred idle task {}", handle.id)
        return handle

    def cancel(self, handle: IdleHandle) -> None:
        if handle.done:
            return
        handle.cancelled = True
        if handle._timer is not None:
            handle._timer.cancel()


def default_scheduler(idle_delay: float = 0.0):
    """Return an asyncio scheduler inside a running loop, else the sync one."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return SynchronousScheduler()
    return AsyncioIdleScheduler(loop, idle_delay)
