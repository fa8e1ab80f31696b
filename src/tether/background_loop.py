"""BackgroundLoop — base class for periodic async background tasks.

Provides a stop-aware interval loop with a managed task lifecycle,
used by the run liveness logger and the progress coalescer.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

logger = logging.getLogger(__name__)


class BackgroundLoop:
    """Base class for async background loops with graceful shutdown.

    Subclasses override :meth:`_should_start` (optional guard) and
    :meth:`_tick` (the work to do each interval).  :meth:`stop` lets a
    tick that is already running finish; :meth:`cancel` does not.
    """

    def __init__(self, interval: float) -> None:
        self._interval = interval
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop if :meth:`_should_start` allows."""
        if self.running or not self._should_start():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop())

    def request_stop(self) -> None:
        """Ask the loop to exit after the current tick (non-blocking)."""
        self._stop_event.set()

    async def stop(self) -> None:
        """Stop the loop and wait for an in-progress tick to complete."""
        self.request_stop()
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def cancel(self) -> None:
        """Cancel the background task immediately and wait for cleanup."""
        self.request_stop()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None

    # ------------------------------------------------------------------ #
    # Override points
    # ------------------------------------------------------------------ #

    def _should_start(self) -> bool:
        """Return ``False`` to skip starting.  Override in subclasses."""
        return self._interval > 0

    async def _tick(self) -> None:
        """Work to perform each interval.  Must be overridden."""
        raise NotImplementedError

    # ------------------------------------------------------------------ #
    # Internal
    # ------------------------------------------------------------------ #

    async def _wait_for_stop(self, duration: float) -> bool:
        """Sleep up to *duration*, returning ``True`` if stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=duration)
        except TimeoutError:
            return False
        return True

    async def _loop(self) -> None:
        """Sleep-and-tick loop that runs until stopped or cancelled."""
        while not self._stop_event.is_set():
            if await self._wait_for_stop(self._interval):
                return
            try:
                await self._tick()
            except Exception:
                logger.exception("%s tick failed", type(self).__name__)
