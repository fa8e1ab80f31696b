"""Idempotency cache — drops duplicate inbound triggers."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

#: Seconds a key is remembered.
DEFAULT_WINDOW = 300.0

#: Entry count above which a sweep of expired keys runs.
DEFAULT_MAX_SIZE = 10_000


class DedupeCache:
    """Bounded, time-windowed set of recently seen keys.

    :meth:`admit` is an atomic check-and-insert, serialized through a
    ``threading.Lock`` so it is safe from both coroutines and threads.
    Each admitted key is removed by its own timer after *window* seconds
    (when an event loop is running).  As a backstop, an admit that finds
    the cache above *max_size* first sweeps every entry older than the
    window.  A key that is present is always a duplicate, even if its
    timer is overdue.
    """

    def __init__(
        self,
        window: float = DEFAULT_WINDOW,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = window
        self._max_size = max_size
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, float] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def admit(self, key: str) -> bool:
        """Return ``True`` the first time *key* is seen within the window."""
        with self._lock:
            if key in self._entries:
                return False
            now = self._clock()
            if len(self._entries) > self._max_size:
                self._sweep(now)
            self._entries[key] = now
            self._schedule_expiry(key, now)
            return True

    def sweep(self) -> int:
        """Remove every entry older than the window; return how many went."""
        with self._lock:
            return self._sweep(self._clock())

    def close(self) -> None:
        """Cancel all pending expiry timers."""
        with self._lock:
            for handle in self._timers.values():
                handle.cancel()
            self._timers.clear()

    # ------------------------------------------------------------------ #
    # Internal (caller holds the lock)
    # ------------------------------------------------------------------ #

    def _sweep(self, now: float) -> int:
        cutoff = now - self._window
        stale = [k for k, inserted in self._entries.items() if inserted <= cutoff]
        for key in stale:
            del self._entries[key]
            handle = self._timers.pop(key, None)
            if handle is not None:
                handle.cancel()
        if stale:
            logger.info("Dedupe sweep removed %d expired keys", len(stale))
        return len(stale)

    def _schedule_expiry(self, key: str, inserted: float) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (plain sync use): the size sweep is the only eviction.
            return
        self._timers[key] = loop.call_later(self._window, self._expire, key, inserted)

    def _expire(self, key: str, inserted: float) -> None:
        with self._lock:
            self._timers.pop(key, None)
            if self._entries.get(key) == inserted:
                del self._entries[key]
