"""Per-key debouncing with replace-not-stack timer semantics."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Hashable

logger = logging.getLogger("sessionwatch.debounce")

Handler = Callable[[], Awaitable[None]]


class Debouncer:
    """One cancellable timer and at most one running handler per key.

    Scheduling a key that already has a pending timer cancels that timer and
    starts a fresh quiet window. A handler that has already started always
    runs to completion. If the timer for a key fires while that key's handler
    is still running, the newest handler is held and run once afterwards;
    repeated fires in the meantime collapse into that single rerun.
    """

    def __init__(self, delay_ms: int):
        self.delay = max(0, delay_ms) / 1000.0
        self._timers: dict[Hashable, asyncio.TimerHandle] = {}
        self._running: dict[Hashable, asyncio.Task] = {}
        self._rerun: dict[Hashable, Handler] = {}

    def schedule(self, key: Hashable, handler: Handler, delay_ms: int | None = None) -> None:
        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()
        delay = self.delay if delay_ms is None else max(0, delay_ms) / 1000.0
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._fire, key, handler)

    def _fire(self, key: Hashable, handler: Handler) -> None:
        self._timers.pop(key, None)
        if key in self._running:
            self._rerun[key] = handler
            return
        self._running[key] = asyncio.get_running_loop().create_task(self._run(key, handler))

    async def _run(self, key: Hashable, handler: Handler) -> None:
        try:
            while True:
                try:
                    await handler()
                except Exception:
                    logger.exception("Debounced handler for %s failed", key)
                rerun = self._rerun.pop(key, None)
                if rerun is None:
                    return
                handler = rerun
        finally:
            self._running.pop(key, None)

    def is_pending(self, key: Hashable) -> bool:
        return key in self._timers or key in self._rerun

    def is_running(self, key: Hashable) -> bool:
        return key in self._running

    @property
    def pending_count(self) -> int:
        return len(self._timers.keys() | self._rerun.keys())

    def cancel(self, key: Hashable) -> bool:
        handle = self._timers.pop(key, None)
        rerun = self._rerun.pop(key, None)
        if handle is not None:
            handle.cancel()
        return handle is not None or rerun is not None

    def cancel_all(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._rerun.clear()

    async def drain(self) -> None:
        """Wait for handlers that have already fired, including held reruns."""
        while self._running:
            await asyncio.gather(*list(self._running.values()), return_exceptions=True)
