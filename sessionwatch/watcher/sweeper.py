"""Periodic re-evaluation of sessions stuck in "working".

Some providers never write an end-of-turn marker; without this sweep those
sessions would report working indefinitely.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sessionwatch import config
from sessionwatch.watcher.registry import SessionRegistry

logger = logging.getLogger("sessionwatch.sweeper")


class StaleSweeper:
    def __init__(self, registry: SessionRegistry, interval: float = config.SWEEP_INTERVAL_SECONDS):
        self.registry = registry
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def sweep_once(self) -> list[str]:
        """Re-derive every working session. Returns the ids whose status changed."""
        changed: list[str] = []
        for session_id, session in self.registry.get_sessions().items():
            if session.status.status != "working":
                continue
            try:
                if await self.registry.reevaluate(session_id):
                    changed.append(session_id)
            except Exception:
                logger.exception("Stale sweep failed for %s", session_id)
        if changed:
            logger.info("Stale sweep updated %d session(s)", len(changed))
        return changed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.sweep_once()

    def start(self) -> None:
        if self._task is not None:
            logger.warning("Stale sweeper already running")
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()
