"""Process-scoped context wiring the watcher components together."""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel

from sessionwatch import config
from sessionwatch.errors import ErrorTracker
from sessionwatch.events import LifecycleChannel, Subscription
from sessionwatch.git_info import GitInfoCache
from sessionwatch.status.machine import format_status
from sessionwatch.status.signals import SignalReconciler
from sessionwatch.watcher.file_watcher import FileWatcher
from sessionwatch.watcher.registry import GitLookup, PrTrigger, SessionRegistry
from sessionwatch.watcher.sweeper import StaleSweeper

logger = logging.getLogger("sessionwatch")


class WatcherSettings(BaseModel):
    projects_dir: Path = config.PROJECTS_DIR
    signals_dir: Path = config.SIGNALS_DIR
    debounce_ms: int = config.DEBOUNCE_MS
    dir_poll_seconds: float = config.DIR_POLL_SECONDS
    stale_timeout_seconds: float = config.STALE_TIMEOUT_SECONDS
    sweep_interval_seconds: float = config.SWEEP_INTERVAL_SECONDS
    git_branch_ttl_seconds: float = config.GIT_BRANCH_TTL_SECONDS
    git_repo_ttl_seconds: float = config.GIT_REPO_TTL_SECONDS

    @classmethod
    def from_config(cls) -> "WatcherSettings":
        return cls(
            projects_dir=config.PROJECTS_DIR,
            signals_dir=config.SIGNALS_DIR,
            debounce_ms=config.DEBOUNCE_MS,
            dir_poll_seconds=config.DIR_POLL_SECONDS,
            stale_timeout_seconds=config.STALE_TIMEOUT_SECONDS,
            sweep_interval_seconds=config.SWEEP_INTERVAL_SECONDS,
            git_branch_ttl_seconds=config.GIT_BRANCH_TTL_SECONDS,
            git_repo_ttl_seconds=config.GIT_REPO_TTL_SECONDS,
        )


class WatcherContext:
    """Owns every component for one watcher instance.

    Construct once, `await initialize()` to scan existing files and start the
    watches and the stale sweep, `await teardown()` to stop them. Independent
    instances share nothing, so tests can run several side by side.
    """

    def __init__(
        self,
        settings: WatcherSettings | None = None,
        *,
        git_lookup: GitLookup | None = None,
        pr_trigger: PrTrigger | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or WatcherSettings.from_config()
        self.errors = ErrorTracker(clock=clock)
        self.channel = LifecycleChannel()
        self.git_cache = GitInfoCache(
            branch_ttl=self.settings.git_branch_ttl_seconds,
            repo_ttl=self.settings.git_repo_ttl_seconds,
        )
        self.reconciler = SignalReconciler(self.settings.signals_dir)
        self.registry = SessionRegistry(
            self.channel,
            self.reconciler,
            git_lookup or self.git_cache.get,
            projects_dir=self.settings.projects_dir,
            errors=self.errors,
            stale_timeout=self.settings.stale_timeout_seconds,
            clock=clock,
            pr_trigger=pr_trigger,
            on_branch_change=self.git_cache.clear,
        )
        self.watcher = FileWatcher(
            self.registry,
            projects_dir=self.settings.projects_dir,
            signals_dir=self.settings.signals_dir,
            debounce_ms=self.settings.debounce_ms,
            dir_poll_seconds=self.settings.dir_poll_seconds,
        )
        self.sweeper = StaleSweeper(self.registry, interval=self.settings.sweep_interval_seconds)
        self._log_task: Optional[asyncio.Task] = None
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self, *, log_events: bool = True) -> None:
        if self._initialized:
            logger.warning("Watcher context already initialized")
            return
        self._initialized = True
        if log_events:
            self._log_task = asyncio.create_task(self._log_events(self.channel.subscribe("log")))
        await self.registry.scan_existing()
        await self.registry.load_existing_signals()
        await self.watcher.start()
        self.sweeper.start()
        logger.info("Watching %d session(s)", len(self.registry))

    async def teardown(self) -> None:
        if not self._initialized:
            return
        self._initialized = False
        await self.sweeper.stop()
        await self.watcher.stop()
        await self.registry.close()
        self.channel.close()
        if self._log_task is not None:
            try:
                await asyncio.wait_for(self._log_task, timeout=1.0)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                self._log_task.cancel()
            self._log_task = None
        logger.info("Watcher context torn down")

    async def _log_events(self, subscription: Subscription) -> None:
        async for event in subscription:
            session = event.session
            dir_name = Path(session.cwd).name or session.cwd
            logger.info(
                "%s %s %s [%s] %s",
                event.type,
                session.sessionId[:8],
                dir_name,
                session.gitBranch or "-",
                format_status(session.status),
            )
