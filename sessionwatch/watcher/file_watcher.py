"""File watcher service using watchfiles.

Monitors the transcript tree and the hook-signal directory and routes
changes into the session registry. Transcript reads are debounced per path;
signal changes are applied immediately.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional

from watchfiles import Change, awatch

from sessionwatch import config
from sessionwatch.parsers.entries import is_session_log
from sessionwatch.status.signals import parse_signal_filename
from sessionwatch.watcher.debounce import Debouncer
from sessionwatch.watcher.registry import SessionRegistry

logger = logging.getLogger("sessionwatch.watcher")

# watchfiles' own batching window; per-path quiet windows are handled by Debouncer.
_WATCH_BATCH_MS = 50
_WATCH_STEP_MS = 25


def classify_transcript_changes(changes: Iterable[tuple[Change, str]]) -> list[tuple[str, Path]]:
    """Classify raw watchfiles changes into (change_type, path) pairs for session transcripts."""
    result = []
    for change_type, path_str in changes:
        path = Path(path_str)
        if not is_session_log(path):
            continue
        if change_type == Change.deleted:
            result.append(("deleted", path))
        elif change_type == Change.added:
            result.append(("added", path))
        elif change_type == Change.modified:
            result.append(("modified", path))
    return result


def classify_signal_changes(changes: Iterable[tuple[Change, str]]) -> list[tuple[str, Path]]:
    result = []
    for change_type, path_str in changes:
        path = Path(path_str)
        if parse_signal_filename(path) is None:
            continue
        if change_type == Change.deleted:
            result.append(("deleted", path))
        else:
            result.append(("modified", path))
    return result


class FileWatcher:
    """Background watcher feeding the session registry.

    Transcript changes are debounced per path. Signal changes are applied as
    soon as watchfiles reports them. A directory that does not exist yet is
    checked for every `dir_poll_seconds`; once it appears its existing files
    are loaded and the watch starts.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        projects_dir: Path = config.PROJECTS_DIR,
        signals_dir: Path = config.SIGNALS_DIR,
        debounce_ms: int = config.DEBOUNCE_MS,
        dir_poll_seconds: float = config.DIR_POLL_SECONDS,
    ):
        self.registry = registry
        self.projects_dir = projects_dir
        self.signals_dir = signals_dir
        self.dir_poll_seconds = dir_poll_seconds
        self.transcript_debouncer = Debouncer(debounce_ms)
        self._tasks: list[asyncio.Task] = []
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    async def start(self) -> None:
        """Start watching in background tasks."""
        if self._running:
            logger.warning("File watcher already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._tasks.append(asyncio.create_task(self._watch_transcripts()))
        self._tasks.append(asyncio.create_task(self._watch_signals()))
        logger.info("File watcher started")

    async def stop(self) -> None:
        """Stop the file watcher and drop pending timers."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        self.transcript_debouncer.cancel_all()
        await self.transcript_debouncer.drain()
        logger.info("File watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _wait_for_dir(self, path: Path, label: str) -> bool:
        """Block until `path` exists. Returns True if it had to wait."""
        if path.exists():
            return False
        logger.info("%s directory %s does not exist yet, checking every %ss", label, path, self.dir_poll_seconds)
        while not path.exists():
            await asyncio.sleep(self.dir_poll_seconds)
        logger.info("%s directory %s appeared, watching it", label, path)
        return True

    async def _watch_transcripts(self) -> None:
        try:
            if await self._wait_for_dir(self.projects_dir, "Projects"):
                await self.registry.scan_existing()
            async for changes in awatch(
                self.projects_dir,
                stop_event=self._stop_event,
                debounce=_WATCH_BATCH_MS,
                step=_WATCH_STEP_MS,
            ):
                if not self._running:
                    break
                await self.dispatch_transcript_changes(classify_transcript_changes(changes))
        except asyncio.CancelledError:
            logger.info("Transcript watch task cancelled")
        except Exception as e:
            logger.error(f"Transcript watcher error: {e}")
            self.registry.errors.set_error("watcher:transcripts", f"Transcript watcher stopped: {e}")

    async def _watch_signals(self) -> None:
        try:
            if await self._wait_for_dir(self.signals_dir, "Signals"):
                await self.registry.load_existing_signals()
            async for changes in awatch(
                self.signals_dir,
                stop_event=self._stop_event,
                debounce=_WATCH_BATCH_MS,
                step=_WATCH_STEP_MS,
                recursive=False,
            ):
                if not self._running:
                    break
                await self.dispatch_signal_changes(classify_signal_changes(changes))
        except asyncio.CancelledError:
            logger.info("Signal watch task cancelled")
        except Exception as e:
            # The signals directory is optional; hooks may not be installed.
            logger.warning(f"Signal watcher error: {e}")

    async def dispatch_transcript_changes(self, classified: list[tuple[str, Path]]) -> None:
        for change_type, path in classified:
            key = str(path)
            if change_type == "deleted":
                self.transcript_debouncer.cancel(key)
                await self.registry.handle_delete(path)
            elif change_type == "added":
                logger.info("New transcript detected: %s/%s", path.parent.name, path.name)
                self.transcript_debouncer.schedule(key, lambda p=path: self.registry.handle_file(p), delay_ms=0)
            else:
                self.transcript_debouncer.schedule(key, lambda p=path: self.registry.handle_file(p))

    async def dispatch_signal_changes(self, classified: list[tuple[str, Path]]) -> None:
        for change_type, path in classified:
            if change_type == "deleted":
                await self.registry.handle_signal_removed(path)
            else:
                await self.registry.handle_signal_file(path)
