"""Session registry: owns per-session state and turns file activity into lifecycle events."""
from __future__ import annotations

import asyncio
import inspect
import logging
import os
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

from sessionwatch import config
from sessionwatch.errors import ErrorTracker
from sessionwatch.events import LifecycleChannel
from sessionwatch.models import (
    GitInfo,
    LogEntry,
    SessionEvent,
    SessionState,
    SignalKind,
    StatusResult,
    UserEntry,
)
from sessionwatch.observability import record_lifecycle_event, record_tail_pass, start_span
from sessionwatch.parsers.entries import (
    extract_encoded_dir,
    extract_metadata,
    extract_session_id,
    is_session_log,
)
from sessionwatch.parsers.tailer import tail_entries
from sessionwatch.status.machine import derive_status, status_changed
from sessionwatch.status.signals import SignalReconciler

logger = logging.getLogger("sessionwatch.registry")

GitLookup = Callable[[str], Awaitable[GitInfo]]
PrTrigger = Callable[[str, str, str], Union[Awaitable[Any], Any]]


def _has_tool_result(entries: list[LogEntry]) -> bool:
    for entry in entries:
        if isinstance(entry, UserEntry) and not isinstance(entry.message.content, str):
            if any(block.type == "tool_result" for block in entry.message.content):
                return True
    return False


def _has_plain_prompt(entries: list[LogEntry]) -> bool:
    return any(isinstance(entry, UserEntry) and isinstance(entry.message.content, str) for entry in entries)


class SessionRegistry:
    """Maps session id -> SessionState and publishes created/updated/deleted events.

    Every handler runs to completion inside one event-loop task; the session
    map is only mutated synchronously between awaits of a single handler.
    """

    def __init__(
        self,
        channel: LifecycleChannel,
        reconciler: SignalReconciler,
        git_lookup: GitLookup,
        *,
        projects_dir: Path = config.PROJECTS_DIR,
        errors: ErrorTracker | None = None,
        stale_timeout: float = config.STALE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
        pr_trigger: PrTrigger | None = None,
        on_branch_change: Callable[[str], None] | None = None,
    ):
        self.channel = channel
        self.reconciler = reconciler
        self.projects_dir = projects_dir
        self.errors = errors or ErrorTracker()
        self.stale_timeout = stale_timeout
        self._git_lookup = git_lookup
        self._clock = clock
        self._pr_trigger = pr_trigger
        self._on_branch_change = on_branch_change
        self._sessions: dict[str, SessionState] = {}
        self._trigger_tasks: set[asyncio.Task] = set()

    # ── Queries ─────────────────────────────────────────────────────

    def get_sessions(self) -> dict[str, SessionState]:
        return dict(self._sessions)

    def get(self, session_id: str) -> SessionState | None:
        return self._sessions.get(session_id)

    def __len__(self) -> int:
        return len(self._sessions)

    # ── Status derivation ───────────────────────────────────────────

    def derive(self, session_id: str, entries: list[LogEntry]) -> StatusResult:
        """Full replay plus stale correction, then hook-signal overlay."""
        result = derive_status(entries, now=self._clock(), stale_timeout=self.stale_timeout)
        return self.reconciler.overlay(session_id, result)

    def _emit(self, kind: str, session: SessionState, previous: Optional[StatusResult] = None) -> None:
        event = SessionEvent(type=kind, session=session.model_copy(), previousStatus=previous)
        record_lifecycle_event(kind)
        self.channel.publish(event)

    async def reevaluate(self, session_id: str) -> bool:
        """Recompute status from scratch. Emits and returns True when it changed."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        previous = session.status
        session.status = self.derive(session_id, session.entries)
        self.reconciler.sync_flags(session)
        if status_changed(previous, session.status):
            self._emit("updated", session, previous)
            return True
        return False

    # ── Transcript handling ─────────────────────────────────────────

    async def handle_file(self, path: Path) -> None:
        started = time.perf_counter()
        result = "ok"
        try:
            with start_span("sessionwatch.handle_file", {"file": path.name}):
                await self._process_file(path)
        except FileNotFoundError:
            # Lost a race with deletion; the removal event drives cleanup.
            result = "vanished"
            logger.debug("Transcript vanished before read: %s", path)
        except Exception as exc:
            result = "error"
            logger.exception("Failed to process transcript %s", path)
            self.errors.set_error(f"transcript:{path}", f"Failed to process {path.name}: {exc}")
        else:
            self.errors.clear_error(f"transcript:{path}")
        finally:
            record_tail_pass(result, (time.perf_counter() - started) * 1000)

    async def _process_file(self, path: Path) -> None:
        session_id = extract_session_id(path)
        existing = self._sessions.get(session_id)

        batch = await tail_entries(path, existing.byteOffset if existing else 0)
        if batch.skipped:
            logger.debug("Skipped %d malformed line(s) in %s", batch.skipped, path.name)

        if existing is not None and not batch.entries and not batch.wasReset:
            existing.byteOffset = max(existing.byteOffset, batch.newOffset)
            return

        if existing is not None and not batch.wasReset:
            all_entries = [*existing.entries, *batch.entries]
        else:
            if existing is not None:
                logger.info("Transcript %s was truncated, replaying from start", path.name)
            all_entries = list(batch.entries)

        branch_changed = False
        if existing is None:
            metadata = extract_metadata(all_entries)
            if metadata is None:
                # Not enough data yet; a later append will supply it.
                return
            git_info = await self._git_lookup(metadata.cwd)
            session = SessionState(
                sessionId=session_id,
                filePath=str(path),
                encodedDir=extract_encoded_dir(path),
                cwd=metadata.cwd,
                gitBranch=git_info.branch or metadata.gitBranch,
                gitRepoUrl=git_info.repoUrl,
                gitRepoId=git_info.repoId,
                originalPrompt=metadata.originalPrompt,
                startedAt=metadata.startedAt,
            )
        else:
            session = existing
            current = await self._git_lookup(session.cwd)
            resolved_branch = current.branch or session.gitBranch
            if resolved_branch != session.gitBranch:
                logger.info(
                    "Branch changed for %s: %s -> %s", session_id, session.gitBranch, resolved_branch
                )
                branch_changed = True
                session.gitBranch = resolved_branch
                session.gitRepoUrl = current.repoUrl or session.gitRepoUrl
                session.gitRepoId = current.repoId or session.gitRepoId
                if self._on_branch_change is not None:
                    self._on_branch_change(session.cwd)

        # Transcript evidence retires hook signals it has made obsolete.
        if _has_tool_result(batch.entries):
            await self.reconciler.consume(session_id, SignalKind.PERMISSION)
        if _has_plain_prompt(batch.entries):
            await self.reconciler.consume(session_id, SignalKind.STOP)

        previous = existing.status if existing is not None else None
        previous_count = previous.messageCount if previous is not None else 0

        session.entries = all_entries
        session.byteOffset = batch.newOffset
        session.status = self.derive(session_id, all_entries)
        session.branchChanged = branch_changed
        self.reconciler.sync_flags(session)
        self._sessions[session_id] = session

        if existing is None:
            logger.info("Tracking session %s (%s)", session_id, session.cwd)
            self._emit("created", session)
            if session.gitBranch:
                self._fire_pr_trigger(session)
            return

        has_new_messages = session.status.messageCount > previous_count
        if status_changed(previous, session.status) or has_new_messages or branch_changed:
            self._emit("updated", session, previous)
        if branch_changed and session.gitBranch:
            self._fire_pr_trigger(session)

    async def handle_delete(self, path: Path) -> None:
        session_id = extract_session_id(path)
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        logger.info("Session %s removed", session_id)
        self._emit("deleted", session)

    # ── Hook signals ────────────────────────────────────────────────

    async def handle_signal_file(self, path: Path) -> None:
        signal = await self.reconciler.load(path)
        if signal is None:
            return
        await self.reevaluate(signal.sessionId)

    async def handle_signal_removed(self, path: Path) -> None:
        parsed = self.reconciler.retract(path)
        if parsed is None:
            return
        session_id, kind = parsed
        session = self._sessions.get(session_id)
        if session is None:
            return
        if self.reconciler.removal_requires_replay(kind):
            await self.reevaluate(session_id)
        else:
            self.reconciler.sync_flags(session)

    async def load_existing_signals(self) -> int:
        signals_dir = self.reconciler.signals_dir
        try:
            names = await asyncio.to_thread(os.listdir, signals_dir)
        except FileNotFoundError:
            logger.debug("Signals directory %s does not exist", signals_dir)
            return 0
        except OSError as exc:
            logger.warning("Could not list signals directory %s: %s", signals_dir, exc)
            self.errors.set_error("signals-dir", f"Cannot read {signals_dir}: {exc}", "warning")
            return 0
        self.errors.clear_error("signals-dir")
        loaded = 0
        for name in sorted(names):
            if name.endswith(".json"):
                if await self.reconciler.load(signals_dir / name) is not None:
                    loaded += 1
        for session_id in list(self._sessions):
            await self.reevaluate(session_id)
        return loaded

    # ── Initial scan ────────────────────────────────────────────────

    def _list_transcripts(self) -> list[Path]:
        paths: list[Path] = []
        with os.scandir(self.projects_dir) as projects:
            for project in projects:
                if not project.is_dir():
                    continue
                try:
                    with os.scandir(project.path) as files:
                        for item in files:
                            if item.is_file() and is_session_log(item.name):
                                paths.append(Path(item.path))
                except OSError as exc:
                    logger.warning("Could not list %s: %s", project.path, exc)
        return sorted(paths)

    async def scan_existing(self) -> int:
        try:
            paths = await asyncio.to_thread(self._list_transcripts)
        except OSError as exc:
            logger.error("Could not list projects directory %s: %s", self.projects_dir, exc)
            self.errors.set_error("projects-dir", f"Cannot read {self.projects_dir}: {exc}")
            return 0
        self.errors.clear_error("projects-dir")
        for path in paths:
            await self.handle_file(path)
        logger.info("Initial scan found %d transcript(s), tracking %d session(s)", len(paths), len(self))
        return len(paths)

    # ── PR/CI trigger ───────────────────────────────────────────────

    def _fire_pr_trigger(self, session: SessionState) -> None:
        if self._pr_trigger is None or not session.gitBranch:
            return
        try:
            outcome = self._pr_trigger(session.cwd, session.gitBranch, session.sessionId)
        except Exception:
            logger.exception("PR trigger failed for %s", session.sessionId)
            return
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._trigger_tasks.add(task)
            task.add_done_callback(self._trigger_done)

    def _trigger_done(self, task: asyncio.Task) -> None:
        self._trigger_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("PR trigger callback failed: %s", exc)

    async def close(self) -> None:
        for task in list(self._trigger_tasks):
            task.cancel()
        if self._trigger_tasks:
            await asyncio.gather(*self._trigger_tasks, return_exceptions=True)
        self._trigger_tasks.clear()
