"""Hook signal files layered as authoritative overrides on log-derived status.

Signal files are written by agent hooks as `<sessionId>.<kind>.json` in a
directory separate from the transcripts. Precedence, highest first:
ended > permission > stop > working > log-derived status.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sessionwatch.models import (
    HookSignal,
    PermissionRequest,
    SessionState,
    SignalKind,
    StatusResult,
)

logger = logging.getLogger("sessionwatch.signals")

_SIGNAL_FILENAME_PATTERN = re.compile(r"^(.+)\.(working|permission|stop|ended)\.json$")

# Kinds whose assertion retracts other kinds for the same session.
_CLEARED_BY: dict[SignalKind, tuple[SignalKind, ...]] = {
    SignalKind.WORKING: (SignalKind.STOP,),
    SignalKind.PERMISSION: (),
    SignalKind.STOP: (SignalKind.WORKING, SignalKind.PERMISSION),
    SignalKind.ENDED: (SignalKind.WORKING, SignalKind.PERMISSION, SignalKind.STOP),
}


def parse_signal_filename(path: Path | str) -> tuple[str, SignalKind] | None:
    match = _SIGNAL_FILENAME_PATTERN.match(Path(path).name)
    if not match:
        return None
    return match.group(1), SignalKind(match.group(2))


def signal_filename(session_id: str, kind: SignalKind) -> str:
    return f"{session_id}.{kind.value}.json"


def read_signal(path: Path) -> HookSignal | None:
    """Read a signal file. Returns None if it is not a signal or vanished mid-read."""
    parsed = parse_signal_filename(path)
    if parsed is None:
        return None
    session_id, kind = parsed
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.debug("Ignoring unreadable signal %s: %s", path.name, exc)
        return None
    return HookSignal(sessionId=session_id, kind=kind, payload=data if isinstance(data, dict) else {})


@dataclass(frozen=True)
class SessionSignals:
    working: bool = False
    permission: Optional[PermissionRequest] = None
    stop: bool = False
    ended: bool = False

    @property
    def any(self) -> bool:
        return self.working or self.stop or self.ended or self.permission is not None


def reconcile(result: StatusResult, signals: SessionSignals) -> StatusResult:
    """Overlay asserted hook signals on a log-derived status."""
    if signals.ended:
        return result.model_copy(update={"status": "idle", "hasPendingToolUse": False})
    if signals.permission is not None:
        return result.model_copy(update={"status": "waiting", "hasPendingToolUse": True})
    if signals.stop:
        return result.model_copy(update={"status": "waiting", "hasPendingToolUse": False})
    if signals.working:
        return result.model_copy(update={"status": "working", "hasPendingToolUse": False})
    return result


class SignalStore:
    """Currently asserted signals, keyed by session id then kind."""

    def __init__(self) -> None:
        self._signals: dict[str, dict[SignalKind, HookSignal]] = {}

    def assert_signal(self, signal: HookSignal) -> None:
        kinds = self._signals.setdefault(signal.sessionId, {})
        for cleared in _CLEARED_BY[signal.kind]:
            kinds.pop(cleared, None)
        kinds[signal.kind] = signal

    def retract(self, session_id: str, kind: SignalKind) -> HookSignal | None:
        kinds = self._signals.get(session_id)
        if not kinds:
            return None
        removed = kinds.pop(kind, None)
        if not kinds:
            self._signals.pop(session_id, None)
        return removed

    def has(self, session_id: str, kind: SignalKind) -> bool:
        return kind in self._signals.get(session_id, {})

    def get(self, session_id: str) -> SessionSignals:
        kinds = self._signals.get(session_id, {})
        permission = kinds.get(SignalKind.PERMISSION)
        return SessionSignals(
            working=SignalKind.WORKING in kinds,
            permission=permission.permission_request() if permission else None,
            stop=SignalKind.STOP in kinds,
            ended=SignalKind.ENDED in kinds,
        )

    def session_ids(self) -> list[str]:
        return list(self._signals)


class SignalReconciler:
    """Tracks hook signals and applies them to session state."""

    def __init__(self, signals_dir: Path, store: SignalStore | None = None):
        self.signals_dir = signals_dir
        self.store = store or SignalStore()

    async def load(self, path: Path) -> HookSignal | None:
        signal = await asyncio.to_thread(read_signal, path)
        if signal is None:
            return None
        self.store.assert_signal(signal)
        if signal.kind == SignalKind.PERMISSION:
            logger.info(
                "Pending permission for session %s: %s",
                signal.sessionId,
                signal.permission_request().tool_name or "unknown tool",
            )
        else:
            logger.info("%s signal for session %s", signal.kind.value.capitalize(), signal.sessionId)
        return signal

    def retract(self, path: Path) -> tuple[str, SignalKind] | None:
        parsed = parse_signal_filename(path)
        if parsed is None:
            return None
        session_id, kind = parsed
        self.store.retract(session_id, kind)
        logger.info("Signal removed for session %s: %s", session_id, kind.value)
        return parsed

    @staticmethod
    def removal_requires_replay(kind: SignalKind) -> bool:
        # Only a withdrawn permission can change the log-derived picture; the
        # other kinds just drop their flag.
        return kind == SignalKind.PERMISSION

    def overlay(self, session_id: str, result: StatusResult) -> StatusResult:
        return reconcile(result, self.store.get(session_id))

    def sync_flags(self, session: SessionState) -> None:
        signals = self.store.get(session.sessionId)
        session.pendingPermission = signals.permission
        session.hasWorkingSignal = signals.working
        session.hasStopSignal = signals.stop
        session.hasEndedSignal = signals.ended

    async def consume(self, session_id: str, kind: SignalKind) -> bool:
        """Retract a signal the transcript has made obsolete and delete its file."""
        if self.store.retract(session_id, kind) is None:
            return False
        path = self.signals_dir / signal_filename(session_id, kind)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove signal file %s: %s", path.name, exc)
        return True
