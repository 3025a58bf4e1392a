"""Session status state machine.

States:
- working: the agent is actively processing
- waiting_for_approval: a tool call needs user approval
- waiting_for_input: the turn finished, waiting for the user

The machine never produces "idle"; consumers derive it from elapsed time since
lastActivityAt, and an ended hook signal can assert it (see signals.py).
"""
from __future__ import annotations

import time
from typing import Callable, Iterable, Optional

from sessionwatch import config
from sessionwatch.date_utils import iso_to_epoch
from sessionwatch.models import (
    LogEntry,
    MachineState,
    StatusContext,
    StatusEvent,
    StatusEventType,
    StatusResult,
)
from sessionwatch.status.classifier import classify_entries

Effect = Callable[[StatusContext, StatusEvent], StatusContext]

WORKING = MachineState.WORKING
WAITING_FOR_APPROVAL = MachineState.WAITING_FOR_APPROVAL
WAITING_FOR_INPUT = MachineState.WAITING_FOR_INPUT


def _touch(ctx: StatusContext, event: StatusEvent) -> StatusContext:
    return ctx.model_copy(update={"lastActivityAt": event.timestamp})


def _prompt_resets_pending(ctx: StatusContext, event: StatusEvent) -> StatusContext:
    return ctx.model_copy(
        update={
            "lastActivityAt": event.timestamp,
            "messageCount": ctx.messageCount + 1,
            "hasPendingToolUse": False,
            "pendingToolIds": (),
        }
    )


def _prompt(ctx: StatusContext, event: StatusEvent) -> StatusContext:
    return ctx.model_copy(
        update={"lastActivityAt": event.timestamp, "messageCount": ctx.messageCount + 1}
    )


def _tool_use(ctx: StatusContext, event: StatusEvent) -> StatusContext:
    return ctx.model_copy(
        update={
            "lastActivityAt": event.timestamp,
            "messageCount": ctx.messageCount + 1,
            "hasPendingToolUse": True,
            "pendingToolIds": tuple(event.toolUseIds),
        }
    )


def _tool_result(ctx: StatusContext, event: StatusEvent) -> StatusContext:
    resolved = set(event.toolUseIds)
    remaining = tuple(tool_id for tool_id in ctx.pendingToolIds if tool_id not in resolved)
    return ctx.model_copy(
        update={
            "lastActivityAt": event.timestamp,
            "messageCount": ctx.messageCount + 1,
            "pendingToolIds": remaining,
            "hasPendingToolUse": bool(remaining),
        }
    )


def _turn_end(ctx: StatusContext, event: StatusEvent) -> StatusContext:
    return ctx.model_copy(
        update={
            "lastActivityAt": event.timestamp,
            "hasPendingToolUse": False,
            "pendingToolIds": (),
        }
    )


def _stale_flag_only(ctx: StatusContext, event: StatusEvent) -> StatusContext:
    return ctx.model_copy(update={"hasPendingToolUse": False})


def _stale_clear_pending(ctx: StatusContext, event: StatusEvent) -> StatusContext:
    return ctx.model_copy(update={"hasPendingToolUse": False, "pendingToolIds": ()})


TRANSITIONS: dict[tuple[MachineState, StatusEventType], tuple[MachineState, Effect]] = {
    (WORKING, StatusEventType.USER_PROMPT): (WORKING, _prompt_resets_pending),
    (WORKING, StatusEventType.ASSISTANT_STREAMING): (WORKING, _touch),
    (WORKING, StatusEventType.ASSISTANT_TOOL_USE): (WAITING_FOR_APPROVAL, _tool_use),
    (WORKING, StatusEventType.TOOL_RESULT): (WORKING, _tool_result),
    (WORKING, StatusEventType.TURN_END): (WAITING_FOR_INPUT, _turn_end),
    (WORKING, StatusEventType.STALE_TIMEOUT): (WAITING_FOR_INPUT, _stale_flag_only),
    (WAITING_FOR_APPROVAL, StatusEventType.TOOL_RESULT): (WORKING, _tool_result),
    (WAITING_FOR_APPROVAL, StatusEventType.USER_PROMPT): (WORKING, _prompt_resets_pending),
    (WAITING_FOR_APPROVAL, StatusEventType.TURN_END): (WAITING_FOR_INPUT, _turn_end),
    (WAITING_FOR_APPROVAL, StatusEventType.STALE_TIMEOUT): (WAITING_FOR_INPUT, _stale_clear_pending),
    (WAITING_FOR_INPUT, StatusEventType.USER_PROMPT): (WORKING, _prompt),
    # Resumed sessions and partial logs can start mid-turn.
    (WAITING_FOR_INPUT, StatusEventType.ASSISTANT_STREAMING): (WAITING_FOR_INPUT, _touch),
    (WAITING_FOR_INPUT, StatusEventType.TURN_END): (WAITING_FOR_INPUT, _touch),
}


class StatusMachine:
    """Folds status events into (state, context). Unlisted transitions are ignored."""

    def __init__(self) -> None:
        self.state: MachineState = WAITING_FOR_INPUT
        self.context = StatusContext()

    def send(self, event: StatusEvent) -> bool:
        """Apply one event. Returns False when the event has no transition from the current state."""
        transition = TRANSITIONS.get((self.state, event.type))
        if transition is None:
            return False
        target, effect = transition
        self.context = effect(self.context, event)
        self.state = target
        return True

    def replay(self, events: Iterable[StatusEvent]) -> "StatusMachine":
        for event in events:
            self.send(event)
        return self

    def snapshot(self) -> tuple[MachineState, StatusContext]:
        return self.state, self.context

    def is_stale(self, now: float, stale_timeout: float) -> bool:
        elapsed = now - iso_to_epoch(self.context.lastActivityAt)
        if elapsed <= stale_timeout:
            return False
        if self.state == WORKING:
            return not self.context.hasPendingToolUse
        return self.state == WAITING_FOR_APPROVAL

    def apply_stale_timeout(self, now: float, stale_timeout: float) -> bool:
        """Synthesize one STALE_TIMEOUT when the session has gone quiet."""
        if not self.is_stale(now, stale_timeout):
            return False
        return self.send(StatusEvent(type=StatusEventType.STALE_TIMEOUT))


def derive_machine_status(
    events: Iterable[StatusEvent],
    now: Optional[float] = None,
    stale_timeout: float = config.STALE_TIMEOUT_SECONDS,
) -> tuple[MachineState, StatusContext]:
    """Replay events into a fresh machine and apply the stale-timeout correction."""
    machine = StatusMachine().replay(events)
    machine.apply_stale_timeout(time.time() if now is None else now, stale_timeout)
    return machine.snapshot()


def to_status_result(state: MachineState, context: StatusContext) -> StatusResult:
    return StatusResult(
        status="working" if state == WORKING else "waiting",
        machineState=state,
        hasPendingToolUse=context.hasPendingToolUse,
        lastActivityAt=context.lastActivityAt,
        messageCount=context.messageCount,
    )


def derive_status(
    entries: Iterable[LogEntry],
    now: Optional[float] = None,
    stale_timeout: float = config.STALE_TIMEOUT_SECONDS,
) -> StatusResult:
    state, context = derive_machine_status(classify_entries(entries), now, stale_timeout)
    return to_status_result(state, context)


def status_changed(prev: Optional[StatusResult], new: StatusResult) -> bool:
    if prev is None:
        return True
    return (
        prev.status != new.status
        or prev.hasPendingToolUse != new.hasPendingToolUse
        or prev.machineState != new.machineState
    )


def format_status(result: StatusResult) -> str:
    if result.status == "working":
        return "Working"
    if result.status == "idle":
        return "Idle"
    return "Tool pending" if result.hasPendingToolUse else "Waiting for input"


def status_key(result: StatusResult) -> str:
    if result.status == "waiting" and result.hasPendingToolUse:
        return "waiting:tool"
    return result.status
