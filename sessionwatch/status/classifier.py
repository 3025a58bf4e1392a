"""Map transcript entries to status events."""
from __future__ import annotations

from typing import Iterable

from sessionwatch.models import (
    AssistantEntry,
    LogEntry,
    StatusEvent,
    StatusEventType,
    SystemEntry,
    UserEntry,
)

# Tools that run without user confirmation. WebFetch, WebSearch, NotebookEdit
# and AskUserQuestion are configuration-dependent and deliberately absent.
AUTO_APPROVED_TOOLS = frozenset(
    {
        "Task",
        "Read",
        "Glob",
        "Grep",
        "TodoWrite",
        "TaskOutput",
    }
)

TURN_END_SUBTYPES = frozenset({"turn_duration", "stop_hook_summary"})


def classify_entry(entry: LogEntry) -> StatusEvent | None:
    if isinstance(entry, UserEntry):
        content = entry.message.content
        if isinstance(content, str):
            return StatusEvent(type=StatusEventType.USER_PROMPT, timestamp=entry.timestamp)
        tool_use_ids = tuple(
            block.tool_use_id or "" for block in content if block.type == "tool_result"
        )
        if tool_use_ids:
            return StatusEvent(
                type=StatusEventType.TOOL_RESULT,
                timestamp=entry.timestamp,
                toolUseIds=tool_use_ids,
            )
        if any(block.type == "text" for block in content):
            return StatusEvent(type=StatusEventType.USER_PROMPT, timestamp=entry.timestamp)
        return None

    if isinstance(entry, AssistantEntry):
        tool_use_ids = tuple(
            block.id or ""
            for block in entry.message.content
            if block.type == "tool_use" and block.name not in AUTO_APPROVED_TOOLS
        )
        if tool_use_ids:
            return StatusEvent(
                type=StatusEventType.ASSISTANT_TOOL_USE,
                timestamp=entry.timestamp,
                toolUseIds=tool_use_ids,
            )
        return StatusEvent(type=StatusEventType.ASSISTANT_STREAMING, timestamp=entry.timestamp)

    if isinstance(entry, SystemEntry) and entry.subtype in TURN_END_SUBTYPES:
        return StatusEvent(type=StatusEventType.TURN_END, timestamp=entry.timestamp)

    return None


def classify_entries(entries: Iterable[LogEntry]) -> list[StatusEvent]:
    events: list[StatusEvent] = []
    for entry in entries:
        event = classify_entry(entry)
        if event is not None:
            events.append(event)
    return events
