"""Typed parsing of transcript records plus session metadata and path helpers."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

from pydantic import TypeAdapter, ValidationError

from sessionwatch.models import (
    AssistantEntry,
    LogEntry,
    SessionMetadata,
    SystemEntry,
    UserEntry,
)

logger = logging.getLogger("sessionwatch.parser")

_LOG_ENTRY_ADAPTER: TypeAdapter[LogEntry] = TypeAdapter(LogEntry)
_KNOWN_ENTRY_TYPES = {"user", "assistant", "system", "queue-operation", "file-history-snapshot"}
_ORIGINAL_PROMPT_LIMIT = 500


def parse_log_entry(raw: Any) -> LogEntry | None:
    """Validate one decoded JSON object into a LogEntry, or None if unrecognized."""
    if not isinstance(raw, dict):
        return None
    if raw.get("type") not in _KNOWN_ENTRY_TYPES:
        return None
    try:
        return _LOG_ENTRY_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        logger.debug("Skipping invalid %s entry: %s", raw.get("type"), exc.error_count())
        return None


def user_prompt_text(entry: UserEntry) -> str:
    """Human-typed text of a user entry; empty for tool-result carriers."""
    content = entry.message.content
    if isinstance(content, str):
        return content
    if any(block.type == "tool_result" for block in content):
        return ""
    for block in content:
        if block.type == "text" and block.text:
            return block.text
    return ""


def extract_metadata(entries: Iterable[LogEntry]) -> SessionMetadata | None:
    """Extract session id, cwd, branch, first prompt and start time.

    Returns None until both a session id and a working directory have been
    seen, so callers can defer session creation to a later append.
    """
    session_id = ""
    cwd = ""
    git_branch = ""
    original_prompt = ""
    started_at = ""

    for entry in entries:
        if not started_at and entry.timestamp:
            started_at = entry.timestamp
        if not session_id and entry.sessionId:
            session_id = entry.sessionId
        if isinstance(entry, (UserEntry, AssistantEntry, SystemEntry)):
            if not cwd and entry.cwd:
                cwd = entry.cwd
            if not git_branch and entry.gitBranch:
                git_branch = entry.gitBranch
        if not original_prompt and isinstance(entry, UserEntry):
            original_prompt = user_prompt_text(entry)

    if not session_id or not cwd:
        return None

    return SessionMetadata(
        sessionId=session_id,
        cwd=cwd,
        gitBranch=git_branch or None,
        originalPrompt=original_prompt[:_ORIGINAL_PROMPT_LIMIT],
        startedAt=started_at,
    )


def extract_session_id(path: Path | str) -> str:
    """`~/.claude/projects/-Users-kyle/abc123.jsonl` -> `abc123`."""
    return Path(path).stem


def extract_encoded_dir(path: Path | str) -> str:
    """`~/.claude/projects/-Users-kyle-code/abc123.jsonl` -> `-Users-kyle-code`."""
    return Path(path).parent.name


def is_session_log(path: Path | str) -> bool:
    """Top-level session transcripts only; sub-agent and hidden files are ignored."""
    name = Path(path).name
    if not name.endswith(".jsonl"):
        return False
    if name.startswith(".") or name.startswith("agent-"):
        return False
    return True
