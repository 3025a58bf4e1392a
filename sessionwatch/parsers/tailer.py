"""Incremental, offset-based reading of append-only JSONL transcripts.

Only newline-terminated lines are returned. A trailing fragment (a write in
progress) stays on disk until a later call sees its terminating newline, so
the returned offset never moves past an incomplete line.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from sessionwatch.models import LogEntry
from sessionwatch.observability import record_parser_failure
from sessionwatch.parsers.entries import parse_log_entry

logger = logging.getLogger("sessionwatch.tailer")


@dataclass
class TailResult:
    lines: list[str] = field(default_factory=list)
    newOffset: int = 0
    hadPartialLine: bool = False
    wasReset: bool = False


@dataclass
class EntryBatch:
    entries: list[LogEntry] = field(default_factory=list)
    newOffset: int = 0
    hadPartialLine: bool = False
    wasReset: bool = False
    skipped: int = 0


def read_new_lines(path: Path, offset: int = 0) -> TailResult:
    """Return complete lines appended after `offset` and the offset to resume from.

    Raises FileNotFoundError when the file has vanished; callers treat that
    as a pending deletion rather than a failure.
    """
    offset = max(0, int(offset))
    was_reset = False
    with open(path, "rb") as handle:
        size = handle.seek(0, 2)
        if size < offset:
            # Truncated or rotated underneath us.
            offset = 0
            was_reset = True
        if size == offset:
            return TailResult(newOffset=offset, wasReset=was_reset)
        handle.seek(offset)
        raw = handle.read(size - offset)

    last_newline = raw.rfind(b"\n")
    if last_newline < 0:
        return TailResult(newOffset=offset, hadPartialLine=True, wasReset=was_reset)

    complete = raw[: last_newline + 1]
    lines = [
        line.strip()
        for line in complete.decode("utf-8", errors="replace").split("\n")
        if line.strip()
    ]
    return TailResult(
        lines=lines,
        newOffset=offset + len(complete),
        hadPartialLine=last_newline + 1 < len(raw),
        wasReset=was_reset,
    )


async def tail_file(path: Path, offset: int = 0) -> TailResult:
    return await asyncio.to_thread(read_new_lines, path, offset)


def parse_lines(lines: list[str]) -> tuple[list[LogEntry], int]:
    """Parse JSONL lines into entries. Returns (entries, malformed_count)."""
    entries: list[LogEntry] = []
    skipped = 0
    for line in lines:
        try:
            raw = json.loads(line)
        except json.JSONDecodeError:
            skipped += 1
            record_parser_failure("jsonl")
            logger.debug("Skipping malformed JSONL line: %.80s", line)
            continue
        entry = parse_log_entry(raw)
        if entry is not None:
            entries.append(entry)
    return entries, skipped


async def tail_entries(path: Path, offset: int = 0) -> EntryBatch:
    result = await tail_file(path, offset)
    entries, skipped = parse_lines(result.lines)
    return EntryBatch(
        entries=entries,
        newOffset=result.newOffset,
        hadPartialLine=result.hadPartialLine,
        wasReset=result.wasReset,
        skipped=skipped,
    )
