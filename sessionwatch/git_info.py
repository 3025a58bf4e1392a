"""Git repository lookups for session working directories, with a short-TTL cache."""
from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from sessionwatch import config
from sessionwatch.models import GitInfo

logger = logging.getLogger("sessionwatch.git")

_REMOTE_PATTERNS = (
    re.compile(r"^git@[^:]+:(?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$"),
    re.compile(r"^(?:https?|ssh|git)://(?:[^@/]+@)?[^/]+/(?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$"),
)


async def run_git(args: Sequence[str], cwd: str, timeout: float = config.GIT_TIMEOUT_SECONDS) -> str:
    """Run a git command, returning stripped stdout or "" on any failure."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except (FileNotFoundError, NotADirectoryError, PermissionError):
        return ""
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.warning("git %s timed out in %s", " ".join(args), cwd)
        return ""
    if proc.returncode != 0:
        return ""
    return stdout.decode("utf-8", errors="replace").strip()


def parse_repo_id(remote_url: str | None) -> str | None:
    """`git@github.com:owner/repo.git` -> `owner/repo`."""
    if not remote_url:
        return None
    for pattern in _REMOTE_PATTERNS:
        match = pattern.match(remote_url.strip())
        if match:
            return f"{match.group('owner')}/{match.group('repo')}"
    return None


async def get_current_branch(cwd: str) -> str | None:
    branch = await run_git(["rev-parse", "--abbrev-ref", "HEAD"], cwd)
    if not branch or branch == "HEAD":
        return None
    return branch


async def get_git_info(cwd: str) -> GitInfo:
    inside = await run_git(["rev-parse", "--is-inside-work-tree"], cwd)
    if inside != "true":
        return GitInfo()
    remote = await run_git(["config", "--get", "remote.origin.url"], cwd) or None
    return GitInfo(
        repoUrl=remote,
        repoId=parse_repo_id(remote),
        branch=await get_current_branch(cwd),
        isGitRepo=True,
    )


@dataclass
class _CacheEntry:
    info: GitInfo
    repo_checked_at: float
    branch_checked_at: float


class GitInfoCache:
    """Repo URL/id are cached for a long TTL; the branch is re-resolved often."""

    def __init__(
        self,
        branch_ttl: float = config.GIT_BRANCH_TTL_SECONDS,
        repo_ttl: float = config.GIT_REPO_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.branch_ttl = branch_ttl
        self.repo_ttl = repo_ttl
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}

    async def get(self, cwd: str) -> GitInfo:
        now = self._clock()
        entry = self._entries.get(cwd)
        if entry is None or now - entry.repo_checked_at > self.repo_ttl:
            info = await get_git_info(cwd)
            self._entries[cwd] = _CacheEntry(info=info, repo_checked_at=now, branch_checked_at=now)
            return info
        if now - entry.branch_checked_at > self.branch_ttl:
            branch: Optional[str] = await get_current_branch(cwd) if entry.info.isGitRepo else None
            entry.info = entry.info.model_copy(update={"branch": branch})
            entry.branch_checked_at = now
        return entry.info

    def clear(self, cwd: str | None = None) -> None:
        if cwd is None:
            self._entries.clear()
        else:
            self._entries.pop(cwd, None)
