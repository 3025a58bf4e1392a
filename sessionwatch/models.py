"""Pydantic models for transcript entries, status derivation and session state."""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ── Transcript entries ──────────────────────────────────────────────

class ContentBlock(BaseModel):
    """One block of message content (text, tool_use, tool_result, thinking, image)."""

    model_config = ConfigDict(extra="allow")

    type: str = ""
    text: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None
    input: Any = None
    tool_use_id: Optional[str] = None
    content: Any = None
    is_error: Optional[bool] = None
    thinking: Optional[str] = None


class UserMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: str = "user"
    content: Union[str, list[ContentBlock]] = ""


class AssistantMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: str = "assistant"
    model: str = ""
    id: str = ""
    content: list[ContentBlock] = Field(default_factory=list)
    stop_reason: Optional[str] = None
    usage: Optional[dict[str, Any]] = None


class _EntryBase(BaseModel):
    model_config = ConfigDict(extra="allow")

    sessionId: str = ""
    timestamp: str = ""


class _MessageEntryBase(_EntryBase):
    uuid: str = ""
    parentUuid: Optional[str] = None
    cwd: str = ""
    version: str = ""
    gitBranch: str = ""
    isSidechain: bool = False
    userType: str = ""


class UserEntry(_MessageEntryBase):
    type: Literal["user"] = "user"
    message: UserMessage = Field(default_factory=UserMessage)
    toolUseResult: Any = None


class AssistantEntry(_MessageEntryBase):
    type: Literal["assistant"] = "assistant"
    message: AssistantMessage = Field(default_factory=AssistantMessage)
    requestId: str = ""


class SystemEntry(_MessageEntryBase):
    type: Literal["system"] = "system"
    subtype: str = ""
    level: Optional[str] = None
    stopReason: Optional[str] = None
    toolUseID: Optional[str] = None


class QueueOperationEntry(_EntryBase):
    type: Literal["queue-operation"] = "queue-operation"
    operation: str = ""
    content: Any = None


class FileHistorySnapshotEntry(_EntryBase):
    type: Literal["file-history-snapshot"] = "file-history-snapshot"
    messageId: str = ""
    snapshot: dict[str, Any] = Field(default_factory=dict)
    isSnapshotUpdate: bool = False


LogEntry = Annotated[
    Union[UserEntry, AssistantEntry, SystemEntry, QueueOperationEntry, FileHistorySnapshotEntry],
    Field(discriminator="type"),
]


class SessionMetadata(BaseModel):
    sessionId: str
    cwd: str
    gitBranch: Optional[str] = None
    originalPrompt: str = ""
    startedAt: str = ""


# ── Status derivation ───────────────────────────────────────────────

class MachineState(str, Enum):
    WORKING = "working"
    WAITING_FOR_APPROVAL = "waiting_for_approval"
    WAITING_FOR_INPUT = "waiting_for_input"


class StatusEventType(str, Enum):
    USER_PROMPT = "USER_PROMPT"
    ASSISTANT_STREAMING = "ASSISTANT_STREAMING"
    ASSISTANT_TOOL_USE = "ASSISTANT_TOOL_USE"
    TOOL_RESULT = "TOOL_RESULT"
    TURN_END = "TURN_END"
    STALE_TIMEOUT = "STALE_TIMEOUT"


class StatusEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: StatusEventType
    timestamp: str = ""
    toolUseIds: tuple[str, ...] = ()


class StatusContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    lastActivityAt: str = ""
    messageCount: int = 0
    hasPendingToolUse: bool = False
    pendingToolIds: tuple[str, ...] = ()


SessionStatus = Literal["working", "waiting", "idle"]


class StatusResult(BaseModel):
    """Externally visible status. `idle` only ever comes from an ended signal."""

    status: SessionStatus = "waiting"
    machineState: MachineState = MachineState.WAITING_FOR_INPUT
    hasPendingToolUse: bool = False
    lastActivityAt: str = ""
    messageCount: int = 0


# ── Hook signals ────────────────────────────────────────────────────

class SignalKind(str, Enum):
    WORKING = "working"
    PERMISSION = "permission"
    STOP = "stop"
    ENDED = "ended"


class PermissionRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    tool_name: str = ""
    tool_input: Any = None
    timestamp: Optional[str] = None


class HookSignal(BaseModel):
    sessionId: str
    kind: SignalKind
    payload: dict[str, Any] = Field(default_factory=dict)

    def permission_request(self) -> PermissionRequest:
        return PermissionRequest.model_validate(self.payload)


# ── Git / session state ─────────────────────────────────────────────

class GitInfo(BaseModel):
    repoUrl: Optional[str] = None
    repoId: Optional[str] = None
    branch: Optional[str] = None
    isGitRepo: bool = False


class SessionState(BaseModel):
    sessionId: str
    filePath: str
    encodedDir: str = ""
    cwd: str = ""
    gitBranch: Optional[str] = None
    gitRepoUrl: Optional[str] = None
    gitRepoId: Optional[str] = None
    originalPrompt: str = ""
    startedAt: str = ""
    byteOffset: int = 0
    entries: list[LogEntry] = Field(default_factory=list)
    status: StatusResult = Field(default_factory=StatusResult)
    pendingPermission: Optional[PermissionRequest] = None
    hasWorkingSignal: bool = False
    hasStopSignal: bool = False
    hasEndedSignal: bool = False
    branchChanged: bool = False


class SessionEvent(BaseModel):
    type: Literal["created", "updated", "deleted"]
    session: SessionState
    previousStatus: Optional[StatusResult] = None
