"""
Data models for Overwatch.

Covers:
- Session records owned by the registry (dataclass)
- Incoming hook events (pydantic)
- API / WebSocket response schemas (pydantic)
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def project_name_from_path(project_path: str) -> str:
    """Final path segment, falling back to the full path."""
    return project_path.rstrip("/").split("/")[-1] or project_path


class SessionStatus(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    STALE = "stale"
    ENDED = "ended"


class PendingState(str, Enum):
    """What a blocked session is waiting on from a human."""

    PERMISSION_REQUEST = "permission-request"
    IDLE_PROMPT = "idle-prompt"
    ELICITATION_DIALOG = "elicitation-dialog"

    @classmethod
    def from_notification_type(cls, value: Optional[str]) -> Optional["PendingState"]:
        """Map a raw hook ``notification_type`` to a pending state, if recognized."""
        if not value:
            return None
        return NOTIFICATION_TYPES.get(value)


NOTIFICATION_TYPES = {
    "permission_prompt": PendingState.PERMISSION_REQUEST,
    "idle_prompt": PendingState.IDLE_PROMPT,
    "elicitation_dialog": PendingState.ELICITATION_DIALOG,
}


class PermissionResolution(str, Enum):
    APPROVED = "approved"
    DENIED = "denied"
    TIMEOUT = "timeout"
    PENDING = "pending"


class EventType(str, Enum):
    SESSION_START = "session-start"
    SESSION_END = "session-end"
    PRE_TOOL = "pre-tool"
    POST_TOOL = "post-tool"
    NOTIFICATION = "notification"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "EventType":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


# ─── Session Record ──────────────────────────────────────────────────


@dataclass
class Session:
    """
    One record per agent process ever observed.

    ``status`` is filled in by the registry at read time; only ``ended_at``
    is authoritative for the terminal state.
    """

    id: str
    project_path: str
    project_name: str
    last_activity_at: datetime
    started_at: datetime
    transcript_path: str = ""
    last_tool: str = ""
    last_tool_input: str = ""
    pending_state: Optional[PendingState] = None
    pending_message: str = ""
    ended_at: Optional[datetime] = None
    status: SessionStatus = SessionStatus.ACTIVE

    @property
    def ended(self) -> bool:
        return self.ended_at is not None

    def to_response(self) -> "SessionResponse":
        return SessionResponse(
            id=self.id,
            projectPath=self.project_path,
            projectName=self.project_name,
            status=self.status,
            lastActivityAt=self.last_activity_at.isoformat(),
            lastTool=self.last_tool,
            lastToolInput=self.last_tool_input,
            startedAt=self.started_at.isoformat(),
            transcriptPath=self.transcript_path,
            pendingState=self.pending_state,
            pendingMessage=self.pending_message,
        )

    def to_dict(self) -> dict:
        return self.to_response().model_dump(mode="json")


@dataclass(frozen=True)
class ProcessInfo:
    """A running process of interest and where it runs."""

    pid: int
    cwd: str
    started_at: Optional[datetime] = None


@dataclass
class TranscriptCandidate:
    """A previously recorded session transcript from a project index."""

    session_id: str
    project_path: str
    created_at: datetime
    modified_at: datetime
    transcript_file: str = ""
    last_tool: str = ""
    last_tool_input: str = ""
    recently_modified: bool = False


@dataclass
class ReconcileInputs:
    """Fully gathered ground truth for one reconciliation pass."""

    processes: list[ProcessInfo] = field(default_factory=list)
    candidates: list[TranscriptCandidate] = field(default_factory=list)
    gathered_at: datetime = field(default_factory=utcnow)


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass."""

    imported: list[str] = field(default_factory=list)
    ended: list[str] = field(default_factory=list)
    restored_pending: list[str] = field(default_factory=list)
    skipped: bool = False
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "ok": not self.skipped,
            "discovered": len(self.imported),
            "imported": self.imported,
            "ended": self.ended,
            "restoredPending": self.restored_pending,
            "skipped": self.skipped,
            "reason": self.reason,
        }


# ─── Hook Events ─────────────────────────────────────────────────────


class HookEvent(BaseModel):
    """An event forwarded by the agent hook. Unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    eventType: str = "unknown"
    timestamp: Optional[str] = None
    session_id: Optional[str] = None
    cwd: Optional[str] = None
    tool_name: Optional[str] = None
    tool_input: Any = None
    transcript_path: Optional[str] = None
    message: Optional[str] = None
    notification_type: Optional[str] = None

    @property
    def event_type(self) -> EventType:
        return EventType.parse(self.eventType)


def unwrap_envelope(payload: Mapping) -> dict:
    """
    Flatten the enveloped form ``{"eventType", "timestamp", "data": {...}}``
    produced by hook forwarders that cannot merge JSON. Top-level keys win.
    """
    data = dict(payload)
    inner = data.get("data")
    if isinstance(inner, Mapping) and not data.get("session_id"):
        data = {**inner, **{k: v for k, v in data.items() if k != "data"}}
    return data


def summarize_tool_input(tool_input: Any, max_length: int = 100) -> str:
    """Bounded one-line summary of a tool input payload."""
    if tool_input is None:
        return ""
    if isinstance(tool_input, str):
        text = tool_input
    elif isinstance(tool_input, (dict, list)):
        text = json.dumps(tool_input, separators=(",", ":"), ensure_ascii=False)
    else:
        text = str(tool_input)
    if len(text) > max_length:
        return f"{text[:max_length]}..."
    return text


# ─── API Models ──────────────────────────────────────────────────────


class SessionResponse(BaseModel):
    """Serialized session for REST and WebSocket payloads."""

    id: str
    projectPath: str
    projectName: str
    status: SessionStatus
    lastActivityAt: str
    lastTool: str = ""
    lastToolInput: str = ""
    startedAt: str
    transcriptPath: str = ""
    pendingState: Optional[PendingState] = None
    pendingMessage: str = ""


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]
    count: int


class EventAck(BaseModel):
    ok: bool = True
    error: Optional[str] = None


class PendingInfo(BaseModel):
    """Last unresolved pending notification recovered from the raw event log."""

    kind: PendingState
    message: str = ""


class PermissionRequestInfo(BaseModel):
    id: int
    sessionId: str
    projectPath: str
    projectName: str
    toolName: str
    toolInput: str = ""
    message: str
    requestedAt: str
    resolvedAt: Optional[str] = None
    resolution: PermissionResolution = PermissionResolution.PENDING


class PermissionAnalytics(BaseModel):
    totalRequests: int = 0
    byTool: dict[str, int] = Field(default_factory=dict)
    byProject: dict[str, int] = Field(default_factory=dict)
    byResolution: dict[str, int] = Field(default_factory=dict)
