"""
Persistence bridge between the session registry and the database.

The registry treats this as a crash-safe mirror: every state change is
written through, and the raw event log is read back after a restart to
recover sessions that were left waiting on a human.
"""

import json
from typing import Any, List, Optional, Protocol

from overwatch.database import OverwatchDatabase
from overwatch.logger import get_logger
from overwatch.models import (
    EventType,
    PendingInfo,
    PendingState,
    PermissionResolution,
    Session,
    unwrap_envelope,
)

logger = get_logger(__name__)


class SessionStore(Protocol):
    """What the registry and reconciler need from durable storage."""

    def load_all(self) -> List[Session]: ...

    def upsert(self, session: Session) -> None: ...

    def mark_ended(self, session: Session) -> None: ...

    def get_last_unresolved_pending(self, session_id: str) -> Optional[PendingInfo]: ...

    def log_event(
        self,
        session_id: str,
        event_type: str,
        tool_name: Optional[str] = None,
        tool_input: Optional[str] = None,
    ) -> None: ...

    def log_permission_request(self, session: Session, message: str) -> None: ...

    def resolve_permission_request(
        self, session_id: str, resolution: PermissionResolution
    ) -> None: ...


class SessionPersistence:
    """``SessionStore`` backed by ``OverwatchDatabase``."""

    def __init__(self, db: OverwatchDatabase):
        self.db = db

    def load_all(self) -> List[Session]:
        return self.db.list_sessions()

    def upsert(self, session: Session) -> None:
        self.db.upsert_session(session)

    def mark_ended(self, session: Session) -> None:
        if not self.db.end_session(session.id, session.ended_at):
            # Never persisted before (e.g. an earlier write failed).
            self.db.upsert_session(session)

    def get_last_unresolved_pending(self, session_id: str) -> Optional[PendingInfo]:
        """
        Inspect the last raw event logged for a session.

        Returns the pending state only when that event was a notification of a
        recognized kind; any later activity would have been logged after it.
        """
        last = self.db.get_last_raw_event(session_id)
        if not last or last.get("event_type") != EventType.NOTIFICATION.value:
            return None

        try:
            payload = json.loads(last["payload"])
        except (TypeError, json.JSONDecodeError):
            logger.warning(f"Unreadable raw event payload for session {session_id}")
            return None
        if not isinstance(payload, dict):
            return None
        payload = unwrap_envelope(payload)

        kind = PendingState.from_notification_type(payload.get("notification_type"))
        if kind is None:
            return None
        return PendingInfo(kind=kind, message=payload.get("message") or "")

    # -- History -------------------------------------------------------------

    def log_raw_event(
        self,
        payload: Any,
        endpoint: str = "/events",
        session_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> int:
        return self.db.log_raw_event(payload, endpoint, session_id, event_type)

    def log_event(
        self,
        session_id: str,
        event_type: str,
        tool_name: Optional[str] = None,
        tool_input: Optional[str] = None,
    ) -> None:
        self.db.log_event(session_id, event_type, tool_name, tool_input)

    def log_file_access(self, session_id: str, file_path: str, access_type: str) -> None:
        self.db.log_file_access(session_id, file_path, access_type)

    def log_permission_request(self, session: Session, message: str) -> None:
        self.db.log_permission_request(
            session_id=session.id,
            project_path=session.project_path,
            project_name=session.project_name,
            tool_name=session.last_tool or "unknown",
            tool_input=session.last_tool_input,
            message=message,
        )

    def resolve_permission_request(
        self, session_id: str, resolution: PermissionResolution
    ) -> None:
        if self.db.resolve_permission_request(session_id, resolution):
            logger.debug(f"Permission request for {session_id} resolved: {resolution.value}")

    def cleanup(self, event_days: int = 30, raw_event_days: int = 7) -> int:
        """Drop history older than the retention windows."""
        removed = (
            self.db.cleanup_old_events(event_days)
            + self.db.cleanup_old_file_access(event_days)
            + self.db.cleanup_old_raw_events(raw_event_days)
        )
        if removed:
            logger.info(f"Removed {removed} expired history rows")
        return removed
