"""
Session registry: the single source of truth for session records.

All mutation funnels through this class. Status is never trusted from a
stored field: it is derived from ``last_activity_at`` at every read, except
for ``ended`` which is sticky. Every state change is written through to the
store and then announced to the notifier, in that order. A failed write is
logged and never rolls back in-memory state or suppresses the notification.
"""

from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from overwatch.logger import get_logger
from overwatch.models import (
    PendingState,
    PermissionResolution,
    Session,
    SessionStatus,
    project_name_from_path,
    utcnow,
)
from overwatch.session.persistence import SessionStore

logger = get_logger(__name__)

DEFAULT_ACTIVE_THRESHOLD = timedelta(seconds=30)
DEFAULT_IDLE_THRESHOLD = timedelta(minutes=5)


class ChangeNotifier(Protocol):
    """Receives registry mutations and pushes them outward."""

    def session_changed(self, session: Session) -> None: ...

    def session_ended(self, session_id: str) -> None: ...


class NullNotifier:
    def session_changed(self, session: Session) -> None:
        pass

    def session_ended(self, session_id: str) -> None:
        pass


def derive_status(
    session: Session,
    now: datetime,
    active_threshold: timedelta = DEFAULT_ACTIVE_THRESHOLD,
    idle_threshold: timedelta = DEFAULT_IDLE_THRESHOLD,
) -> SessionStatus:
    """
    Status as a pure function of (ended?, now - last_activity_at).

    Boundaries are exclusive: exactly ``active_threshold`` elapsed is idle,
    exactly ``idle_threshold`` elapsed is stale.
    """
    if session.ended:
        return SessionStatus.ENDED
    elapsed = now - session.last_activity_at
    if elapsed < active_threshold:
        return SessionStatus.ACTIVE
    if elapsed < idle_threshold:
        return SessionStatus.IDLE
    return SessionStatus.STALE


class SessionRegistry:
    """In-memory map of session id to session record."""

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        notifier: Optional[ChangeNotifier] = None,
        active_threshold: timedelta = DEFAULT_ACTIVE_THRESHOLD,
        idle_threshold: timedelta = DEFAULT_IDLE_THRESHOLD,
        clock: Callable[[], datetime] = utcnow,
    ):
        if idle_threshold <= active_threshold:
            raise ValueError("idle threshold must be greater than active threshold")
        self.store = store
        self.notifier: ChangeNotifier = notifier or NullNotifier()
        self.active_threshold = active_threshold
        self.idle_threshold = idle_threshold
        self.clock = clock
        self._sessions: Dict[str, Session] = {}

    # -- Lifecycle -----------------------------------------------------------

    def init(self, sessions: Iterable[Session]) -> int:
        """Load records from the durable store. No writes, no notifications."""
        self._sessions.clear()
        for session in sessions:
            record = replace(session)
            if record.ended:
                record.pending_state = None
                record.pending_message = ""
            self._sessions[record.id] = record
        logger.info(f"Registry initialized with {len(self._sessions)} sessions")
        return len(self._sessions)

    def flush(self) -> int:
        """Write every record through to the store."""
        if self.store is None:
            return 0
        written = 0
        for session in self._sessions.values():
            if self._persist("flush", session.id, self.store.upsert, self._snapshot(session)):
                written += 1
        return written

    # -- Queries -------------------------------------------------------------

    def status_of(self, session: Session) -> SessionStatus:
        return derive_status(
            session, self.clock(), self.active_threshold, self.idle_threshold
        )

    def _snapshot(self, session: Session) -> Session:
        return replace(session, status=self.status_of(session))

    def get(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        return self._snapshot(session) if session else None

    def list(self) -> List[Session]:
        """All sessions, most recent activity first."""
        sessions = [self._snapshot(s) for s in self._sessions.values()]
        return sorted(sessions, key=lambda s: s.last_activity_at, reverse=True)

    def live_sessions_by_path(self) -> Dict[str, List[Session]]:
        """Non-ended sessions grouped by project path, most recent first."""
        grouped: Dict[str, List[Session]] = defaultdict(list)
        for session in self.list():
            if not session.ended:
                grouped[session.project_path].append(session)
        return dict(grouped)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    # -- Mutations -----------------------------------------------------------

    def create(self, session_id: str, project_path: str, transcript_path: str = "") -> Session:
        """Insert a new active session; an existing id is returned unchanged."""
        existing = self._sessions.get(session_id)
        if existing is not None:
            return self._snapshot(existing)

        now = self.clock()
        session = Session(
            id=session_id,
            project_path=project_path,
            project_name=project_name_from_path(project_path),
            last_activity_at=now,
            started_at=now,
            transcript_path=transcript_path or "",
        )
        self._sessions[session_id] = session

        snapshot = self._snapshot(session)
        if self.store is not None:
            self._persist("create", session_id, self.store.upsert, snapshot)
            self._persist("create", session_id, self.store.log_event, session_id, "session-start")
        self.notifier.session_changed(snapshot)
        return snapshot

    def record_activity(
        self,
        session_id: str,
        tool: Optional[str] = None,
        tool_input: Optional[str] = None,
    ) -> Optional[Session]:
        """
        Stamp activity and clear any pending state.

        With ``tool`` left as None the tool fields are kept, which is how a
        plain notification confirms the agent is alive.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.ended:
            return self._snapshot(session)

        cleared = session.pending_state
        self._touch(session)
        if tool is not None:
            session.last_tool = tool
            session.last_tool_input = tool_input or ""
        session.pending_state = None
        session.pending_message = ""

        snapshot = self._snapshot(session)
        if self.store is not None:
            self._persist("activity", session_id, self.store.upsert, snapshot)
            if tool is not None:
                self._persist(
                    "activity", session_id, self.store.log_event,
                    session_id, "tool-use", tool, session.last_tool_input,
                )
            else:
                self._persist("activity", session_id, self.store.log_event, session_id, "notification")
            if cleared == PendingState.PERMISSION_REQUEST:
                self._persist(
                    "activity", session_id, self.store.resolve_permission_request,
                    session_id, PermissionResolution.APPROVED,
                )
        self.notifier.session_changed(snapshot)
        return snapshot

    def set_pending(
        self, session_id: str, kind: PendingState, message: str = ""
    ) -> Optional[Session]:
        """Mark a session as blocked on a human. Time alone never clears this."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.ended:
            return self._snapshot(session)

        replaced = session.pending_state
        self._touch(session)
        session.pending_state = kind
        session.pending_message = message or ""

        snapshot = self._snapshot(session)
        if self.store is not None:
            self._persist("pending", session_id, self.store.upsert, snapshot)
            self._persist("pending", session_id, self.store.log_event, session_id, "notification")
            if replaced == PendingState.PERMISSION_REQUEST:
                self._persist(
                    "pending", session_id, self.store.resolve_permission_request,
                    session_id, PermissionResolution.TIMEOUT,
                )
            if kind == PendingState.PERMISSION_REQUEST:
                self._persist(
                    "pending", session_id, self.store.log_permission_request,
                    snapshot, session.pending_message,
                )
        self.notifier.session_changed(snapshot)
        return snapshot

    def end(self, session_id: str) -> Optional[Session]:
        """Terminal transition. Ending twice returns the frozen record."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.ended:
            return self._snapshot(session)

        cleared = session.pending_state
        now = self.clock()
        session.ended_at = now
        if now > session.last_activity_at:
            session.last_activity_at = now
        session.pending_state = None
        session.pending_message = ""

        snapshot = self._snapshot(session)
        if self.store is not None:
            self._persist("end", session_id, self.store.mark_ended, snapshot)
            self._persist("end", session_id, self.store.log_event, session_id, "session-end")
            if cleared == PendingState.PERMISSION_REQUEST:
                self._persist(
                    "end", session_id, self.store.resolve_permission_request,
                    session_id, PermissionResolution.TIMEOUT,
                )
        self.notifier.session_ended(session_id)
        return snapshot

    def import_if_absent(self, session: Session) -> bool:
        """Insert a fully formed record unless the id is already known."""
        if session.id in self._sessions:
            return False

        record = replace(session)
        if record.ended:
            record.pending_state = None
            record.pending_message = ""
        self._sessions[record.id] = record

        snapshot = self._snapshot(record)
        if self.store is not None:
            self._persist("import", record.id, self.store.upsert, snapshot)
        if record.ended:
            self.notifier.session_ended(record.id)
        else:
            self.notifier.session_changed(snapshot)
        return True

    # -- Internal ------------------------------------------------------------

    def _touch(self, session: Session) -> None:
        now = self.clock()
        if now > session.last_activity_at:
            session.last_activity_at = now

    def _persist(self, action: str, session_id: str, fn, *args) -> bool:
        try:
            fn(*args)
            return True
        except Exception as e:
            logger.error(f"Failed to persist {action} for session {session_id}: {e}")
            return False
