"""
SQLite storage for Overwatch, built on SQLModel.

Tables:
- sessions: durable mirror of the in-memory session registry
- events: append-only session history (start, tool use, notification, end)
- file_access: files touched by Read/Write/Edit tools
- permission_requests: one row per permission prompt, with its resolution
- raw_events: full incoming payloads, used for debugging and restart recovery

All timestamps are stored as naive UTC and returned timezone-aware.
"""

import json
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import event as sa_event
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, SQLModel, create_engine, select
from sqlmodel import Session as DBSession

from overwatch.config import CONFIG
from overwatch.errors import PersistenceError
from overwatch.logger import get_logger
from overwatch.models import (
    PendingState,
    PermissionResolution,
    Session,
    SessionStatus,
    ensure_utc,
    utcnow,
)

logger = get_logger(__name__)


def _to_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return ensure_utc(value).replace(tzinfo=None)


def _from_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return ensure_utc(value)


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = _from_db(value)
    return value.isoformat() if value else None


# ─── Tables ──────────────────────────────────────────────────────────


class SessionModel(SQLModel, table=True):
    __tablename__ = "sessions"

    id: str = Field(primary_key=True)
    project_path: str
    project_name: str
    status: str = Field(index=True)
    last_activity: datetime = Field(index=True)
    last_tool: str = ""
    last_tool_input: str = ""
    started_at: datetime
    ended_at: Optional[datetime] = None
    transcript_path: str = ""
    pending_state: Optional[str] = None
    pending_message: str = ""


class EventModel(SQLModel, table=True):
    __tablename__ = "events"

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(index=True)
    event_type: str
    tool_name: Optional[str] = None
    tool_input: Optional[str] = None
    timestamp: datetime = Field(index=True)


class FileAccessModel(SQLModel, table=True):
    __tablename__ = "file_access"

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(index=True)
    file_path: str = Field(index=True)
    access_type: str
    timestamp: datetime


class PermissionRequestModel(SQLModel, table=True):
    __tablename__ = "permission_requests"

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(index=True)
    project_path: str
    project_name: str = Field(index=True)
    tool_name: str = Field(index=True)
    tool_input: str = ""
    message: str
    requested_at: datetime = Field(index=True)
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = None


class RawEventModel(SQLModel, table=True):
    __tablename__ = "raw_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    payload: str
    received_at: datetime = Field(index=True)
    endpoint: str
    session_id: Optional[str] = Field(default=None, index=True)
    event_type: Optional[str] = Field(default=None, index=True)


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.close()


# ─── Database ────────────────────────────────────────────────────────


class OverwatchDatabase:
    """SQLModel-backed store for sessions, history and analytics."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = Path(db_path or CONFIG.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False},
        )
        sa_event.listen(self.engine, "connect", _set_sqlite_pragmas)
        SQLModel.metadata.create_all(self.engine)
        logger.debug(f"Database ready at {self.db_path}")

    @contextmanager
    def _session(self) -> Iterator[DBSession]:
        try:
            with DBSession(self.engine, expire_on_commit=False) as session:
                yield session
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    def close(self) -> None:
        self.engine.dispose()

    # -- Sessions ------------------------------------------------------------

    @staticmethod
    def _row_to_session(row: SessionModel) -> Session:
        status = SessionStatus(row.status)
        return Session(
            id=row.id,
            project_path=row.project_path,
            project_name=row.project_name,
            last_activity_at=_from_db(row.last_activity),
            started_at=_from_db(row.started_at),
            transcript_path=row.transcript_path or "",
            last_tool=row.last_tool or "",
            last_tool_input=row.last_tool_input or "",
            pending_state=PendingState(row.pending_state) if row.pending_state else None,
            pending_message=row.pending_message or "",
            # Rows written before ended_at existed still carry the status.
            ended_at=_from_db(row.ended_at)
            or (_from_db(row.last_activity) if status == SessionStatus.ENDED else None),
            status=status,
        )

    def upsert_session(self, session: Session) -> None:
        """Insert a session or update its mutable columns."""
        with self._session() as db:
            row = db.get(SessionModel, session.id)
            if row is None:
                row = SessionModel(
                    id=session.id,
                    project_path=session.project_path,
                    project_name=session.project_name,
                    status=session.status.value,
                    last_activity=_to_db(session.last_activity_at),
                    started_at=_to_db(session.started_at),
                    transcript_path=session.transcript_path,
                )
            row.status = session.status.value
            row.last_activity = _to_db(session.last_activity_at)
            row.last_tool = session.last_tool
            row.last_tool_input = session.last_tool_input
            row.pending_state = session.pending_state.value if session.pending_state else None
            row.pending_message = session.pending_message
            row.ended_at = _to_db(session.ended_at)
            db.add(row)
            db.commit()

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._session() as db:
            row = db.get(SessionModel, session_id)
            return self._row_to_session(row) if row else None

    def list_sessions(self) -> List[Session]:
        """All sessions, most recent activity first."""
        with self._session() as db:
            rows = db.exec(
                select(SessionModel).order_by(SessionModel.last_activity.desc())
            ).all()
            return [self._row_to_session(row) for row in rows]

    def end_session(self, session_id: str, ended_at: Optional[datetime] = None) -> bool:
        with self._session() as db:
            row = db.get(SessionModel, session_id)
            if row is None:
                return False
            row.status = SessionStatus.ENDED.value
            row.ended_at = _to_db(ended_at or utcnow())
            row.pending_state = None
            row.pending_message = ""
            db.add(row)
            db.commit()
            return True

    def count_sessions(self) -> int:
        with self._session() as db:
            return db.exec(select(func.count()).select_from(SessionModel)).one()

    # -- Event history -------------------------------------------------------

    def log_event(
        self,
        session_id: str,
        event_type: str,
        tool_name: Optional[str] = None,
        tool_input: Optional[str] = None,
    ) -> None:
        with self._session() as db:
            db.add(
                EventModel(
                    session_id=session_id,
                    event_type=event_type,
                    tool_name=tool_name,
                    tool_input=tool_input,
                    timestamp=_to_db(utcnow()),
                )
            )
            db.commit()

    def get_session_events(self, session_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        with self._session() as db:
            rows = db.exec(
                select(EventModel)
                .where(EventModel.session_id == session_id)
                .order_by(EventModel.timestamp.desc(), EventModel.id.desc())
                .limit(limit)
            ).all()
            return [
                {
                    "id": row.id,
                    "session_id": row.session_id,
                    "event_type": row.event_type,
                    "tool_name": row.tool_name,
                    "tool_input": row.tool_input,
                    "timestamp": _iso(row.timestamp),
                }
                for row in rows
            ]

    # -- File access ---------------------------------------------------------

    def log_file_access(self, session_id: str, file_path: str, access_type: str) -> None:
        with self._session() as db:
            db.add(
                FileAccessModel(
                    session_id=session_id,
                    file_path=file_path,
                    access_type=access_type,
                    timestamp=_to_db(utcnow()),
                )
            )
            db.commit()

    def get_session_files(self, session_id: str) -> List[Dict[str, Any]]:
        """Distinct files touched by a session, latest access first."""
        last_access = func.max(FileAccessModel.timestamp).label("last_access")
        with self._session() as db:
            rows = db.exec(
                select(FileAccessModel.file_path, FileAccessModel.access_type, last_access)
                .where(FileAccessModel.session_id == session_id)
                .group_by(FileAccessModel.file_path)
                .order_by(last_access.desc())
            ).all()
            return [
                {
                    "file_path": file_path,
                    "access_type": access_type,
                    "last_access": _iso(ts) if isinstance(ts, datetime) else ts,
                }
                for file_path, access_type, ts in rows
            ]

    def get_file_history(self, file_path: str) -> List[Dict[str, Any]]:
        with self._session() as db:
            rows = db.exec(
                select(FileAccessModel)
                .where(FileAccessModel.file_path == file_path)
                .order_by(FileAccessModel.timestamp.desc())
            ).all()
            return [
                {
                    "session_id": row.session_id,
                    "file_path": row.file_path,
                    "access_type": row.access_type,
                    "timestamp": _iso(row.timestamp),
                }
                for row in rows
            ]

    # -- Permission requests -------------------------------------------------

    def log_permission_request(
        self,
        session_id: str,
        project_path: str,
        project_name: str,
        tool_name: str,
        tool_input: str,
        message: str,
    ) -> int:
        with self._session() as db:
            row = PermissionRequestModel(
                session_id=session_id,
                project_path=project_path,
                project_name=project_name,
                tool_name=tool_name,
                tool_input=tool_input,
                message=message,
                requested_at=_to_db(utcnow()),
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.id

    def resolve_permission_request(
        self, session_id: str, resolution: PermissionResolution
    ) -> bool:
        """Resolve the most recent unresolved request for a session."""
        with self._session() as db:
            row = db.exec(
                select(PermissionRequestModel)
                .where(PermissionRequestModel.session_id == session_id)
                .where(PermissionRequestModel.resolution.is_(None))
                .order_by(
                    PermissionRequestModel.requested_at.desc(),
                    PermissionRequestModel.id.desc(),
                )
                .limit(1)
            ).first()
            if row is None:
                return False
            row.resolution = resolution.value
            row.resolved_at = _to_db(utcnow())
            db.add(row)
            db.commit()
            return True

    @staticmethod
    def _permission_to_dict(row: PermissionRequestModel) -> Dict[str, Any]:
        return {
            "id": row.id,
            "sessionId": row.session_id,
            "projectPath": row.project_path,
            "projectName": row.project_name,
            "toolName": row.tool_name,
            "toolInput": row.tool_input or "",
            "message": row.message,
            "requestedAt": _iso(row.requested_at),
            "resolvedAt": _iso(row.resolved_at),
            "resolution": row.resolution or PermissionResolution.PENDING.value,
        }

    def get_pending_permission_request(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._session() as db:
            row = db.exec(
                select(PermissionRequestModel)
                .where(PermissionRequestModel.session_id == session_id)
                .where(PermissionRequestModel.resolution.is_(None))
                .order_by(
                    PermissionRequestModel.requested_at.desc(),
                    PermissionRequestModel.id.desc(),
                )
                .limit(1)
            ).first()
            return self._permission_to_dict(row) if row else None

    def list_permission_requests(
        self,
        limit: int = 100,
        tool_name: Optional[str] = None,
        project_name: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        stmt = select(PermissionRequestModel)
        if tool_name:
            stmt = stmt.where(PermissionRequestModel.tool_name == tool_name)
        if project_name:
            stmt = stmt.where(PermissionRequestModel.project_name == project_name)
        stmt = stmt.order_by(
            PermissionRequestModel.requested_at.desc(), PermissionRequestModel.id.desc()
        ).limit(limit)
        with self._session() as db:
            return [self._permission_to_dict(row) for row in db.exec(stmt).all()]

    def get_permission_analytics(self) -> Dict[str, Any]:
        resolution = func.coalesce(
            PermissionRequestModel.resolution, PermissionResolution.PENDING.value
        )
        count = func.count()
        with self._session() as db:
            total = db.exec(select(count).select_from(PermissionRequestModel)).one()
            by_tool = db.exec(
                select(PermissionRequestModel.tool_name, count)
                .group_by(PermissionRequestModel.tool_name)
                .order_by(count.desc())
            ).all()
            by_project = db.exec(
                select(PermissionRequestModel.project_name, count)
                .group_by(PermissionRequestModel.project_name)
                .order_by(count.desc())
            ).all()
            by_resolution = db.exec(select(resolution, count).group_by(resolution)).all()

        return {
            "totalRequests": total,
            "byTool": dict(by_tool),
            "byProject": dict(by_project),
            "byResolution": dict(by_resolution),
        }

    # -- Raw events ----------------------------------------------------------

    def log_raw_event(
        self,
        payload: Any,
        endpoint: str,
        session_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> int:
        with self._session() as db:
            row = RawEventModel(
                payload=json.dumps(payload, default=str),
                received_at=_to_db(utcnow()),
                endpoint=endpoint,
                session_id=session_id or None,
                event_type=event_type or None,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.id

    @staticmethod
    def _raw_to_dict(row: RawEventModel) -> Dict[str, Any]:
        return {
            "id": row.id,
            "payload": row.payload,
            "received_at": _iso(row.received_at),
            "endpoint": row.endpoint,
            "session_id": row.session_id,
            "event_type": row.event_type,
        }

    def get_raw_events(self, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        with self._session() as db:
            rows = db.exec(
                select(RawEventModel)
                .order_by(RawEventModel.received_at.desc(), RawEventModel.id.desc())
                .offset(offset)
                .limit(limit)
            ).all()
            return [self._raw_to_dict(row) for row in rows]

    def get_raw_events_by_session(self, session_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        with self._session() as db:
            rows = db.exec(
                select(RawEventModel)
                .where(RawEventModel.session_id == session_id)
                .order_by(RawEventModel.received_at.desc(), RawEventModel.id.desc())
                .limit(limit)
            ).all()
            return [self._raw_to_dict(row) for row in rows]

    def get_last_raw_event(self, session_id: str) -> Optional[Dict[str, Any]]:
        events = self.get_raw_events_by_session(session_id, limit=1)
        return events[0] if events else None

    # -- Retention -----------------------------------------------------------

    def _delete_older_than(self, model, column, days: int) -> int:
        cutoff = _to_db(datetime.now(timezone.utc) - timedelta(days=days))
        with self._session() as db:
            rows = db.exec(select(model).where(column < cutoff)).all()
            for row in rows:
                db.delete(row)
            db.commit()
            return len(rows)

    def cleanup_old_events(self, days_to_keep: int = 30) -> int:
        return self._delete_older_than(EventModel, EventModel.timestamp, days_to_keep)

    def cleanup_old_file_access(self, days_to_keep: int = 30) -> int:
        return self._delete_older_than(
            FileAccessModel, FileAccessModel.timestamp, days_to_keep
        )

    def cleanup_old_raw_events(self, days_to_keep: int = 7) -> int:
        return self._delete_older_than(
            RawEventModel, RawEventModel.received_at, days_to_keep
        )
