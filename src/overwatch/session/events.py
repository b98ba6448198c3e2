"""
Event processor: maps incoming hook events onto registry operations.

Events are loosely structured dicts forwarded by the agent hook. An event
without a session id is rejected before anything is written. Activity or
notifications for an unknown session create it first, since the start event
may have been lost or may still be in flight.
"""

import os
from typing import Any, Callable, Mapping, Optional

from pydantic import ValidationError

from overwatch.errors import InvalidEventError
from overwatch.logger import get_logger
from overwatch.models import (
    EventType,
    HookEvent,
    PendingState,
    Session,
    summarize_tool_input,
    unwrap_envelope,
)
from overwatch.session.registry import SessionRegistry

logger = get_logger(__name__)

# Tool name -> file access type recorded for post-tool events.
FILE_ACCESS_TOOLS = {
    "Read": "read",
    "Write": "write",
    "Edit": "edit",
    "MultiEdit": "edit",
    "NotebookEdit": "edit",
}


def parse_event(payload: Any) -> HookEvent:
    """
    Validate a raw payload into a ``HookEvent``.

    Accepts the enveloped form ``{"eventType", "timestamp", "data": {...}}``
    produced by hook forwarders that cannot merge JSON.

    Raises:
        InvalidEventError: If the payload is not an object or has no session id.
    """
    if isinstance(payload, HookEvent):
        event = payload
    else:
        if not isinstance(payload, Mapping):
            raise InvalidEventError("Event payload must be a JSON object")
        try:
            event = HookEvent.model_validate(unwrap_envelope(payload))
        except ValidationError as e:
            raise InvalidEventError(f"Invalid event: {e}") from e

    if not event.session_id or not str(event.session_id).strip():
        raise InvalidEventError("Event missing session_id")
    return event


class EventProcessor:
    """Applies discrete events to the registry, synchronously."""

    def __init__(
        self,
        registry: SessionRegistry,
        persistence=None,
        fallback_cwd: Callable[[], str] = os.getcwd,
        tool_input_max_length: int = 100,
    ):
        self.registry = registry
        self.persistence = persistence
        self.fallback_cwd = fallback_cwd
        self.tool_input_max_length = tool_input_max_length

    def process(self, payload: Any, endpoint: str = "/events") -> Optional[Session]:
        """
        Apply one event.

        Returns the affected session snapshot, or None when the event was
        rejected, ignored, or referenced an unknown session it cannot create.
        """
        try:
            event = parse_event(payload)
        except InvalidEventError as e:
            logger.warning(f"Rejected event: {e}")
            return None

        self._log_raw(payload, endpoint, event)

        event_type = event.event_type
        if event_type == EventType.SESSION_START:
            return self._on_session_start(event)
        if event_type in (EventType.PRE_TOOL, EventType.POST_TOOL):
            return self._on_tool(event)
        if event_type == EventType.SESSION_END:
            return self._on_session_end(event)
        if event_type == EventType.NOTIFICATION:
            return self._on_notification(event)

        logger.warning(f"Unknown event type: {event.eventType}")
        return None

    # -- Handlers ------------------------------------------------------------

    def _on_session_start(self, event: HookEvent) -> Session:
        session = self.registry.create(
            event.session_id,
            event.cwd or self.fallback_cwd(),
            event.transcript_path or "",
        )
        logger.info(f"Session started: {session.id} ({session.project_name})")
        return session

    def _on_tool(self, event: HookEvent) -> Optional[Session]:
        self._ensure_session(event)
        tool = event.tool_name or "unknown"
        summary = summarize_tool_input(event.tool_input, self.tool_input_max_length)
        session = self.registry.record_activity(event.session_id, tool, summary)
        if session is not None:
            logger.debug(f"Session activity: {session.id} {tool}")
            if event.event_type == EventType.POST_TOOL and not session.ended:
                self._log_file_access(event)
        return session

    def _on_session_end(self, event: HookEvent) -> Optional[Session]:
        session = self.registry.end(event.session_id)
        if session is None:
            logger.debug(f"End event for unknown session {event.session_id}")
            return None
        logger.info(f"Session ended: {session.id} ({session.project_name})")
        return session

    def _on_notification(self, event: HookEvent) -> Optional[Session]:
        self._ensure_session(event)
        kind = PendingState.from_notification_type(event.notification_type)
        if kind is None:
            return self.registry.record_activity(event.session_id)

        session = self.registry.set_pending(event.session_id, kind, event.message or "")
        if session is not None and not session.ended:
            logger.info(f"Session {session.id} waiting: {kind.value}")
        return session

    # -- Internal ------------------------------------------------------------

    def _ensure_session(self, event: HookEvent) -> None:
        if event.session_id in self.registry:
            return
        self.registry.create(
            event.session_id,
            event.cwd or self.fallback_cwd(),
            event.transcript_path or "",
        )
        logger.info(f"Session {event.session_id} created from {event.eventType} event")

    def _log_raw(self, payload: Any, endpoint: str, event: HookEvent) -> None:
        if self.persistence is None:
            return
        raw = payload.model_dump() if isinstance(payload, HookEvent) else payload
        try:
            self.persistence.log_raw_event(raw, endpoint, event.session_id, event.eventType)
        except Exception as e:
            logger.error(f"Failed to log raw event for session {event.session_id}: {e}")

    def _log_file_access(self, event: HookEvent) -> None:
        access_type = FILE_ACCESS_TOOLS.get(event.tool_name or "")
        if self.persistence is None or access_type is None:
            return
        tool_input = event.tool_input if isinstance(event.tool_input, Mapping) else {}
        file_path = tool_input.get("file_path") or tool_input.get("notebook_path")
        if not file_path:
            return
        try:
            self.persistence.log_file_access(event.session_id, str(file_path), access_type)
        except Exception as e:
            logger.error(f"Failed to log file access for session {event.session_id}: {e}")
