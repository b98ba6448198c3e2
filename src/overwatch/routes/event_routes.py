"""
Hook event ingestion endpoint.

The agent hook posts one JSON object per lifecycle event. Events are
validated here so a bad payload gets a 400 without touching the engine, then
queued for the single writer.
"""

import json

from starlette.requests import Request
from starlette.responses import JSONResponse

from overwatch.errors import InvalidEventError
from overwatch.logger import get_logger
from overwatch.models import EventAck
from overwatch.session.events import parse_event

logger = get_logger(__name__)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        EventAck(ok=False, error=message).model_dump(), status_code=status_code
    )


async def receive_event(request: Request) -> JSONResponse:
    """
    Accept a hook event.

    Returns:
        ``{"ok": true}`` once the event has been applied, or 400 with
        ``{"ok": false, "error"}`` for malformed JSON or a missing session id.
    """
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _error("Invalid JSON", 400)

    try:
        parse_event(payload)
    except InvalidEventError as e:
        logger.warning(f"Rejected event: {e}")
        return _error(str(e), 400)

    try:
        await request.app.state.engine.submit_event(payload, request.url.path)
    except Exception as e:
        logger.error(f"Error processing event: {e}")
        return _error(str(e), 500)

    return JSONResponse({"ok": True})
