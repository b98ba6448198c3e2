"""
Session query endpoints.

Live state comes from the registry through the engine; history (events,
file access) comes from the database.
"""

from starlette.requests import Request
from starlette.responses import JSONResponse

from overwatch.logger import get_logger
from overwatch.models import SessionListResponse

logger = get_logger(__name__)


def _limit(request: Request, default: int = 100) -> int:
    value = int(request.query_params.get("limit", default))
    if value <= 0:
        raise ValueError("limit must be positive")
    return value


async def list_sessions(request: Request) -> JSONResponse:
    """All known sessions, most recent activity first."""
    sessions = request.app.state.engine.list_sessions()
    response = SessionListResponse(
        sessions=[s.to_response() for s in sessions], count=len(sessions)
    )
    return JSONResponse(response.model_dump(mode="json"))


async def get_session(request: Request) -> JSONResponse:
    session_id = request.path_params["session_id"]
    session = request.app.state.engine.get_session(session_id)
    if session is None:
        return JSONResponse({"error": "Session not found"}, status_code=404)
    return JSONResponse(session.to_dict())


async def get_session_events(request: Request) -> JSONResponse:
    """
    Event history for a session, newest first.

    Query params:
        - limit: Maximum number of events (default 100)
    """
    session_id = request.path_params["session_id"]
    try:
        limit = _limit(request)
        events = request.app.state.database.get_session_events(session_id, limit=limit)
        return JSONResponse({"sessionId": session_id, "events": events})
    except ValueError as e:
        return JSONResponse({"error": f"Invalid parameter: {e}"}, status_code=400)
    except Exception as e:
        logger.error(f"Error reading events for session {session_id}: {e}")
        return JSONResponse({"error": str(e)}, status_code=500)


async def get_session_files(request: Request) -> JSONResponse:
    session_id = request.path_params["session_id"]
    try:
        files = request.app.state.database.get_session_files(session_id)
        return JSONResponse({"sessionId": session_id, "files": files})
    except Exception as e:
        logger.error(f"Error reading files for session {session_id}: {e}")
        return JSONResponse({"error": str(e)}, status_code=500)


async def scan_sessions(request: Request) -> JSONResponse:
    """Run a reconciliation pass now and return its report."""
    try:
        report = await request.app.state.engine.reconcile_now()
        return JSONResponse(report.to_dict())
    except Exception as e:
        logger.error(f"Error during scan: {e}")
        return JSONResponse({"ok": False, "error": str(e)}, status_code=500)
