"""
Permission request history and analytics.
"""

from starlette.requests import Request
from starlette.responses import JSONResponse

from overwatch.logger import get_logger
from overwatch.models import PermissionAnalytics, PermissionRequestInfo

logger = get_logger(__name__)


async def list_permission_requests(request: Request) -> JSONResponse:
    """
    Recorded permission prompts, newest first.

    Query params:
        - limit: Maximum number of requests (default 100)
        - tool: Filter by tool name
        - project: Filter by project name
    """
    try:
        limit = int(request.query_params.get("limit", 100))
        if limit <= 0:
            raise ValueError("limit must be positive")
        rows = request.app.state.database.list_permission_requests(
            limit=limit,
            tool_name=request.query_params.get("tool"),
            project_name=request.query_params.get("project"),
        )
        requests = [PermissionRequestInfo(**row).model_dump(mode="json") for row in rows]
        return JSONResponse({"requests": requests, "count": len(requests)})
    except ValueError as e:
        return JSONResponse({"error": f"Invalid parameter: {e}"}, status_code=400)
    except Exception as e:
        logger.error(f"Error listing permission requests: {e}")
        return JSONResponse({"error": str(e)}, status_code=500)


async def get_permission_analytics(request: Request) -> JSONResponse:
    try:
        analytics = PermissionAnalytics(**request.app.state.database.get_permission_analytics())
        return JSONResponse(analytics.model_dump())
    except Exception as e:
        logger.error(f"Error computing permission analytics: {e}")
        return JSONResponse({"error": str(e)}, status_code=500)
