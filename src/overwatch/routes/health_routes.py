"""
Health check and dashboard WebSocket endpoints.
"""

import time
from datetime import datetime

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.websockets import WebSocket

from overwatch import __version__

start_time = time.time()


async def health_check(request: Request) -> JSONResponse:
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    engine = request.app.state.engine
    broadcaster = request.app.state.broadcaster
    return JSONResponse(
        {
            "status": "healthy",
            "version": __version__,
            "timestamp": datetime.now().isoformat(),
            "uptime_seconds": int(time.time() - start_time),
            "sessions": len(engine.registry),
            "clients": broadcaster.client_count,
            "queue_size": engine.queue_size,
        }
    )


async def websocket_endpoint(websocket: WebSocket) -> None:
    await websocket.app.state.broadcaster.serve(websocket)
