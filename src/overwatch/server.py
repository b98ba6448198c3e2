"""
Starlette-based web server for Overwatch.

This server provides a REST API with the following endpoints:
- /events: Hook event ingestion
- /sessions: Live session state, history and file access
- /permissions: Permission request history and analytics
- /scan: Run a reconciliation pass on demand
- /health: Service health
- /ws: Real-time session updates for dashboards
"""

import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route, WebSocketRoute

from overwatch.broadcaster import Broadcaster
from overwatch.config import CONFIG, Config, PROJECT_DIR
from overwatch.database import OverwatchDatabase
from overwatch.inspection import ProcessSnapshotProvider, TranscriptIndexReader
from overwatch.logger import get_logger, setup_logging
from overwatch.routes.event_routes import receive_event
from overwatch.routes.health_routes import health_check, websocket_endpoint
from overwatch.routes.permission_routes import (
    get_permission_analytics,
    list_permission_requests,
)
from overwatch.routes.session_routes import (
    get_session,
    get_session_events,
    get_session_files,
    list_sessions,
    scan_sessions,
)
from overwatch.session import (
    EventProcessor,
    Reconciler,
    SessionEngine,
    SessionPersistence,
    SessionRegistry,
)

load_dotenv(PROJECT_DIR / ".env")

logger = get_logger(__name__)


def create_app(config: Optional[Config] = None, reconcile: bool = True) -> Starlette:
    """
    Build the application.

    Args:
        config: Settings to run with; defaults to the environment-derived config.
        reconcile: Start the periodic reconcile timer on startup.
    """
    config = config or CONFIG

    @asynccontextmanager
    async def lifespan(app: Starlette):
        """Initialize services on startup and clean them up on shutdown."""
        logger.info("Application startup - initializing services")

        database = OverwatchDatabase(str(config.db_path))
        persistence = SessionPersistence(database)
        broadcaster = Broadcaster(heartbeat_interval=config.heartbeat_interval_seconds)

        registry = SessionRegistry(
            store=persistence,
            notifier=broadcaster,
            active_threshold=config.active_threshold,
            idle_threshold=config.idle_threshold,
        )
        # A failed initial load halts startup.
        loaded = registry.init(persistence.load_all())
        logger.info(f"Loaded {loaded} sessions from {config.db_path}")

        try:
            persistence.cleanup(config.event_retention_days, config.raw_event_retention_days)
        except Exception as e:
            logger.error(f"Failed to clean up old history: {e}")

        processor = EventProcessor(
            registry,
            persistence=persistence,
            tool_input_max_length=config.tool_input_max_length,
        )
        reconciler = Reconciler(
            registry,
            store=persistence,
            processes=ProcessSnapshotProvider(config.process_names),
            transcripts=TranscriptIndexReader(
                config.projects_dir,
                recent_threshold=config.recent_file_threshold,
                tool_input_max_length=config.tool_input_max_length,
            ),
        )
        engine = SessionEngine(
            registry,
            processor,
            reconciler,
            reconcile_interval=config.reconcile_interval_seconds,
            queue_maxsize=config.queue_maxsize,
        )
        broadcaster.set_sessions_provider(engine.list_sessions)

        app.state.config = config
        app.state.database = database
        app.state.persistence = persistence
        app.state.registry = registry
        app.state.broadcaster = broadcaster
        app.state.engine = engine

        await broadcaster.start()
        await engine.start(reconcile=reconcile)

        try:
            yield
        finally:
            logger.info("Application shutdown - cleaning up services")
            await engine.stop()
            registry.flush()
            await broadcaster.stop()
            database.close()

    app = Starlette(
        routes=[
            Route("/events", receive_event, methods=["POST"]),
            Route("/sessions", list_sessions, methods=["GET"]),
            Route("/sessions/{session_id}", get_session, methods=["GET"]),
            Route("/sessions/{session_id}/events", get_session_events, methods=["GET"]),
            Route("/sessions/{session_id}/files", get_session_files, methods=["GET"]),
            Route("/permissions", list_permission_requests, methods=["GET"]),
            Route("/permissions/analytics", get_permission_analytics, methods=["GET"]),
            Route("/scan", scan_sessions, methods=["POST"]),
            Route("/health", health_check, methods=["GET"]),
            WebSocketRoute("/ws", websocket_endpoint),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=["*"],
                allow_headers=["*"],
            )
        ],
        lifespan=lifespan,
    )
    return app


def run(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the server with uvicorn."""
    import uvicorn

    if "--debug" in sys.argv:
        os.environ["OVERWATCH_LOG_LEVEL"] = "DEBUG"
        CONFIG.reload()

    setup_logging(level=CONFIG.log_level, log_file=os.getenv("OVERWATCH_LOG_FILE"))

    host = host or CONFIG.host
    port = port or CONFIG.port
    logger.info(f"Overwatch listening on http://{host}:{port}")
    uvicorn.run(create_app(), host=host, port=port, log_level="warning")


if __name__ == "__main__":
    run()
