"""
WebSocket broadcaster for real-time session updates.

Implements the registry's change notifier. Notifications are queued
synchronously and delivered best-effort by a sender task; clients that fail
to receive are dropped.

Protocol:
    Server -> Client:
        {"type": "sessions", "data": [...]}          on connect / on request
        {"type": "session-update", "data": {...}}
        {"type": "session-ended", "id": "..."}
        {"type": "heartbeat"}

    Client -> Server:
        {"type": "subscribe"}                        no-op, already subscribed
        {"type": "get-sessions"}
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Set

from starlette.websockets import WebSocket, WebSocketDisconnect

from overwatch.logger import get_logger
from overwatch.models import Session

logger = get_logger(__name__)

OUTBOX_MAXSIZE = 1000


class Broadcaster:
    """Tracks connected dashboards and fans out session changes."""

    def __init__(
        self,
        get_sessions: Optional[Callable[[], List[Session]]] = None,
        heartbeat_interval: float = 30.0,
    ):
        self.clients: Set[WebSocket] = set()
        self.heartbeat_interval = heartbeat_interval
        self._get_sessions = get_sessions
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=OUTBOX_MAXSIZE)
        self._sender_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None

    def set_sessions_provider(self, get_sessions: Callable[[], List[Session]]) -> None:
        self._get_sessions = get_sessions

    @property
    def client_count(self) -> int:
        return len(self.clients)

    # -- Change notifier -----------------------------------------------------

    def session_changed(self, session: Session) -> None:
        self._publish({"type": "session-update", "data": session.to_dict()})

    def session_ended(self, session_id: str) -> None:
        self._publish({"type": "session-ended", "id": session_id})

    def _publish(self, message: Dict[str, Any]) -> None:
        if not self.clients:
            return
        try:
            self._outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"Broadcast queue full, dropping {message['type']}")

    # -- Lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        if self._sender_task is None:
            self._sender_task = asyncio.create_task(self._sender_loop())
        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.info("Broadcaster started.")

    async def stop(self) -> None:
        for task in (self._heartbeat_task, self._sender_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._heartbeat_task = None
        self._sender_task = None

        for ws in list(self.clients):
            try:
                await ws.close()
            except Exception:
                pass
        self.clients.clear()
        logger.info("Broadcaster stopped.")

    # -- Clients -------------------------------------------------------------

    async def serve(self, websocket: WebSocket) -> None:
        """Run one client connection until it disconnects."""
        await websocket.accept()
        self.clients.add(websocket)
        logger.info(f"WebSocket client connected ({self.client_count} total)")

        try:
            await self._send_sessions(websocket)
            while True:
                text = await websocket.receive_text()
                await self._handle_message(websocket, text)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.warning(f"WebSocket client error: {e}")
        finally:
            self.clients.discard(websocket)
            logger.info(f"WebSocket client disconnected ({self.client_count} total)")

    async def _handle_message(self, websocket: WebSocket, text: str) -> None:
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            return
        if not isinstance(message, dict):
            return
        if message.get("type") == "get-sessions":
            await self._send_sessions(websocket)

    async def _send_sessions(self, websocket: WebSocket) -> None:
        if self._get_sessions is None:
            return
        data = [s.to_dict() for s in self._get_sessions()]
        await websocket.send_json({"type": "sessions", "data": data})

    async def broadcast(self, message: Dict[str, Any]) -> None:
        for ws in list(self.clients):
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping WebSocket client: {e}")
                self.clients.discard(ws)

    async def _sender_loop(self) -> None:
        while True:
            message = await self._outbox.get()
            await self.broadcast(message)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await self.broadcast({"type": "heartbeat"})
