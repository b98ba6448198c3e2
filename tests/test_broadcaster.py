"""Tests for the WebSocket broadcaster."""

import asyncio
from unittest.mock import AsyncMock

from overwatch.broadcaster import Broadcaster
from overwatch.models import Session, utcnow


def make_session(session_id="s1") -> Session:
    now = utcnow()
    return Session(
        id=session_id,
        project_path="/work/app",
        project_name="app",
        last_activity_at=now,
        started_at=now,
    )


def fake_client(fail=False):
    ws = AsyncMock()
    if fail:
        ws.send_json.side_effect = RuntimeError("connection closed")
    return ws


class TestBroadcast:
    async def test_broadcast_drops_failed_clients(self):
        broadcaster = Broadcaster()
        good, bad = fake_client(), fake_client(fail=True)
        broadcaster.clients.update({good, bad})

        await broadcaster.broadcast({"type": "heartbeat"})

        good.send_json.assert_awaited_once_with({"type": "heartbeat"})
        assert broadcaster.clients == {good}

    async def test_notifications_are_delivered_by_sender(self):
        broadcaster = Broadcaster()
        client = fake_client()
        broadcaster.clients.add(client)
        await broadcaster.start()
        try:
            broadcaster.session_changed(make_session())
            broadcaster.session_ended("s1")
            for _ in range(100):
                if client.send_json.await_count >= 2:
                    break
                await asyncio.sleep(0.01)
        finally:
            await broadcaster.stop()

        first, second = [c.args[0] for c in client.send_json.await_args_list[:2]]
        assert first["type"] == "session-update"
        assert first["data"]["id"] == "s1"
        assert first["data"]["projectName"] == "app"
        assert second == {"type": "session-ended", "id": "s1"}

    async def test_notifications_without_clients_are_dropped(self):
        broadcaster = Broadcaster()
        broadcaster.session_changed(make_session())
        assert broadcaster._outbox.qsize() == 0


class TestClientMessages:
    async def test_get_sessions_resends_list(self):
        broadcaster = Broadcaster(get_sessions=lambda: [make_session("a"), make_session("b")])
        client = fake_client()

        await broadcaster._handle_message(client, '{"type": "get-sessions"}')

        message = client.send_json.await_args.args[0]
        assert message["type"] == "sessions"
        assert [s["id"] for s in message["data"]] == ["a", "b"]

    async def test_subscribe_and_garbage_are_ignored(self):
        broadcaster = Broadcaster(get_sessions=lambda: [])
        client = fake_client()

        await broadcaster._handle_message(client, '{"type": "subscribe"}')
        await broadcaster._handle_message(client, "not json")
        await broadcaster._handle_message(client, "[1, 2]")

        client.send_json.assert_not_awaited()
