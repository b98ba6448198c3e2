"""Shared pytest fixtures and configuration."""

from datetime import datetime, timedelta, timezone

import pytest

from overwatch.database import OverwatchDatabase
from overwatch.session import EventProcessor, SessionPersistence, SessionRegistry


class FakeClock:
    """Controllable clock; call it to read the current time."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingNotifier:
    """Change notifier that remembers what it was told."""

    def __init__(self):
        self.changed = []
        self.ended = []

    def session_changed(self, session):
        self.changed.append(session)

    def session_ended(self, session_id):
        self.ended.append(session_id)

    @property
    def total(self) -> int:
        return len(self.changed) + len(self.ended)


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database for testing."""
    database = OverwatchDatabase(str(tmp_path / "overwatch.db"))
    yield database
    database.close()


@pytest.fixture
def store(temp_db):
    return SessionPersistence(temp_db)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def registry(store, notifier, clock):
    return SessionRegistry(store=store, notifier=notifier, clock=clock)


@pytest.fixture
def processor(registry, store):
    return EventProcessor(registry, persistence=store, fallback_cwd=lambda: "/tmp/fallback")

