"""
Session lifecycle for Overwatch.

- registry: authoritative session records and status derivation
- events: maps hook events onto registry operations
- reconciler: repairs the registry against running processes and transcripts
- persistence: durable mirror of registry writes
- engine: single-writer command loop and reconcile timer
"""

from overwatch.session.engine import SessionEngine
from overwatch.session.events import EventProcessor, parse_event
from overwatch.session.persistence import SessionPersistence, SessionStore
from overwatch.session.reconciler import Reconciler
from overwatch.session.registry import (
    ChangeNotifier,
    NullNotifier,
    SessionRegistry,
    derive_status,
)

__all__ = [
    "ChangeNotifier",
    "EventProcessor",
    "NullNotifier",
    "Reconciler",
    "SessionEngine",
    "SessionPersistence",
    "SessionRegistry",
    "SessionStore",
    "derive_status",
    "parse_event",
]
