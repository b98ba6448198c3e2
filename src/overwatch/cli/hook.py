"""
Hook forwarder.

Installed as an agent hook command, e.g. ``overwatch hook pre-tool``.
Reads the hook payload from stdin, tags it with the event type and a
timestamp, and posts it to the server. Never fails, so the agent is never
blocked by a missing or slow server.
"""

import json
import os
import sys
from datetime import datetime, timezone

import httpx
import typer

DEFAULT_EVENTS_URL = "http://localhost:3142/events"
CONNECT_TIMEOUT = 2.0
TOTAL_TIMEOUT = 5.0


def build_payload(raw: str, event_type: str) -> dict:
    """Merge the hook payload with ``eventType`` and ``timestamp``."""
    try:
        data = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError:
        data = {}
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    if not isinstance(data, dict):
        return {"eventType": event_type, "timestamp": timestamp, "data": data}
    return {**data, "eventType": event_type, "timestamp": timestamp}


def hook(
    event_type: str = typer.Argument("unknown", help="Hook event type, e.g. pre-tool-use"),
):
    """Forward a hook event read from stdin to the server."""
    raw = "" if sys.stdin.isatty() else sys.stdin.read()
    payload = build_payload(raw, event_type)
    url = os.getenv("OVERWATCH_URL", DEFAULT_EVENTS_URL)
    try:
        httpx.post(
            url,
            json=payload,
            timeout=httpx.Timeout(TOTAL_TIMEOUT, connect=CONNECT_TIMEOUT),
        )
    except Exception:
        pass
    raise typer.Exit(code=0)
