"""Tests for hook event parsing and dispatch."""

import pytest

from overwatch.errors import InvalidEventError
from overwatch.models import PendingState, SessionStatus, summarize_tool_input
from overwatch.session import parse_event


class TestParseEvent:
    def test_flat_payload(self):
        event = parse_event({"eventType": "pre-tool", "session_id": "s1", "cwd": "/w"})
        assert event.session_id == "s1"
        assert event.cwd == "/w"

    def test_envelope_payload(self):
        event = parse_event(
            {
                "eventType": "post-tool",
                "timestamp": "2026-01-01T00:00:00Z",
                "data": {"session_id": "s1", "tool_name": "Read"},
            }
        )
        assert event.session_id == "s1"
        assert event.tool_name == "Read"
        assert event.eventType == "post-tool"

    def test_extra_fields_are_kept(self):
        event = parse_event({"eventType": "notification", "session_id": "s1", "hook_event_name": "Notification"})
        assert event.model_extra["hook_event_name"] == "Notification"

    @pytest.mark.parametrize(
        "payload",
        [
            {"eventType": "pre-tool"},
            {"eventType": "pre-tool", "session_id": ""},
            {"eventType": "pre-tool", "session_id": "   "},
            ["not", "an", "object"],
            "text",
        ],
    )
    def test_rejects_invalid(self, payload):
        with pytest.raises(InvalidEventError):
            parse_event(payload)


class TestSummarizeToolInput:
    def test_dict_is_compact_json(self):
        assert summarize_tool_input({"file_path": "/a.py"}) == '{"file_path":"/a.py"}'

    def test_truncates_with_ellipsis(self):
        summary = summarize_tool_input({"command": "x" * 500}, max_length=100)
        assert len(summary) == 103
        assert summary.endswith("...")

    def test_none_is_empty(self):
        assert summarize_tool_input(None) == ""


class TestEventProcessor:
    def test_session_start(self, processor, registry):
        session = processor.process(
            {"eventType": "session-start", "session_id": "s1", "cwd": "/work/app", "transcript_path": "/t.jsonl"}
        )
        assert session.status == SessionStatus.ACTIVE
        assert registry.get("s1").transcript_path == "/t.jsonl"

    def test_tool_event_for_unknown_session_creates_it(self, processor, registry, temp_db):
        session = processor.process(
            {
                "eventType": "post-tool",
                "session_id": "unknown-1",
                "cwd": "/work/app",
                "tool_name": "Read",
                "tool_input": {"file_path": "/work/app/main.py"},
            }
        )
        assert session is not None
        stored = registry.get("unknown-1")
        assert stored.project_path == "/work/app"
        assert stored.project_name == "app"
        assert stored.status == SessionStatus.ACTIVE
        assert stored.last_tool == "Read"
        assert stored.last_tool_input == '{"file_path":"/work/app/main.py"}'

        files = temp_db.get_session_files("unknown-1")
        assert [(f["file_path"], f["access_type"]) for f in files] == [
            ("/work/app/main.py", "read")
        ]

    def test_pre_tool_does_not_log_file_access(self, processor, temp_db):
        processor.process(
            {
                "eventType": "pre-tool",
                "session_id": "s1",
                "cwd": "/work/app",
                "tool_name": "Write",
                "tool_input": {"file_path": "/work/app/out.txt"},
            }
        )
        assert temp_db.get_session_files("s1") == []

    def test_missing_cwd_uses_fallback(self, processor, registry):
        processor.process({"eventType": "pre-tool", "session_id": "s1", "tool_name": "Bash"})
        assert registry.get("s1").project_path == "/tmp/fallback"

    def test_missing_session_id_has_no_effect(self, processor, registry, notifier, temp_db):
        assert processor.process({"eventType": "pre-tool", "tool_name": "Bash"}) is None
        assert len(registry) == 0
        assert notifier.total == 0
        assert temp_db.get_raw_events() == []

    def test_raw_event_is_logged(self, processor, temp_db):
        processor.process({"eventType": "session-start", "session_id": "s1", "cwd": "/w"})
        raw = temp_db.get_raw_events_by_session("s1")
        assert len(raw) == 1
        assert raw[0]["event_type"] == "session-start"
        assert raw[0]["endpoint"] == "/events"

    def test_session_end(self, processor, registry):
        processor.process({"eventType": "session-start", "session_id": "s1", "cwd": "/w"})
        session = processor.process({"eventType": "session-end", "session_id": "s1"})
        assert session.status == SessionStatus.ENDED

    def test_session_end_for_unknown_session(self, processor, registry, notifier):
        assert processor.process({"eventType": "session-end", "session_id": "ghost"}) is None
        assert "ghost" not in registry
        assert notifier.total == 0

    def test_unknown_event_type(self, processor, registry):
        assert processor.process({"eventType": "mystery", "session_id": "s1"}) is None
        assert "s1" not in registry

    @pytest.mark.parametrize(
        "notification_type, expected",
        [
            ("permission_prompt", PendingState.PERMISSION_REQUEST),
            ("idle_prompt", PendingState.IDLE_PROMPT),
            ("elicitation_dialog", PendingState.ELICITATION_DIALOG),
        ],
    )
    def test_notification_sets_pending(self, processor, notification_type, expected):
        session = processor.process(
            {
                "eventType": "notification",
                "session_id": "s1",
                "cwd": "/work/app",
                "notification_type": notification_type,
                "message": "Claude needs your attention",
            }
        )
        assert session.pending_state == expected
        assert session.pending_message == "Claude needs your attention"

    def test_plain_notification_counts_as_activity(self, processor, registry, clock):
        processor.process(
            {"eventType": "notification", "session_id": "s1", "cwd": "/w", "notification_type": "idle_prompt"}
        )
        processor.process(
            {"eventType": "post-tool", "session_id": "s1", "tool_name": "Grep", "tool_input": {"pattern": "x"}}
        )
        processor.process(
            {"eventType": "notification", "session_id": "s1", "notification_type": "idle_prompt"}
        )
        clock.advance(40)
        session = processor.process({"eventType": "notification", "session_id": "s1", "message": "hello"})
        assert session.pending_state is None
        assert session.last_tool == "Grep"
        assert session.last_activity_at == clock()

    def test_activity_after_end_is_ignored(self, processor, notifier):
        processor.process({"eventType": "session-start", "session_id": "s1", "cwd": "/w"})
        processor.process({"eventType": "session-end", "session_id": "s1"})
        count = notifier.total
        session = processor.process({"eventType": "pre-tool", "session_id": "s1", "tool_name": "Bash"})
        assert session.status == SessionStatus.ENDED
        assert session.last_tool == ""
        assert notifier.total == count
