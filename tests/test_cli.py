"""
Unit tests for the CLI commands.
"""

import json
from unittest.mock import patch

import httpx
from typer.testing import CliRunner

from overwatch.cli import app
from overwatch.cli.hook import build_payload

runner = CliRunner()


class TestCLIRoot:
    def test_help_shows_all_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("start", "sessions", "scan", "hook"):
            assert command in result.output


class TestSessionsCommand:
    SESSIONS = {
        "sessions": [
            {
                "id": "s1",
                "projectName": "app",
                "status": "active",
                "lastTool": "Bash",
                "pendingState": "permission-request",
                "pendingMessage": "Allow Bash?",
            },
            {"id": "s2", "projectName": "site", "status": "ended", "lastTool": ""},
        ],
        "count": 2,
    }

    @patch("overwatch.cli._http._http_get")
    def test_hides_ended_by_default(self, mock_get):
        mock_get.return_value = self.SESSIONS
        result = runner.invoke(app, ["sessions"])
        assert result.exit_code == 0
        assert "s1" in result.output
        assert "permission-request" in result.output
        assert "s2" not in result.output

    @patch("overwatch.cli._http._http_get")
    def test_all_includes_ended(self, mock_get):
        mock_get.return_value = self.SESSIONS
        result = runner.invoke(app, ["sessions", "--all"])
        assert result.exit_code == 0
        assert "s2" in result.output

    @patch("overwatch.cli._http._http_get")
    def test_empty(self, mock_get):
        mock_get.return_value = {"sessions": [], "count": 0}
        result = runner.invoke(app, ["sessions"])
        assert "No sessions" in result.output


class TestScanCommand:
    @patch("overwatch.cli._http._http_post")
    def test_scan_reports_counts(self, mock_post):
        mock_post.return_value = {"ok": True, "imported": ["a"], "ended": ["b", "c"], "skipped": False}
        result = runner.invoke(app, ["scan"])
        assert result.exit_code == 0
        assert "1 imported, 2 ended" in result.output
        mock_post.assert_called_once_with("/scan")

    @patch("overwatch.cli._http._http_post")
    def test_scan_skipped(self, mock_post):
        mock_post.return_value = {"ok": False, "skipped": True, "reason": "previous pass still running"}
        result = runner.invoke(app, ["scan"])
        assert "skipped" in result.output


class TestHookCommand:
    def test_build_payload_merges(self):
        payload = build_payload('{"session_id": "s1", "cwd": "/w"}', "pre-tool")
        assert payload["session_id"] == "s1"
        assert payload["eventType"] == "pre-tool"
        assert payload["timestamp"].endswith("Z")

    def test_build_payload_empty_and_garbage(self):
        assert build_payload("", "session-end")["eventType"] == "session-end"
        assert build_payload("not json", "session-end")["eventType"] == "session-end"
        assert build_payload("[1]", "x")["data"] == [1]

    @patch("overwatch.cli.hook.httpx.post")
    def test_hook_posts_to_configured_url(self, mock_post, monkeypatch):
        monkeypatch.setenv("OVERWATCH_URL", "http://example.test:9999/events")
        result = runner.invoke(app, ["hook", "post-tool"], input=json.dumps({"session_id": "s1"}))
        assert result.exit_code == 0
        args, kwargs = mock_post.call_args
        assert args[0] == "http://example.test:9999/events"
        assert kwargs["json"]["session_id"] == "s1"
        assert kwargs["json"]["eventType"] == "post-tool"

    @patch("overwatch.cli.hook.httpx.post", side_effect=httpx.ConnectError("refused"))
    def test_hook_never_fails(self, mock_post):
        result = runner.invoke(app, ["hook", "pre-tool"], input="{}")
        assert result.exit_code == 0
