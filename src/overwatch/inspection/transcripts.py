"""
Transcript index reader.

The agent keeps one directory per project under ``~/.claude/projects``, each
with a ``sessions-index.json`` describing recorded transcripts:

    {"version": 1, "entries": [{"sessionId": "...", "fullPath": "...",
      "fileMtime": 1700000000000, "created": "...", "modified": "...",
      "projectPath": "/Users/me/code/project", ...}]}

Missing or corrupt indexes yield no candidates. Pure query, no state.
"""

import json
from collections import deque
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from overwatch.logger import get_logger
from overwatch.models import TranscriptCandidate, ensure_utc, summarize_tool_input, utcnow

logger = get_logger(__name__)

INDEX_FILENAME = "sessions-index.json"
TAIL_LINES = 100


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        # fileMtime is in milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    try:
        return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


def _file_mtime(path: str) -> Optional[datetime]:
    if not path:
        return None
    try:
        return datetime.fromtimestamp(Path(path).stat().st_mtime, tz=timezone.utc)
    except OSError:
        return None


class TranscriptIndexReader:
    """Reads per-project session indexes and transcript tails."""

    def __init__(
        self,
        projects_dir: Path,
        recent_threshold: timedelta = timedelta(minutes=5),
        tool_input_max_length: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.projects_dir = Path(projects_dir)
        self.recent_threshold = recent_threshold
        self.tool_input_max_length = tool_input_max_length
        self.clock = clock

    def list_project_dirs(self) -> List[Path]:
        if not self.projects_dir.is_dir():
            return []
        try:
            return sorted(p for p in self.projects_dir.iterdir() if p.is_dir())
        except OSError as e:
            logger.warning(f"Cannot list project directories in {self.projects_dir}: {e}")
            return []

    def read_index(self, project_dir: Path) -> Optional[Dict[str, Any]]:
        index_path = Path(project_dir) / INDEX_FILENAME
        if not index_path.exists():
            return None
        try:
            data = json.loads(index_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable session index {index_path}: {e}")
            return None
        return data if isinstance(data, dict) else None

    def list_session_candidates(self, project_dir: Path) -> List[TranscriptCandidate]:
        """Candidates recorded in one project directory."""
        index = self.read_index(project_dir)
        if not index:
            return []
        entries = index.get("entries")
        if not isinstance(entries, list):
            return []

        candidates: List[TranscriptCandidate] = []
        for entry in entries:
            candidate = self._entry_to_candidate(entry)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    def list_all_candidates(self) -> List[TranscriptCandidate]:
        """Candidates across every project directory; a bad directory is skipped."""
        candidates: List[TranscriptCandidate] = []
        for project_dir in self.list_project_dirs():
            try:
                candidates.extend(self.list_session_candidates(project_dir))
            except Exception as e:
                logger.warning(f"Error scanning project directory {project_dir}: {e}")
        return candidates

    def _entry_to_candidate(self, entry: Any) -> Optional[TranscriptCandidate]:
        if not isinstance(entry, dict):
            return None
        session_id = entry.get("sessionId")
        project_path = entry.get("projectPath")
        if not session_id or not project_path:
            return None

        transcript_file = entry.get("fullPath") or ""
        file_mtime = _file_mtime(transcript_file)
        modified = (
            _parse_timestamp(entry.get("modified"))
            or _parse_timestamp(entry.get("fileMtime"))
            or file_mtime
        )
        created = _parse_timestamp(entry.get("created")) or modified
        if modified is None:
            return None
        if file_mtime is not None and file_mtime > modified:
            modified = file_mtime

        return TranscriptCandidate(
            session_id=str(session_id),
            project_path=str(project_path),
            created_at=created,
            modified_at=modified,
            transcript_file=transcript_file,
            recently_modified=self.is_recently_modified(transcript_file),
        )

    def is_recently_modified(self, path: str) -> bool:
        mtime = _file_mtime(path)
        if mtime is None:
            return False
        return self.clock() - mtime < self.recent_threshold

    def read_last_tool(self, transcript_file: str) -> Optional[Tuple[str, str]]:
        """Newest tool use in the transcript tail, as (tool name, input summary)."""
        path = Path(transcript_file) if transcript_file else None
        if path is None or not path.is_file():
            return None
        try:
            with path.open("r", encoding="utf-8", errors="replace") as f:
                tail = deque(f, maxlen=TAIL_LINES)
        except OSError:
            return None

        for line in reversed(tail):
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(record, dict) or record.get("type") != "assistant":
                continue
            message = record.get("message")
            content = message.get("content") if isinstance(message, dict) else None
            if not isinstance(content, list):
                continue
            for block in content:
                if isinstance(block, dict) and block.get("type") == "tool_use":
                    return (
                        block.get("name") or "unknown",
                        summarize_tool_input(block.get("input"), self.tool_input_max_length),
                    )
        return None
