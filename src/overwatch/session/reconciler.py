"""
Reconciler: repairs the registry against ground truth.

The event stream is incomplete. Hooks can fail, and a server restart loses
every in-flight event. Timestamps cannot tell a silent-but-running agent from
a dead one, so the only liveness oracle is the OS process table. Processes are
matched to transcripts by working directory: a directory with N running
processes keeps its N most recently modified transcripts live. The heuristic
cannot tell two concurrent processes apart from one process plus a leftover
transcript in the same directory, and that selection rule is kept as is.

A pass only touches project paths seen in this pass's process snapshot or
transcript index, so a partial inspection failure never ends unrelated
sessions.
"""

import os
from collections import Counter, defaultdict
from typing import Dict, Iterable, List, Optional

from overwatch.errors import InspectionError
from overwatch.inspection.processes import ProcessSnapshotProvider
from overwatch.inspection.transcripts import TranscriptIndexReader
from overwatch.logger import get_logger
from overwatch.models import (
    ProcessInfo,
    ReconcileInputs,
    ReconcileReport,
    Session,
    TranscriptCandidate,
    project_name_from_path,
)
from overwatch.session.persistence import SessionStore
from overwatch.session.registry import SessionRegistry

logger = get_logger(__name__)


def normalize_path(path: str) -> str:
    return os.path.normpath(path) if path else path


def count_processes_by_cwd(processes: Iterable[ProcessInfo]) -> Counter:
    return Counter(normalize_path(p.cwd) for p in processes if p.cwd)


def group_candidates_by_path(
    candidates: Iterable[TranscriptCandidate],
) -> Dict[str, List[TranscriptCandidate]]:
    grouped: Dict[str, List[TranscriptCandidate]] = defaultdict(list)
    for candidate in candidates:
        grouped[normalize_path(candidate.project_path)].append(candidate)
    return dict(grouped)


def select_presumed_live(
    candidates: List[TranscriptCandidate], process_count: int
) -> List[TranscriptCandidate]:
    """The ``process_count`` most recently modified candidates."""
    if process_count <= 0:
        return []
    ranked = sorted(candidates, key=lambda c: c.modified_at, reverse=True)
    return ranked[:process_count]


class Reconciler:
    """Imports presumed-live transcripts and ends sessions without a process."""

    def __init__(
        self,
        registry: SessionRegistry,
        store: Optional[SessionStore] = None,
        processes: Optional[ProcessSnapshotProvider] = None,
        transcripts: Optional[TranscriptIndexReader] = None,
    ):
        self.registry = registry
        self.store = store
        self.processes = processes
        self.transcripts = transcripts

    # -- Gathering (blocking I/O, safe off the event loop) -------------------

    def gather(self) -> ReconcileInputs:
        """
        Collect a complete snapshot of processes and transcript candidates.

        Raises:
            InspectionError: If the process table could not be read at all.
        """
        processes = self.processes.list_running_processes() if self.processes else []
        candidates = self.transcripts.list_all_candidates() if self.transcripts else []
        self._attach_last_tools(processes, candidates)
        return ReconcileInputs(processes=processes, candidates=candidates)

    def _attach_last_tools(
        self, processes: List[ProcessInfo], candidates: List[TranscriptCandidate]
    ) -> None:
        if self.transcripts is None:
            return
        process_count = count_processes_by_cwd(processes)
        by_path = group_candidates_by_path(candidates)
        for path, count in process_count.items():
            for candidate in select_presumed_live(by_path.get(path, []), count):
                last_tool = self.transcripts.read_last_tool(candidate.transcript_file)
                if last_tool:
                    candidate.last_tool, candidate.last_tool_input = last_tool

    # -- Applying (registry mutation, single writer) -------------------------

    def apply(self, inputs: ReconcileInputs) -> ReconcileReport:
        report = ReconcileReport()
        process_count = count_processes_by_cwd(inputs.processes)
        by_path = group_candidates_by_path(inputs.candidates)
        touched = set(process_count) | set(by_path)

        for path, count in process_count.items():
            for candidate in select_presumed_live(by_path.get(path, []), count):
                if candidate.session_id in self.registry:
                    continue
                session = self._build_session(candidate)
                if self.registry.import_if_absent(session):
                    report.imported.append(session.id)
                    if session.pending_state is not None:
                        report.restored_pending.append(session.id)
                    logger.info(
                        f"Imported session {session.id} ({session.project_name}, "
                        f"{'recent' if candidate.recently_modified else 'old'} transcript)"
                    )

        for path, sessions in self._live_sessions_by_path().items():
            if path not in touched:
                continue
            quota = process_count.get(path, 0)
            for session in sessions[quota:]:
                self.registry.end(session.id)
                report.ended.append(session.id)
                logger.info(
                    f"Ended session {session.id} ({session.project_name}): "
                    f"{quota} running process(es) for {path}"
                )

        logger.info(
            f"Reconciliation complete: {len(inputs.processes)} processes, "
            f"{len(inputs.candidates)} transcripts, {len(report.imported)} imported, "
            f"{len(report.ended)} ended"
        )
        return report

    def run(self) -> ReconcileReport:
        """Gather and apply in one synchronous call."""
        try:
            inputs = self.gather()
        except InspectionError as e:
            logger.warning(f"Reconciliation skipped: {e}")
            return ReconcileReport(skipped=True, reason=str(e))
        return self.apply(inputs)

    # -- Internal ------------------------------------------------------------

    def _live_sessions_by_path(self) -> Dict[str, List[Session]]:
        grouped: Dict[str, List[Session]] = defaultdict(list)
        for path, sessions in self.registry.live_sessions_by_path().items():
            grouped[normalize_path(path)].extend(sessions)
        for sessions in grouped.values():
            sessions.sort(key=lambda s: s.last_activity_at, reverse=True)
        return dict(grouped)

    def _build_session(self, candidate: TranscriptCandidate) -> Session:
        # A transcript written within the recency window counts as activity now.
        last_activity = candidate.modified_at
        if candidate.recently_modified:
            last_activity = max(candidate.modified_at, self.registry.clock())

        session = Session(
            id=candidate.session_id,
            project_path=candidate.project_path,
            project_name=project_name_from_path(candidate.project_path),
            last_activity_at=last_activity,
            started_at=candidate.created_at,
            transcript_path=candidate.transcript_file,
            last_tool=candidate.last_tool,
            last_tool_input=candidate.last_tool_input,
        )

        if self.store is not None:
            try:
                pending = self.store.get_last_unresolved_pending(candidate.session_id)
            except Exception as e:
                logger.error(f"Failed to read pending state for {candidate.session_id}: {e}")
                pending = None
            if pending is not None:
                session.pending_state = pending.kind
                session.pending_message = pending.message
        return session
