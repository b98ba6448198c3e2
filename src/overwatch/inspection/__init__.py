"""
Ground-truth providers used by the reconciler.

- processes: running agent processes and their working directories
- transcripts: per-project session indexes written by the agent
"""

from overwatch.inspection.processes import ProcessSnapshotProvider
from overwatch.inspection.transcripts import TranscriptIndexReader

__all__ = ["ProcessSnapshotProvider", "TranscriptIndexReader"]
