"""
Process snapshot provider.

Lists running agent processes with their working directories using psutil.
Pure query, no state.
"""

import os
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import psutil

from overwatch.errors import InspectionError
from overwatch.logger import get_logger
from overwatch.models import ProcessInfo

logger = get_logger(__name__)

_ATTRS = ["pid", "name", "cmdline", "create_time"]


class ProcessSnapshotProvider:
    """Finds processes whose name (or argv[0] basename) is of interest."""

    def __init__(self, process_names: Optional[Iterable[str]] = None):
        self.process_names = {n.lower() for n in (process_names or ["claude"])}

    def matches(self, name: Optional[str], cmdline: Optional[List[str]]) -> bool:
        if name and name.lower() in self.process_names:
            return True
        if cmdline:
            exe = os.path.basename(cmdline[0]).lower()
            return exe in self.process_names
        return False

    def list_running_processes(self) -> List[ProcessInfo]:
        """
        Snapshot the processes of interest.

        Processes that exit or deny access mid-scan are skipped.

        Raises:
            InspectionError: If the process table cannot be read at all.
        """
        try:
            procs = list(psutil.process_iter(_ATTRS))
        except Exception as e:
            raise InspectionError(f"Cannot list processes: {e}") from e

        results: List[ProcessInfo] = []
        for proc in procs:
            try:
                info = proc.info
                if not self.matches(info.get("name"), info.get("cmdline")):
                    continue
                cwd = proc.cwd()
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
            except Exception as e:
                logger.warning(f"Skipping process {getattr(proc, 'pid', '?')}: {e}")
                continue

            if not cwd:
                continue
            created = info.get("create_time")
            results.append(
                ProcessInfo(
                    pid=info["pid"],
                    cwd=cwd,
                    started_at=(
                        datetime.fromtimestamp(created, tz=timezone.utc) if created else None
                    ),
                )
            )

        logger.debug(f"Found {len(results)} running agent processes")
        return results
