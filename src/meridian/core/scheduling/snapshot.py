"""Task snapshot file.

The authoritative store persists its table to
``<root_path>/cache/schedules-<app_id>.json`` as a JSON array of task
records, and reloads it at startup. Older snapshots stored
``[taskId, task]`` pairs; those are unwrapped on load.

File I/O runs in a worker thread (:func:`asyncio.to_thread`) so it never
blocks the event loop of the caller.
"""

from __future__ import annotations

import asyncio
import json
import shutil
from pathlib import Path
from typing import Any

from meridian.core.errors import SnapshotError
from meridian.core.logging import get_logger

from .types import ScheduleTask

logger = get_logger(__name__)


def unwrap_records(raw: Any) -> list[dict[str, Any]]:
    """Normalize snapshot content to a list of task dicts.

    Raises:
        SnapshotError: If the content is not a list of records.
    """
    if not isinstance(raw, list):
        raise SnapshotError("Snapshot must be a JSON array")
    records: list[dict[str, Any]] = []
    for entry in raw:
        if isinstance(entry, list) and len(entry) == 2:
            entry = entry[1]
        if not isinstance(entry, dict):
            raise SnapshotError(f"Unexpected snapshot entry: {entry!r}")
        records.append(entry)
    return records


class SnapshotStore:
    """Reads and writes one snapshot file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    async def load(self) -> list[ScheduleTask]:
        """Read the snapshot.

        Raises:
            SnapshotError: Missing, unreadable or malformed file.
        """
        return await asyncio.to_thread(self.load_sync)

    def load_sync(self) -> list[ScheduleTask]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise SnapshotError(f"Cannot read snapshot {self.path}: {e}", cause=e) from e
        try:
            return [ScheduleTask.from_dict(record) for record in unwrap_records(raw)]
        except (TypeError, ValueError) as e:
            raise SnapshotError(f"Malformed snapshot {self.path}: {e}", cause=e) from e

    async def save(self, tasks: list[ScheduleTask]) -> None:
        """Replace the snapshot directory content with a fresh snapshot."""
        records = [task.to_dict() for task in tasks]
        await asyncio.to_thread(self._write, records)

    def _write(self, records: list[dict[str, Any]]) -> None:
        directory = self.path.parent
        try:
            _empty_dir(directory)
            self.path.write_text(json.dumps(records), encoding="utf-8")
        except OSError as e:
            raise SnapshotError(f"Cannot write snapshot {self.path}: {e}", cause=e) from e
        logger.debug("snapshot_written", path=str(self.path), tasks=len(records))


def _empty_dir(directory: Path) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    for child in directory.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()
