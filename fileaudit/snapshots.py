"""
Snapshot storage for file bodies captured at the moment of a change.

Snapshots are named by the id of the event that captured them and stored
as plain UTF-8 text, one file per snapshot:

    snapshots/evt-1718000000000-k3x9a.txt

Binary files are not stored: their body is replaced by a fixed placeholder,
so diffs of binary files show the placeholder rather than bytes.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

SNAPSHOT_SUFFIX = ".txt"
BINARY_PLACEHOLDER = "[Binary file content not shown]"


def read_file_content(path: Path) -> str | None:
    """
    Best-effort read of a file body for snapshotting.

    Returns None when the file is unreadable (vanished, permission denied).
    Content containing a NUL byte is reported as BINARY_PLACEHOLDER.
    """
    try:
        data = path.read_bytes()
    except OSError as exc:
        logger.debug("Could not read {} for snapshot: {}", path, exc)
        return None
    if b"\x00" in data:
        return BINARY_PLACEHOLDER
    return data.decode("utf-8", errors="replace")


class SnapshotStore:
    """
    Per-project snapshot directory.

    Writes go to a temp file and are renamed into place, so a snapshot is
    either absent or complete.
    """

    def __init__(self, snapshots_dir: Path):
        self.snapshots_dir = snapshots_dir

    def _snapshot_path(self, snapshot_id: str) -> Path:
        if not snapshot_id or any(sep in snapshot_id for sep in ("/", "\\")) or snapshot_id.startswith("."):
            raise ValueError(f"Invalid snapshot id: {snapshot_id!r}")
        return self.snapshots_dir / f"{snapshot_id}{SNAPSHOT_SUFFIX}"

    def put(self, snapshot_id: str, content: str) -> None:
        """Store content under snapshot_id, replacing any previous body."""
        snapshot_path = self._snapshot_path(snapshot_id)
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)

        temp_path = snapshot_path.with_suffix(".tmp")
        temp_path.write_bytes(content.encode("utf-8"))
        temp_path.replace(snapshot_path)

    def get(self, snapshot_id: str) -> str | None:
        """Retrieve a snapshot body, or None if it does not exist."""
        try:
            data = self._snapshot_path(snapshot_id).read_bytes()
        except FileNotFoundError:
            return None
        return data.decode("utf-8", errors="replace")

    def exists(self, snapshot_id: str) -> bool:
        return self._snapshot_path(snapshot_id).exists()

    def count(self) -> int:
        """Count stored snapshots."""
        if not self.snapshots_dir.exists():
            return 0
        return sum(1 for _ in self.snapshots_dir.glob(f"*{SNAPSHOT_SUFFIX}"))
