"""
Watched projects and their on-disk data directories.

Every project owns a directory under ``<user data>/projects/`` named by the
sha256 of its absolute root path:

    projects/<sha256>/change_log.json     one JSON event per line
    projects/<sha256>/snapshots/<id>.txt  captured file bodies

History outlives the watch: removing a project from the watch list never
touches this directory. Only purge_project_data() deletes it.
"""

from __future__ import annotations

import hashlib
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

LOG_FILE_NAME = "change_log.json"
SNAPSHOTS_DIR_NAME = "snapshots"
PROJECTS_DIR_NAME = "projects"


def normalize_project_path(path: str | os.PathLike[str]) -> str:
    """Absolute, normalized form of a project root, used as its identity."""
    return os.path.abspath(os.fspath(path))


def project_id(project_path: str) -> str:
    """Stable one-way id for a project root."""
    return hashlib.sha256(project_path.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Project:
    """A watched folder."""

    path: str
    name: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Project:
        path = normalize_project_path(data["path"])
        return cls(path=path, name=data.get("name") or Path(path).name)

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "name": self.name}


@dataclass(frozen=True)
class ProjectLayout:
    """Resolves the data paths of one project."""

    user_data: Path
    project_path: str

    @property
    def data_dir(self) -> Path:
        return self.user_data / PROJECTS_DIR_NAME / project_id(self.project_path)

    @property
    def log_path(self) -> Path:
        return self.data_dir / LOG_FILE_NAME

    @property
    def snapshots_dir(self) -> Path:
        return self.data_dir / SNAPSHOTS_DIR_NAME

    def ensure_dirs(self) -> None:
        """Ensure the data and snapshot directories exist."""
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)


def purge_project_data(user_data: Path, project_path: str) -> bool:
    """
    Delete a project's recorded history and snapshots.

    Returns False when there was nothing to delete.
    """
    layout = ProjectLayout(user_data, normalize_project_path(project_path))
    if not layout.data_dir.exists():
        return False
    shutil.rmtree(layout.data_dir)
    logger.warning("Purged history for {} ({})", layout.project_path, layout.data_dir)
    return True
