"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
from loguru import logger

from fileaudit.audit_log import AuditLog
from fileaudit.diagnostics import install_diagnostics
from fileaudit.events import ChangeType, create_event
from fileaudit.host import RecordingChannel
from fileaudit.project import Project, ProjectLayout, normalize_project_path
from fileaudit.snapshots import SnapshotStore


@pytest.fixture
def user_data(tmp_path: Path) -> Path:
    """Root of per-project data."""
    path = tmp_path / "user-data"
    path.mkdir()
    return path


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """An empty watched project folder."""
    path = tmp_path / "site"
    path.mkdir()
    return path


@pytest.fixture
def project(project_root: Path) -> Project:
    return Project(path=normalize_project_path(project_root), name="site")


@pytest.fixture
def layout(user_data: Path, project: Project) -> ProjectLayout:
    layout = ProjectLayout(user_data, project.path)
    layout.ensure_dirs()
    return layout


@pytest.fixture
def audit_log(layout: ProjectLayout) -> AuditLog:
    return AuditLog(layout.log_path)


@pytest.fixture
def snapshots(layout: ProjectLayout) -> SnapshotStore:
    return SnapshotStore(layout.snapshots_dir)


@pytest.fixture
def make_event(project: Project):
    """Build events for the fixture project with explicit timestamps."""

    def _make(
        kind: ChangeType,
        path: str,
        user: str = "alice",
        *,
        at: datetime | None = None,
        snapshot_id: str | None = None,
        previous_snapshot_id: str | None = None,
        event_id: str | None = None,
    ):
        return create_event(
            kind,
            path,
            user,
            project.path,
            snapshot_id=snapshot_id,
            previous_snapshot_id=previous_snapshot_id,
            event_id=event_id,
            timestamp=at or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        )

    return _make


@pytest.fixture
def diagnostics() -> RecordingChannel:
    """Capture loguru output as host diagnostic records."""
    channel = RecordingChannel()
    handler_id = install_diagnostics(channel, level="DEBUG", enqueue=False)
    yield channel
    logger.remove(handler_id)
