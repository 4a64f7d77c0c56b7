"""Read-side access to a project's recorded history, independent of any running watcher."""

from __future__ import annotations

from pathlib import Path

from .audit_log import AuditLog
from .diff import ChangeDetails, DiffReconstructor
from .project import ProjectLayout, normalize_project_path
from .query import DEFAULT_PAGE_SIZE, QueryEngine, QueryFilter, QueryResult
from .snapshots import SnapshotStore


class ProjectHistory:
    """Query, export and diff one project's log and snapshots."""

    def __init__(self, user_data: Path, project_path: str):
        self.project_path = normalize_project_path(project_path)
        self.layout = ProjectLayout(user_data, self.project_path)
        self.audit_log = AuditLog(self.layout.log_path)
        self.snapshots = SnapshotStore(self.layout.snapshots_dir)
        self.engine = QueryEngine(self.audit_log, self.project_path)
        self.diffs = DiffReconstructor(self.engine, self.snapshots)

    @property
    def exists(self) -> bool:
        return self.layout.data_dir.exists()

    def query(
        self,
        flt: QueryFilter | None = None,
        *,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> QueryResult:
        return self.engine.query(flt, page=page, page_size=page_size)

    def export(self, flt: QueryFilter | None = None):
        return self.engine.export(flt)

    def reconstruct(self, event_id: str) -> ChangeDetails | None:
        return self.diffs.reconstruct(event_id)
