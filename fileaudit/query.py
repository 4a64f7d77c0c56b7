"""
Queries over a project's audit log.

The log is streamed, never loaded whole. Filters apply in order:

1. date range - inclusive local days (00:00:00.000 to 23:59:59.999)
2. path prefix - only when the focused path is strictly inside the project
3. search term - case-insensitive substring of the path or the author

Counts by type and author cover the whole filtered set; items are sorted
newest first and then paginated (1-indexed).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Iterator

from .audit_log import AuditLog
from .events import ChangeEvent, ChangeType

DEFAULT_PAGE_SIZE = 50


@dataclass
class QueryFilter:
    """Filters shared by query and export."""

    start_date: date | None = None
    end_date: date | None = None
    focused_path: str | None = None
    search_term: str = ""


@dataclass
class QueryResult:
    """One page of matching events plus aggregates over every match."""

    items: list[ChangeEvent]
    total_count: int
    type_counts: dict[ChangeType, int]
    author_counts: dict[str, int]
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    @property
    def page_count(self) -> int:
        return (self.total_count + self.page_size - 1) // self.page_size

    def to_dict(self) -> dict[str, Any]:
        """Serialize in the host's response shape."""
        return {
            "logs": [event.to_dict() for event in self.items],
            "totalCount": self.total_count,
            "summary": {kind.value: count for kind, count in self.type_counts.items()},
            "userSummary": dict(self.author_counts),
        }


def day_bounds(start_date: date | None, end_date: date | None) -> tuple[datetime | None, datetime | None]:
    """Inclusive local-time bounds covering whole days."""
    start = datetime.combine(start_date, time.min).astimezone() if start_date else None
    end = datetime.combine(end_date, time(23, 59, 59, 999000)).astimezone() if end_date else None
    return start, end


def relative_prefix(project_path: str, focused_path: str | None) -> str | None:
    """Project-relative prefix for a focused path strictly inside the project, else None."""
    if not focused_path:
        return None
    try:
        relative = Path(focused_path).relative_to(Path(project_path))
    except ValueError:
        return None
    prefix = str(relative)
    if prefix in ("", "."):
        return None
    return prefix


def _under_prefix(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + os.sep)


@dataclass
class _Matcher:
    start: datetime | None
    end: datetime | None
    prefix: str | None
    term: str = ""

    def __call__(self, event: ChangeEvent) -> bool:
        if self.start is not None and event.timestamp < self.start:
            return False
        if self.end is not None and event.timestamp > self.end:
            return False
        if self.prefix is not None and not _under_prefix(event.path, self.prefix):
            return False
        if self.term:
            return self.term in event.path.lower() or self.term in event.user.lower()
        return True


class QueryEngine:
    """Read-only access to one project's history."""

    def __init__(self, audit_log: AuditLog, project_path: str):
        self.audit_log = audit_log
        self.project_path = project_path

    def _matcher(self, flt: QueryFilter) -> _Matcher:
        start, end = day_bounds(flt.start_date, flt.end_date)
        return _Matcher(
            start=start,
            end=end,
            prefix=relative_prefix(self.project_path, flt.focused_path),
            term=(flt.search_term or "").lower(),
        )

    def iter_matching(self, flt: QueryFilter | None = None) -> Iterator[ChangeEvent]:
        """Stream matching events in log order."""
        matches = self._matcher(flt or QueryFilter())
        for event in self.audit_log.stream():
            if matches(event):
                yield event

    def query(
        self,
        flt: QueryFilter | None = None,
        *,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> QueryResult:
        """Filtered, aggregated, newest-first page of events."""
        if page < 1:
            raise ValueError("page must be >= 1")
        if page_size < 1:
            raise ValueError("page_size must be >= 1")

        matched: list[tuple[int, ChangeEvent]] = []
        type_counts = {kind: 0 for kind in ChangeType}
        author_counts: dict[str, int] = {}
        for position, event in enumerate(self.iter_matching(flt)):
            matched.append((position, event))
            type_counts[event.type] += 1
            author_counts[event.user] = author_counts.get(event.user, 0) + 1

        # Ties on timestamp: later appends count as newer
        matched.sort(key=lambda item: (item[1].timestamp, item[0]), reverse=True)

        offset = (page - 1) * page_size
        items = [event for _, event in matched[offset : offset + page_size]]
        return QueryResult(
            items=items,
            total_count=len(matched),
            type_counts=type_counts,
            author_counts=author_counts,
            page=page,
            page_size=page_size,
        )

    def export(self, flt: QueryFilter | None = None) -> list[ChangeEvent]:
        """Every matching event, oldest first, unpaginated."""
        matched = list(enumerate(self.iter_matching(flt)))
        matched.sort(key=lambda item: (item[1].timestamp, item[0]))
        return [event for _, event in matched]

    def export_rows(self, flt: QueryFilter | None = None) -> Iterator[dict[str, str]]:
        """Flat records (id, type, path, timestamp, user, projectPath) for tabular export."""
        for event in self.export(flt):
            yield event.to_row()

    def find(self, event_id: str) -> ChangeEvent | None:
        """Locate an event by id (linear scan)."""
        for event in self.audit_log.stream():
            if event.id == event_id:
                return event
        return None
