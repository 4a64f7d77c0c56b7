"""fileaudit exception hierarchy.

Only startup failures escape the core. Everything that can go wrong while
events flow (unreadable files, owner lookups, bad log lines, failed writes)
is handled where it happens and reported through the diagnostic log.
"""

from __future__ import annotations


class FileAuditError(Exception):
    """Base exception for all fileaudit errors."""


class ConfigError(FileAuditError):
    """Raised when the service configuration is missing or cannot be parsed."""


class ProjectStartError(FileAuditError):
    """Raised when a project cannot be watched (e.g. its root no longer exists)."""

    def __init__(self, project_path: str, reason: str):
        super().__init__(f"Cannot watch {project_path}: {reason}")
        self.project_path = project_path
        self.reason = reason
