"""
Process-wide registry of watched projects.

A ProjectContext bundles everything one watched project needs: its log,
snapshot store, state index, pipeline, watch subscription and the single
writer thread that drains the subscription. Contexts are created when a
project starts being watched and torn down when watching stops; stopping
never deletes recorded history.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

from loguru import logger

from .audit_log import AuditLog, MigrationOutcome
from .config import ServiceConfig
from .exceptions import ProjectStartError
from .host import HostChannel
from .owner import OwnerResolver
from .pipeline import EventPipeline
from .project import Project, ProjectLayout
from .snapshots import SnapshotStore
from .state import StateIndex
from .watcher import WatchSubscription, watch_project


class ProjectContext:
    """Runtime state of one watched project."""

    def __init__(
        self,
        project: Project,
        config: ServiceConfig,
        channel: HostChannel,
        owner_resolver: OwnerResolver,
    ):
        self.project = project
        self.config = config
        self.layout = ProjectLayout(config.user_data, project.path)
        try:
            self.layout.ensure_dirs()
        except OSError as exc:
            raise ProjectStartError(project.path, f"cannot create data directory: {exc}") from exc

        self.audit_log = AuditLog(self.layout.log_path)
        self.migration = self.audit_log.ensure_migrated()
        if self.migration is MigrationOutcome.CORRUPT:
            logger.error("History for {} starts fresh; the unreadable log was quarantined", project.path)

        self.snapshots = SnapshotStore(self.layout.snapshots_dir)
        self.state = StateIndex.rebuild(self.audit_log.stream())
        self.pipeline = EventPipeline(
            project, self.audit_log, self.snapshots, self.state, owner_resolver, channel
        )

        self.subscription: WatchSubscription | None = None
        self._writer: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self.subscription is not None and self.subscription.active

    def start(self) -> None:
        self.subscription = watch_project(
            Path(self.project.path),
            stability_threshold=self.config.stability_threshold,
            poll_interval=self.config.poll_interval,
            known_paths=self._live_paths,
        )
        self._writer = threading.Thread(
            target=self._drain, name=f"fileaudit-writer-{self.project.name}", daemon=True
        )
        self._writer.start()
        logger.info("Starting to watch project: {} ({} tracked paths)", self.project.path, len(self.state))

    def _live_paths(self) -> list[str]:
        return [os.path.join(self.project.path, p) for p in list(self.state.paths())]

    def _drain(self) -> None:
        assert self.subscription is not None
        for notification in self.subscription:
            try:
                self.pipeline.process(notification)
            except Exception:
                logger.exception("Unexpected failure processing {}", notification.path)

    def stop(self, timeout: float = 5.0) -> None:
        if self.subscription is not None:
            self.subscription.cancel()
        if self._writer is not None:
            self._writer.join(timeout=timeout)
        logger.info("Stopped watching project: {}", self.project.path)


class ProjectRegistry:
    """
    Owns the ProjectContext of every watched project.

    Projects are independent: one failing to start does not affect others.
    """

    def __init__(self, config: ServiceConfig, channel: HostChannel, owner_resolver: OwnerResolver):
        self.config = config
        self.channel = channel
        self.owner_resolver = owner_resolver
        self._contexts: dict[str, ProjectContext] = {}
        self._lock = threading.Lock()

    def start(self, project: Project) -> ProjectContext:
        """
        Start watching a project; a no-op if it is already watched.

        Raises ProjectStartError if the project cannot be watched.
        """
        with self._lock:
            existing = self._contexts.get(project.path)
            if existing is not None:
                return existing
            if not Path(project.path).is_dir():
                raise ProjectStartError(project.path, "project root does not exist or is not a directory")
            try:
                context = ProjectContext(project, self.config, self.channel, self.owner_resolver)
                context.start()
            except ProjectStartError:
                raise
            except Exception as exc:
                logger.exception("Unexpected failure starting {}", project.path)
                raise ProjectStartError(project.path, f"{type(exc).__name__}: {exc}") from exc
            self._contexts[project.path] = context
            return context

    def start_all(self, projects: list[Project]) -> list[ProjectStartError]:
        """Start every project; returns the failures."""
        failures: list[ProjectStartError] = []
        for project in projects:
            try:
                self.start(project)
            except ProjectStartError as exc:
                logger.error(str(exc))
                failures.append(exc)
        return failures

    def stop(self, project_path: str) -> bool:
        """Stop watching a project. Its history is kept."""
        with self._lock:
            context = self._contexts.pop(project_path, None)
        if context is None:
            return False
        context.stop()
        return True

    def stop_all(self) -> None:
        with self._lock:
            contexts = list(self._contexts.values())
            self._contexts.clear()
        for context in contexts:
            context.stop()

    def get(self, project_path: str) -> ProjectContext | None:
        return self._contexts.get(project_path)

    def contexts(self) -> list[ProjectContext]:
        return list(self._contexts.values())

    def __contains__(self, project_path: object) -> bool:
        return project_path in self._contexts

    def __len__(self) -> int:
        return len(self._contexts)
