"""
Per-project event pipeline.

Each settled notification moves through:

    Detected -> OwnerResolved -> ContentCaptured -> Persisted -> Indexed -> Notified

A pipeline instance is driven by exactly one writer thread per project, so
the audit log and the state index see events for a path in one order.
"""

from __future__ import annotations

import os
from pathlib import Path

from loguru import logger

from .audit_log import AuditLog
from .events import ChangeEvent, ChangeType, create_event, new_event_id
from .host import HostChannel
from .owner import OwnerResolver, resolve_author
from .project import Project
from .snapshots import SnapshotStore, read_file_content
from .state import StateIndex
from .watcher import Notification


class EventPipeline:
    """Turns watcher notifications into persisted, indexed, announced events."""

    def __init__(
        self,
        project: Project,
        audit_log: AuditLog,
        snapshots: SnapshotStore,
        state: StateIndex,
        owner_resolver: OwnerResolver,
        channel: HostChannel,
    ):
        self.project = project
        self.audit_log = audit_log
        self.snapshots = snapshots
        self.state = state
        self.owner_resolver = owner_resolver
        self.channel = channel

    def relative_path(self, path: Path) -> str:
        return os.path.relpath(path, self.project.path)

    def process(self, notification: Notification) -> ChangeEvent | None:
        """
        Record one change.

        Returns the persisted event, or None if it could not be persisted or
        there was nothing left to record.
        """
        relative = self.relative_path(notification.path)
        kind = notification.kind
        previous = self.state.get(relative)
        if notification.implied and previous is None:
            logger.debug("{} already recorded as gone with its directory", relative)
            return None
        logger.info("[{}] detected for: {}", kind.value, notification.path)

        # Atomic saves surface as a creation over a live path
        if kind is ChangeType.CREATED and previous is not None:
            kind = ChangeType.MODIFIED

        user = resolve_author(self.owner_resolver, str(notification.path), kind, previous)

        event_id = new_event_id()
        snapshot_id: str | None = None
        if kind is not ChangeType.DELETED:
            content = read_file_content(notification.path)
            if content is None:
                logger.warning("Could not read {}; recording {} without a snapshot", relative, kind.value)
            else:
                try:
                    self.snapshots.put(event_id, content)
                except OSError as exc:
                    logger.error("Dropping {} event for {}: snapshot write failed: {}", kind.value, relative, exc)
                    return None
                snapshot_id = event_id

        previous_snapshot_id = None
        if kind is not ChangeType.CREATED and previous is not None:
            previous_snapshot_id = previous.after_snapshot_id

        event = create_event(
            kind,
            relative,
            user,
            self.project.path,
            snapshot_id=snapshot_id,
            previous_snapshot_id=previous_snapshot_id,
            event_id=event_id,
        )

        try:
            self.audit_log.append(event)
        except OSError as exc:
            logger.error("Dropping {} event for {}: log write failed: {}", kind.value, relative, exc)
            return None

        self.state.apply(event)

        try:
            self.channel.send_event(event.to_dict())
        except (OSError, ValueError) as exc:
            logger.error("Could not notify host of {}: {}", event.id, exc)

        logger.info("Logged event {} for {} by {}", event.id, relative, user)
        return event
