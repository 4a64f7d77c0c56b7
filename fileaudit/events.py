"""
Immutable change events for the per-project audit log.

Events are the atomic unit of the log - each line of change_log.json is one
event. A path's history is the ordered chain of its events, linked through
snapshot ids:

- CREATED carries the snapshot of the new content (when it could be read)
- MODIFIED carries the snapshot after the change and the one before it
- DELETED carries only the last snapshot taken before removal

Each kind is its own class holding exactly the fields it can have.
"""

from __future__ import annotations

import json
import random
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Union


class ChangeType(str, Enum):
    """Kinds of recorded file changes."""

    CREATED = "CREATED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_event_id(now: float | None = None) -> str:
    """
    Generate an event id of the form ``evt-<epoch millis>-<5 base36 chars>``.

    Ids sort roughly by creation time; the random suffix separates events
    created within the same millisecond. Collisions are not checked.
    """
    millis = int((time.time() if now is None else now) * 1000)
    suffix = "".join(random.choices(_ID_ALPHABET, k=5))
    return f"evt-{millis}-{suffix}"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting the trailing ``Z`` of older logs."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat(timespec="milliseconds")


@dataclass(frozen=True)
class _BaseEvent:
    id: str
    path: str  # relative to project_path, host OS separators
    timestamp: datetime
    user: str
    project_path: str

    type: ClassVar[ChangeType]

    @property
    def after_snapshot_id(self) -> str | None:
        """Snapshot of the content after this change, if one was captured."""
        return None

    @property
    def before_snapshot_id(self) -> str | None:
        """Snapshot of the content before this change, if one existed."""
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the on-disk / host message shape."""
        result: dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "path": self.path,
            "timestamp": format_timestamp(self.timestamp),
            "user": self.user,
            "projectPath": self.project_path,
        }
        if self.after_snapshot_id is not None:
            result["snapshotId"] = self.after_snapshot_id
        if self.before_snapshot_id is not None:
            result["previousSnapshotId"] = self.before_snapshot_id
        return result

    def to_json(self) -> str:
        """Serialize to a single JSON line (without the newline)."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def to_row(self) -> dict[str, str]:
        """Flat record used for tabular export."""
        return {
            "id": self.id,
            "type": self.type.value,
            "path": self.path,
            "timestamp": format_timestamp(self.timestamp),
            "user": self.user,
            "projectPath": self.project_path,
        }


@dataclass(frozen=True)
class CreatedEvent(_BaseEvent):
    snapshot_id: str | None = None

    type: ClassVar[ChangeType] = ChangeType.CREATED

    @property
    def after_snapshot_id(self) -> str | None:
        return self.snapshot_id


@dataclass(frozen=True)
class ModifiedEvent(_BaseEvent):
    snapshot_id: str | None = None
    previous_snapshot_id: str | None = None

    type: ClassVar[ChangeType] = ChangeType.MODIFIED

    @property
    def after_snapshot_id(self) -> str | None:
        return self.snapshot_id

    @property
    def before_snapshot_id(self) -> str | None:
        return self.previous_snapshot_id


@dataclass(frozen=True)
class DeletedEvent(_BaseEvent):
    previous_snapshot_id: str | None = None

    type: ClassVar[ChangeType] = ChangeType.DELETED

    @property
    def before_snapshot_id(self) -> str | None:
        return self.previous_snapshot_id


ChangeEvent = Union[CreatedEvent, ModifiedEvent, DeletedEvent]


def create_event(
    kind: ChangeType,
    path: str,
    user: str,
    project_path: str,
    *,
    snapshot_id: str | None = None,
    previous_snapshot_id: str | None = None,
    event_id: str | None = None,
    timestamp: datetime | None = None,
) -> ChangeEvent:
    """
    Factory function for creating events.

    Ensures consistent id/timestamp handling and refuses field combinations
    the event kind cannot carry.
    """
    common = {
        "id": event_id or new_event_id(),
        "path": path,
        "timestamp": timestamp or datetime.now(timezone.utc),
        "user": user,
        "project_path": project_path,
    }
    kind = ChangeType(kind)
    if kind is ChangeType.CREATED:
        if previous_snapshot_id is not None:
            raise ValueError("CREATED events have no previous snapshot")
        return CreatedEvent(snapshot_id=snapshot_id, **common)
    if kind is ChangeType.MODIFIED:
        return ModifiedEvent(
            snapshot_id=snapshot_id,
            previous_snapshot_id=previous_snapshot_id,
            **common,
        )
    if snapshot_id is not None:
        raise ValueError("DELETED events have no snapshot of their own")
    return DeletedEvent(previous_snapshot_id=previous_snapshot_id, **common)


_REQUIRED_TEXT_FIELDS = ("id", "type", "path", "timestamp", "user", "projectPath")
_OPTIONAL_TEXT_FIELDS = ("snapshotId", "previousSnapshotId")


def event_from_dict(data: Any) -> ChangeEvent:
    """
    Reconstruct an event from its serialized dict.

    Raises ValueError for anything that is not a well-formed event.
    """
    if not isinstance(data, dict):
        raise ValueError(f"Expected an event object, got {type(data).__name__}")
    for key in _REQUIRED_TEXT_FIELDS:
        if not isinstance(data.get(key), str):
            raise ValueError(f"Malformed event: {key!r} must be a string")
    for key in _OPTIONAL_TEXT_FIELDS:
        if not isinstance(data.get(key), (str, type(None))):
            raise ValueError(f"Malformed event: {key!r} must be a string or absent")
    try:
        kind = ChangeType(data["type"])
        return create_event(
            kind,
            data["path"],
            data["user"],
            data["projectPath"],
            snapshot_id=data.get("snapshotId"),
            previous_snapshot_id=data.get("previousSnapshotId"),
            event_id=data["id"],
            timestamp=parse_timestamp(data["timestamp"]),
        )
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Malformed event: {exc!r}") from exc


def event_from_json(line: str | bytes) -> ChangeEvent:
    """Parse a single log line."""
    return event_from_dict(json.loads(line))
