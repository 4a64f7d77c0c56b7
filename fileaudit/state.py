"""In-memory index of the latest live event per path, rebuilt by replaying the log."""

from __future__ import annotations

from typing import Iterable, Iterator

from .events import ChangeEvent, ChangeType


class StateIndex:
    """
    Maps a project-relative path to its most recent non-deleted event.

    Used to correlate before/after snapshots and to carry authorship over
    to deletions. Size is bounded by the number of distinct live paths,
    not by the number of events.
    """

    def __init__(self) -> None:
        self._latest: dict[str, ChangeEvent] = {}

    @classmethod
    def rebuild(cls, events: Iterable[ChangeEvent]) -> StateIndex:
        """Replay events in log order."""
        index = cls()
        for event in events:
            index.apply(event)
        return index

    def apply(self, event: ChangeEvent) -> None:
        if event.type is ChangeType.DELETED:
            self._latest.pop(event.path, None)
        else:
            self._latest[event.path] = event

    def get(self, path: str) -> ChangeEvent | None:
        return self._latest.get(path)

    def paths(self) -> Iterator[str]:
        return iter(self._latest)

    def __contains__(self, path: object) -> bool:
        return path in self._latest

    def __len__(self) -> int:
        return len(self._latest)
