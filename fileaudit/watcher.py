"""
File system watcher for project folders.

This module provides:
- Watchdog-based file monitoring, one observer per project
- Filtering of hidden entries and build/dependency directories
- Debounced emission: a change is reported only once the file has stopped
  changing for a stability threshold
- A cancellable subscription delivering notifications over a queue
"""

from __future__ import annotations

import os
import queue
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator

from loguru import logger
from watchdog.events import (
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .events import ChangeType
from .exceptions import ProjectStartError

IGNORED_DIR_NAMES = frozenset({"node_modules", "dist", "build"})

DEFAULT_STABILITY_THRESHOLD = 2.0
DEFAULT_POLL_INTERVAL = 0.1


@dataclass(frozen=True)
class Notification:
    """A debounced change to one file."""

    kind: ChangeType
    path: Path  # absolute
    implied: bool = False  # deletion inferred from its directory going away


class PendingChange:
    """Tracks a pending change while its file settles."""

    def __init__(
        self,
        kind: ChangeType,
        path: Path,
        timestamp: float,
        signature: tuple[int, int] | None = None,
        implied: bool = False,
    ):
        self.kind = kind
        self.path = path
        self.last_change = timestamp
        self.signature = signature
        self.implied = implied


def file_signature(path: Path) -> tuple[int, int] | None:
    """(size, mtime_ns) of a file, or None if it cannot be stat'ed."""
    try:
        st = path.stat()
    except OSError:
        return None
    return (st.st_size, st.st_mtime_ns)


def is_ignored(path: Path, root: Path) -> bool:
    """Hidden entries and dependency/build directories are never reported."""
    try:
        relative = path.relative_to(root)
    except ValueError:
        return True
    return any(part.startswith(".") or part in IGNORED_DIR_NAMES for part in relative.parts)


class ProjectEventHandler(FileSystemEventHandler):
    """
    Collects raw watchdog events and turns them into debounced notifications.

    Key behaviors:
    - A created or modified file is reported once its size and mtime have
      been unchanged for ``stability_threshold`` seconds
    - A modification of a file whose creation is still pending stays a creation
    - A file created and deleted before it settled is never reported
    - Deletions are reported on the next flush
    - Moves are a deletion of the source plus a creation of the destination
    - A directory deleted or moved out of the root reports a deletion for
      every known file beneath it
    """

    def __init__(
        self,
        root: Path,
        channel: queue.Queue,
        stability_threshold: float = DEFAULT_STABILITY_THRESHOLD,
        known_paths: Callable[[], Iterable[str | Path]] | None = None,
    ):
        super().__init__()
        self.root = root
        self.channel = channel
        self.stability_threshold = stability_threshold
        # Files already recorded as live; consulted when a whole directory disappears
        self.known_paths = known_paths

        self.pending: dict[Path, PendingChange] = {}
        self._lock = threading.Lock()

    def _relevant_path(self, raw: str | bytes) -> Path | None:
        path = Path(os.fsdecode(raw))
        if is_ignored(path, self.root):
            return None
        return path

    def _mark_changed(self, path: Path, kind: ChangeType) -> None:
        now = time.monotonic()
        signature = file_signature(path)
        with self._lock:
            existing = self.pending.get(path)
            if existing is None:
                self.pending[path] = PendingChange(kind, path, now, signature)
                return
            if existing.kind is ChangeType.DELETED:
                # Replaced in place before the deletion was flushed
                existing.kind = ChangeType.MODIFIED
                existing.implied = False
            existing.last_change = now
            existing.signature = signature

    def _mark_deleted(self, path: Path, implied: bool = False) -> None:
        with self._lock:
            existing = self.pending.get(path)
            if existing is not None and existing.kind is ChangeType.CREATED:
                # Created then deleted before flush - no event
                del self.pending[path]
                return
            if implied and existing is not None and existing.kind is ChangeType.DELETED:
                return
            self.pending[path] = PendingChange(ChangeType.DELETED, path, time.monotonic(), implied=implied)

    def _mark_tree_deleted(self, directory: Path) -> None:
        """A directory vanished as a whole: every file known under it is gone."""
        candidates: set[Path] = set()
        if self.known_paths is not None:
            candidates.update(Path(p) for p in self.known_paths())
        with self._lock:
            candidates.update(self.pending)

        removed = [p for p in candidates if p != directory and p.is_relative_to(directory)]
        if removed:
            logger.debug("{} removed with {} tracked files", directory, len(removed))
        for path in removed:
            if not is_ignored(path, self.root):
                self._mark_deleted(path, implied=True)

    def flush_pending(self, now: float | None = None) -> list[Notification]:
        """Emit every pending change that has settled; returns what was emitted."""
        now = time.monotonic() if now is None else now
        with self._lock:
            candidates = list(self.pending.values())

        emitted: list[Notification] = []
        for pending in candidates:
            if pending.kind is ChangeType.DELETED:
                ready = True
            else:
                signature = file_signature(pending.path)
                with self._lock:
                    if self.pending.get(pending.path) is not pending:
                        continue
                    if signature != pending.signature:
                        pending.signature = signature
                        pending.last_change = now
                        continue
                ready = now - pending.last_change >= self.stability_threshold
                if ready and signature is None:
                    logger.debug("{} vanished before it settled; not reported", pending.path)
                    with self._lock:
                        if self.pending.get(pending.path) is pending:
                            del self.pending[pending.path]
                    continue

            if not ready:
                continue
            with self._lock:
                if self.pending.get(pending.path) is not pending:
                    continue
                del self.pending[pending.path]
            notification = Notification(pending.kind, pending.path, pending.implied)
            self.channel.put(notification)
            emitted.append(notification)

        return emitted

    def on_created(self, event: FileCreatedEvent) -> None:
        if event.is_directory:
            return
        path = self._relevant_path(event.src_path)
        if path is not None:
            self._mark_changed(path, ChangeType.CREATED)

    def on_modified(self, event: FileModifiedEvent) -> None:
        if event.is_directory:
            return
        path = self._relevant_path(event.src_path)
        if path is not None:
            self._mark_changed(path, ChangeType.MODIFIED)

    def on_deleted(self, event: FileDeletedEvent) -> None:
        path = self._relevant_path(event.src_path)
        if path is None:
            return
        if event.is_directory:
            self._mark_tree_deleted(path)
        else:
            self._mark_deleted(path)

    def on_moved(self, event: FileMovedEvent) -> None:
        src = self._relevant_path(event.src_path)
        dest = self._relevant_path(event.dest_path)
        if event.is_directory:
            # Moves inside the project arrive as per-file moves as well
            if src is not None and dest is None:
                self._mark_tree_deleted(src)
            return
        if src is not None:
            self._mark_deleted(src)
        if dest is not None:
            self._mark_changed(dest, ChangeType.CREATED)


_CLOSED = object()


class WatchSubscription:
    """
    Handle on a running watch.

    Iterating yields notifications as they settle until cancel() is called.
    cancel() stops the observer and the flusher and releases the OS watch.
    """

    def __init__(
        self,
        root: Path,
        observer: Observer,
        handler: ProjectEventHandler,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.root = root
        self.observer = observer
        self.handler = handler
        self.poll_interval = poll_interval
        self._channel = handler.channel
        self._stop = threading.Event()
        self._flusher = threading.Thread(
            target=self._flush_loop, name=f"fileaudit-flush-{root.name}", daemon=True
        )
        self._flusher.start()

    @property
    def active(self) -> bool:
        return not self._stop.is_set()

    def _flush_loop(self) -> None:
        while not self._stop.wait(self.poll_interval):
            try:
                self.handler.flush_pending()
            except OSError as exc:
                logger.error("Watcher error in {}: {}", self.root, exc)

    def get(self, timeout: float | None = None) -> Notification | None:
        """Next notification, or None on timeout or after cancellation."""
        try:
            item = self._channel.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            self._channel.put(_CLOSED)
            return None
        return item

    def __iter__(self) -> Iterator[Notification]:
        while True:
            item = self._channel.get()
            if item is _CLOSED:
                self._channel.put(_CLOSED)
                return
            yield item

    def cancel(self) -> None:
        if self._stop.is_set():
            return
        self._stop.set()
        self.observer.stop()
        self.observer.join(timeout=5.0)
        self._flusher.join(timeout=5.0)
        self._channel.put(_CLOSED)


def watch_project(
    root: Path,
    *,
    stability_threshold: float = DEFAULT_STABILITY_THRESHOLD,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    known_paths: Callable[[], Iterable[str | Path]] | None = None,
) -> WatchSubscription:
    """
    Start watching a project root recursively.

    known_paths, if given, lists the files already recorded as live so a
    directory removed as a whole can be reported file by file.

    Raises ProjectStartError if the root is missing or the OS refuses the watch.
    """
    root = Path(root)
    if not root.is_dir():
        raise ProjectStartError(str(root), "project root does not exist or is not a directory")

    handler = ProjectEventHandler(
        root, queue.Queue(), stability_threshold=stability_threshold, known_paths=known_paths
    )
    observer = Observer()
    try:
        observer.schedule(handler, str(root), recursive=True)
        observer.start()
    except OSError as exc:
        raise ProjectStartError(str(root), str(exc)) from exc

    return WatchSubscription(root, observer, handler, poll_interval=poll_interval)
