"""
Tests for the debounced project watcher.

Handler tests feed watchdog events directly and flush with an explicit
clock; one test runs a real observer end to end.
"""

from __future__ import annotations

import queue
import time
from pathlib import Path

import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from fileaudit.events import ChangeType
from fileaudit.exceptions import ProjectStartError
from fileaudit.watcher import Notification, ProjectEventHandler, is_ignored, watch_project

THRESHOLD = 0.5


@pytest.fixture
def handler(project_root: Path) -> ProjectEventHandler:
    return ProjectEventHandler(project_root, queue.Queue(), stability_threshold=THRESHOLD)


def _later(seconds: float = THRESHOLD + 0.5) -> float:
    return time.monotonic() + seconds


def test_creation_is_reported_once_settled(handler, project_root: Path):
    path = project_root / "a.txt"
    path.write_text("hello")
    handler.on_created(FileCreatedEvent(str(path)))

    assert handler.flush_pending(now=time.monotonic()) == []
    assert handler.flush_pending(now=_later()) == [Notification(ChangeType.CREATED, path)]
    assert handler.channel.get_nowait() == Notification(ChangeType.CREATED, path)
    assert handler.pending == {}


def test_ongoing_writes_postpone_the_report(handler, project_root: Path):
    path = project_root / "big.log"
    path.write_text("part one")
    handler.on_created(FileCreatedEvent(str(path)))

    # Grows without a new event reaching the handler yet
    path.write_text("part one and part two")
    first_check = _later()
    assert handler.flush_pending(now=first_check) == []
    assert handler.flush_pending(now=first_check + THRESHOLD + 0.1) == [Notification(ChangeType.CREATED, path)]


def test_modification_of_pending_creation_stays_creation(handler, project_root: Path):
    path = project_root / "a.txt"
    path.write_text("v1")
    handler.on_created(FileCreatedEvent(str(path)))
    path.write_text("v2")
    handler.on_modified(FileModifiedEvent(str(path)))

    assert handler.flush_pending(now=_later()) == [Notification(ChangeType.CREATED, path)]


def test_created_then_deleted_is_never_reported(handler, project_root: Path):
    path = project_root / "tmp.txt"
    path.write_text("scratch")
    handler.on_created(FileCreatedEvent(str(path)))
    path.unlink()
    handler.on_deleted(FileDeletedEvent(str(path)))

    assert handler.flush_pending(now=_later()) == []
    assert handler.channel.empty()


def test_deletion_is_reported_on_next_flush(handler, project_root: Path):
    path = project_root / "old.txt"
    handler.on_deleted(FileDeletedEvent(str(path)))
    assert handler.flush_pending(now=time.monotonic()) == [Notification(ChangeType.DELETED, path)]


def test_delete_then_recreate_is_a_modification(handler, project_root: Path):
    path = project_root / "a.txt"
    handler.on_deleted(FileDeletedEvent(str(path)))
    path.write_text("replacement")
    handler.on_created(FileCreatedEvent(str(path)))

    assert handler.flush_pending(now=_later()) == [Notification(ChangeType.MODIFIED, path)]


def test_move_is_delete_plus_create(handler, project_root: Path):
    src = project_root / "draft.txt"
    dest = project_root / "final.txt"
    dest.write_text("content")
    handler.on_moved(FileMovedEvent(str(src), str(dest)))

    emitted = handler.flush_pending(now=_later())
    assert Notification(ChangeType.DELETED, src) in emitted
    assert Notification(ChangeType.CREATED, dest) in emitted


def test_deleted_directory_reports_known_files(project_root: Path):
    known = [project_root / "sub" / "f.txt", project_root / "sub" / "deep" / "g.txt", project_root / "keep.txt"]
    handler = ProjectEventHandler(
        project_root, queue.Queue(), stability_threshold=THRESHOLD, known_paths=lambda: known
    )
    handler.on_deleted(DirDeletedEvent(str(project_root / "sub")))

    emitted = handler.flush_pending(now=time.monotonic())
    assert sorted(emitted, key=lambda n: str(n.path)) == [
        Notification(ChangeType.DELETED, project_root / "sub" / "deep" / "g.txt", implied=True),
        Notification(ChangeType.DELETED, project_root / "sub" / "f.txt", implied=True),
    ]


def test_directory_moved_out_of_root_reports_known_files(project_root: Path, tmp_path: Path):
    inside = project_root / "sub" / "f.txt"
    handler = ProjectEventHandler(
        project_root, queue.Queue(), stability_threshold=THRESHOLD, known_paths=lambda: [str(inside)]
    )
    handler.on_moved(DirMovedEvent(str(project_root / "sub"), str(tmp_path / "trash" / "sub")))

    assert handler.flush_pending(now=time.monotonic()) == [Notification(ChangeType.DELETED, inside, implied=True)]


def test_directory_moved_within_root_relies_on_file_moves(project_root: Path):
    handler = ProjectEventHandler(
        project_root,
        queue.Queue(),
        stability_threshold=THRESHOLD,
        known_paths=lambda: [project_root / "sub" / "f.txt"],
    )
    handler.on_moved(DirMovedEvent(str(project_root / "sub"), str(project_root / "renamed")))
    assert handler.pending == {}


def test_directory_removal_keeps_pending_changes_consistent(project_root: Path):
    handler = ProjectEventHandler(project_root, queue.Queue(), stability_threshold=THRESHOLD)
    folder = project_root / "sub"
    folder.mkdir()
    fresh = folder / "new.txt"
    fresh.write_text("x")
    handler.on_created(FileCreatedEvent(str(fresh)))
    gone = folder / "old.txt"
    handler.on_deleted(FileDeletedEvent(str(gone)))

    handler.on_deleted(DirDeletedEvent(str(folder)))

    # The unsettled creation is dropped; the explicit deletion stays explicit
    assert handler.flush_pending(now=time.monotonic()) == [Notification(ChangeType.DELETED, gone)]


def test_file_vanishing_before_settling_is_dropped(handler, project_root: Path):
    path = project_root / "flash.txt"
    path.write_text("x")
    handler.on_created(FileCreatedEvent(str(path)))
    path.unlink()

    first_check = _later()
    assert handler.flush_pending(now=first_check) == []
    assert handler.flush_pending(now=first_check + THRESHOLD + 0.1) == []
    assert handler.pending == {}


def test_directories_are_not_reported(handler, project_root: Path):
    folder = project_root / "assets"
    folder.mkdir()
    handler.on_created(DirCreatedEvent(str(folder)))
    assert handler.pending == {}


@pytest.mark.parametrize(
    "relative",
    [
        ".env",
        ".git/config",
        "node_modules/pkg/index.js",
        "web/dist/bundle.js",
        "build/out.o",
        "src/.cache/entry",
    ],
)
def test_ignored_paths(handler, project_root: Path, relative: str):
    path = project_root / relative
    assert is_ignored(path, project_root)
    handler.on_created(FileCreatedEvent(str(path)))
    assert handler.pending == {}


def test_similar_names_are_not_ignored(project_root: Path):
    assert not is_ignored(project_root / "builder" / "main.py", project_root)
    assert not is_ignored(project_root / "distance.txt", project_root)
    assert is_ignored(project_root.parent / "elsewhere.txt", project_root)


def test_watch_missing_root_fails(tmp_path: Path):
    with pytest.raises(ProjectStartError) as excinfo:
        watch_project(tmp_path / "missing")
    assert excinfo.value.project_path.endswith("missing")


def test_watch_project_end_to_end(project_root: Path):
    subscription = watch_project(project_root, stability_threshold=0.2, poll_interval=0.05)
    try:
        target = project_root / "notes.md"
        target.write_text("# Notes\n")

        received = None
        deadline = time.monotonic() + 10.0
        while time.monotonic() < deadline:
            notification = subscription.get(timeout=0.5)
            if notification is not None and notification.path.name == "notes.md":
                received = notification
                break
        assert received is not None
        assert received.kind is ChangeType.CREATED
    finally:
        subscription.cancel()

    assert not subscription.active
    # Iteration ends once the subscription is closed
    assert all(isinstance(item, Notification) for item in subscription)
    assert subscription.get(timeout=0.1) is None
