"""Tests for structured patches and change reconstruction."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from fileaudit.diff import (
    NO_NEWLINE_MARKER,
    DiffReconstructor,
    format_patch,
    split_lines,
    structured_patch,
)
from fileaudit.events import ChangeType
from fileaudit.query import QueryEngine

BASE = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def reconstructor(audit_log, snapshots, project) -> DiffReconstructor:
    return DiffReconstructor(QueryEngine(audit_log, project.path), snapshots)


def test_split_lines_keeps_terminators():
    assert split_lines("a\nb\n") == ["a\n", "b\n"]
    assert split_lines("a\nb") == ["a\n", "b"]
    assert split_lines("") == []
    assert split_lines("a\r\nb\n") == ["a\r\n", "b\n"]


def test_single_line_change():
    patch = structured_patch("a.txt", "a.txt", "a\nb\n", "a\nc\n")

    assert len(patch.hunks) == 1
    hunk = patch.hunks[0]
    assert hunk.lines == [" a", "-b", "+c"]
    assert (hunk.old_start, hunk.old_lines, hunk.new_start, hunk.new_lines) == (1, 2, 1, 2)
    assert hunk.header == "@@ -1,2 +1,2 @@"


def test_identical_text_has_no_hunks():
    assert structured_patch("a", "a", "same\n", "same\n").hunks == []


def test_context_limits_hunk_size():
    old = "".join(f"line {n}\n" for n in range(1, 21))
    new = old.replace("line 10\n", "line ten\n")
    hunk = structured_patch("f", "f", old, new).hunks[0]

    assert hunk.old_start == 7
    assert hunk.old_lines == 7
    assert hunk.lines[:3] == [" line 7", " line 8", " line 9"]
    assert hunk.lines[3:5] == ["-line 10", "+line ten"]


def test_distant_changes_make_separate_hunks():
    old = "".join(f"{n}\n" for n in range(1, 31))
    new = old.replace("2\n", "two\n", 1).replace("28\n", "twenty-eight\n")
    assert len(structured_patch("f", "f", old, new).hunks) == 2


def test_missing_final_newline_is_marked():
    hunk = structured_patch("f", "f", "a\nb", "a\nb\n").hunks[0]
    assert hunk.lines == [" a", "-b", NO_NEWLINE_MARKER, "+b"]


def test_file_emptied():
    hunk = structured_patch("f", "f", "a\nb\n", "").hunks[0]
    assert (hunk.old_start, hunk.old_lines, hunk.new_start, hunk.new_lines) == (1, 2, 0, 0)
    assert hunk.lines == ["-a", "-b"]


def test_format_patch():
    text = format_patch(structured_patch("a.txt", "a.txt", "a\nb\n", "a\nc\n"))
    assert text == "--- a.txt\n+++ a.txt\n@@ -1,2 +1,2 @@\n a\n-b\n+c\n"


def test_patch_to_dict():
    data = structured_patch("a.txt", "a.txt", "a\nb\n", "a\nc\n").to_dict()
    assert data["oldFileName"] == "a.txt"
    assert data["hunks"][0]["oldStart"] == 1
    assert data["hunks"][0]["lines"] == [" a", "-b", "+c"]


def test_reconstruct_modification(reconstructor, audit_log, snapshots, make_event):
    snapshots.put("evt-1-aaaaa", "a\nb\n")
    snapshots.put("evt-2-bbbbb", "a\nc\n")
    audit_log.append(make_event(ChangeType.CREATED, "a.txt", at=BASE, snapshot_id="evt-1-aaaaa", event_id="evt-1-aaaaa"))
    audit_log.append(
        make_event(
            ChangeType.MODIFIED,
            "a.txt",
            "bob",
            at=BASE + timedelta(minutes=1),
            snapshot_id="evt-2-bbbbb",
            previous_snapshot_id="evt-1-aaaaa",
            event_id="evt-2-bbbbb",
        )
    )

    details = reconstructor.reconstruct("evt-2-bbbbb")

    assert details.type is ChangeType.MODIFIED
    assert details.content == "a\nc\n"
    assert len(details.patch.hunks) == 1
    assert "-b" in details.patch.hunks[0].lines
    assert "+c" in details.patch.hunks[0].lines


def test_reconstruct_creation_has_content_only(reconstructor, audit_log, snapshots, make_event):
    snapshots.put("evt-1-aaaaa", "hello\n")
    audit_log.append(make_event(ChangeType.CREATED, "a.txt", snapshot_id="evt-1-aaaaa", event_id="evt-1-aaaaa"))

    details = reconstructor.reconstruct("evt-1-aaaaa")
    assert details.content == "hello\n"
    assert details.patch is None
    assert "patch" not in details.to_dict()


def test_reconstruct_deletion_shows_last_content(reconstructor, audit_log, snapshots, make_event):
    snapshots.put("evt-1-aaaaa", "last words\n")
    audit_log.append(make_event(ChangeType.DELETED, "a.txt", previous_snapshot_id="evt-1-aaaaa", event_id="evt-9-zzzzz"))

    details = reconstructor.reconstruct("evt-9-zzzzz")
    assert details.type is ChangeType.DELETED
    assert details.content == "last words\n"
    assert details.patch is None


def test_reconstruct_without_snapshots(reconstructor, audit_log, make_event):
    audit_log.append(
        make_event(
            ChangeType.MODIFIED,
            "a.txt",
            snapshot_id="evt-2-bbbbb",
            previous_snapshot_id="evt-1-aaaaa",
            event_id="evt-2-bbbbb",
        )
    )
    details = reconstructor.reconstruct("evt-2-bbbbb")
    assert details.content == ""
    assert details.patch is None


def test_reconstruct_unknown_event(reconstructor):
    assert reconstructor.reconstruct("evt-0-nope0") is None
