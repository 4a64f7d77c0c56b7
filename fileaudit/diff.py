"""
Reconstruction of what a recorded change did to a file.

Line diffs come from difflib's SequenceMatcher; this module assembles its
grouped opcodes into structured hunks in unified-diff terms:

- start lines are 1-based; an empty side reports the line before it
- hunk lines are prefixed with " ", "-" or "+"
- a line without a trailing newline is followed by the
  "\\ No newline at end of file" marker
"""

from __future__ import annotations

import difflib
from dataclasses import dataclass, field
from typing import Any

from .events import ChangeType
from .query import QueryEngine
from .snapshots import SnapshotStore

DEFAULT_CONTEXT = 3
NO_NEWLINE_MARKER = "\\ No newline at end of file"


@dataclass
class Hunk:
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    lines: list[str] = field(default_factory=list)

    @property
    def header(self) -> str:
        return f"@@ -{self.old_start},{self.old_lines} +{self.new_start},{self.new_lines} @@"

    def to_dict(self) -> dict[str, Any]:
        return {
            "oldStart": self.old_start,
            "oldLines": self.old_lines,
            "newStart": self.new_start,
            "newLines": self.new_lines,
            "lines": list(self.lines),
            "header": self.header,
        }


@dataclass
class StructuredPatch:
    old_file_name: str
    new_file_name: str
    old_header: str = ""
    new_header: str = ""
    hunks: list[Hunk] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "oldFileName": self.old_file_name,
            "newFileName": self.new_file_name,
            "oldHeader": self.old_header,
            "newHeader": self.new_header,
            "hunks": [hunk.to_dict() for hunk in self.hunks],
        }


@dataclass
class ChangeDetails:
    """What a change looked like: the content and, for modifications, the patch."""

    type: ChangeType
    content: str
    patch: StructuredPatch | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.type.value, "content": self.content}
        if self.patch is not None:
            result["patch"] = self.patch.to_dict()
        return result


def split_lines(text: str) -> list[str]:
    """Split on newline only, keeping terminators."""
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def _add_lines(out: list[str], prefix: str, lines: list[str]) -> None:
    for line in lines:
        if line.endswith("\n"):
            out.append(prefix + line[:-1])
        else:
            out.append(prefix + line)
            out.append(NO_NEWLINE_MARKER)


def structured_patch(
    old_file_name: str,
    new_file_name: str,
    old_text: str,
    new_text: str,
    old_header: str = "",
    new_header: str = "",
    *,
    context: int = DEFAULT_CONTEXT,
) -> StructuredPatch:
    """Line-level patch from old_text to new_text with `context` lines around changes."""
    old = split_lines(old_text)
    new = split_lines(new_text)
    matcher = difflib.SequenceMatcher(None, old, new, autojunk=False)

    hunks: list[Hunk] = []
    for group in matcher.get_grouped_opcodes(context):
        if all(tag == "equal" for tag, *_ in group):
            continue

        lines: list[str] = []
        for tag, i1, i2, j1, j2 in group:
            if tag == "equal":
                _add_lines(lines, " ", old[i1:i2])
                continue
            if tag in ("replace", "delete"):
                _add_lines(lines, "-", old[i1:i2])
            if tag in ("replace", "insert"):
                _add_lines(lines, "+", new[j1:j2])

        old_begin, old_end = group[0][1], group[-1][2]
        new_begin, new_end = group[0][3], group[-1][4]
        old_count = old_end - old_begin
        new_count = new_end - new_begin
        hunks.append(
            Hunk(
                old_start=old_begin + 1 if old_count else old_begin,
                old_lines=old_count,
                new_start=new_begin + 1 if new_count else new_begin,
                new_lines=new_count,
                lines=lines,
            )
        )

    return StructuredPatch(old_file_name, new_file_name, old_header, new_header, hunks)


def format_patch(patch: StructuredPatch) -> str:
    """Render a structured patch as unified diff text."""
    out = [f"--- {patch.old_file_name}", f"+++ {patch.new_file_name}"]
    for hunk in patch.hunks:
        out.append(hunk.header)
        out.extend(hunk.lines)
    return "\n".join(out) + "\n"


class DiffReconstructor:
    """Rebuilds the before/after view of a recorded event from its snapshots."""

    def __init__(self, engine: QueryEngine, snapshots: SnapshotStore, *, context: int = DEFAULT_CONTEXT):
        self.engine = engine
        self.snapshots = snapshots
        self.context = context

    def reconstruct(self, event_id: str) -> ChangeDetails | None:
        """
        Details for an event id, or None if no such event is recorded.

        Missing snapshots are tolerated: content falls back from the after
        body to the before body to an empty string, and a patch is only
        produced for modifications with both bodies available.
        """
        event = self.engine.find(event_id)
        if event is None:
            return None

        after = self.snapshots.get(event.after_snapshot_id) if event.after_snapshot_id else None
        before = self.snapshots.get(event.before_snapshot_id) if event.before_snapshot_id else None

        if after is not None:
            content = after
        elif before is not None:
            content = before
        else:
            content = ""
        details = ChangeDetails(type=event.type, content=content)

        if event.type is ChangeType.MODIFIED and before is not None and after is not None:
            details.patch = structured_patch(event.path, event.path, before, after, context=self.context)
        return details
