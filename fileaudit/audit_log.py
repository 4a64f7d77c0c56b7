"""
Append-only audit log of change events for one project.

The log is JSON Lines (one event per line, UTF-8, newline-terminated).
Older versions stored the whole history as a single pretty-printed JSON
array; such files are recognized by their first non-whitespace byte (``[``)
and converted in place the first time the log is touched:

    change_log.json          -> parsed, one line per element -> change_log.json.tmp
    change_log.json.bak      <- copy of the original array
    change_log.json          <- change_log.json.tmp, replaced atomically

A legacy file that cannot be parsed is quarantined as
``change_log.json.corrupt`` and never retried. Backups and quarantined
files already present get a numbered name (``.bak.1``) instead of being
overwritten.
"""

from __future__ import annotations

import json
import os
import threading
from enum import Enum
from pathlib import Path
from typing import Iterator

from loguru import logger

from .events import ChangeEvent, event_from_json

LEGACY_BACKUP_SUFFIX = ".bak"
CORRUPT_SUFFIX = ".corrupt"

_WHITESPACE = b" \t\r\n"


class MigrationOutcome(str, Enum):
    """Result of checking a log file for the legacy array format."""

    MISSING = "missing"  # no log yet
    CURRENT = "current"  # already line-oriented, nothing done
    MIGRATED = "migrated"
    CORRUPT = "corrupt"  # legacy file unparseable, quarantined


def _first_significant_byte(path: Path) -> bytes | None:
    with path.open("rb") as f:
        while True:
            chunk = f.read(4096)
            if not chunk:
                return None
            stripped = chunk.lstrip(_WHITESPACE)
            if stripped:
                return stripped[:1]


def _unused_path(path: Path) -> Path:
    """path itself if free, else path.1, path.2, ... so nothing is overwritten."""
    candidate = path
    n = 0
    while candidate.exists():
        n += 1
        candidate = path.with_name(f"{path.name}.{n}")
    return candidate


def _write_durably(path: Path, data: bytes) -> None:
    with path.open("wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())


def migrate_legacy_log(log_path: Path) -> MigrationOutcome:
    """
    Convert a legacy whole-array log to JSON Lines.

    Idempotent: a line-oriented (or missing, or empty) log is left untouched
    and no backup is made. Element order is preserved as stored.

    Until the converted file replaces it, the legacy array stays at
    log_path, so an interrupted migration is simply redone on next access.
    Existing backups and quarantined files are never overwritten.
    """
    try:
        first = _first_significant_byte(log_path)
    except FileNotFoundError:
        return MigrationOutcome.MISSING

    if first != b"[":
        return MigrationOutcome.CURRENT

    logger.info("Legacy log format detected at {}; migrating", log_path)
    original = log_path.read_bytes()

    try:
        elements = json.loads(original)
        if not isinstance(elements, list):
            raise ValueError(f"expected a JSON array, got {type(elements).__name__}")
    except ValueError as exc:
        corrupt_path = _unused_path(log_path.with_name(log_path.name + CORRUPT_SUFFIX))
        os.replace(log_path, corrupt_path)
        logger.error(
            "Legacy log {} could not be parsed ({}); quarantined as {}",
            log_path,
            exc,
            corrupt_path,
        )
        return MigrationOutcome.CORRUPT

    temp_path = log_path.with_name(log_path.name + ".tmp")
    lines = "".join(json.dumps(element, separators=(",", ":")) + "\n" for element in elements)
    _write_durably(temp_path, lines.encode("utf-8"))

    backup_path = _unused_path(log_path.with_name(log_path.name + LEGACY_BACKUP_SUFFIX))
    _write_durably(backup_path, original)
    os.replace(temp_path, log_path)

    logger.info("Migrated {} legacy events in {} (backup: {})", len(elements), log_path, backup_path)
    return MigrationOutcome.MIGRATED


class AuditLog:
    """
    Append-only event log for a single project.

    INVARIANT: existing lines are never modified. append() is the only
    write and issues one write of one complete line, so readers streaming
    the file concurrently never see a partial event.
    """

    def __init__(self, log_path: Path):
        self.log_path = log_path
        self._migration: MigrationOutcome | None = None
        self._migration_lock = threading.Lock()

    def ensure_migrated(self) -> MigrationOutcome:
        """Run the legacy-format check once per AuditLog instance."""
        with self._migration_lock:
            if self._migration is None:
                self._migration = migrate_legacy_log(self.log_path)
            return self._migration

    def append(self, event: ChangeEvent) -> None:
        """
        Durably append one event.

        Raises OSError if the line could not be written; the caller decides
        what a failed write means for the event.
        """
        self.ensure_migrated()
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        data = (event.to_json() + "\n").encode("utf-8")
        with self.log_path.open("a+b", buffering=0) as f:
            if f.seek(0, os.SEEK_END) > 0:
                f.seek(-1, os.SEEK_END)
                if f.read(1) != b"\n":
                    # Torn line from an interrupted write; end it so it is skipped on read
                    logger.warning("Unterminated last line in {}; closing it before appending", self.log_path)
                    data = b"\n" + data
            view = memoryview(data)
            while view:
                written = f.write(view)
                view = view[written:]
            os.fsync(f.fileno())

    def stream(self) -> Iterator[ChangeEvent]:
        """
        Iterate over all events, oldest (first appended) first.

        A missing log yields nothing. Malformed lines are logged and skipped.
        A trailing line without its newline belongs to an append still in
        flight and is not read.
        """
        self.ensure_migrated()
        try:
            f = self.log_path.open("rb")
        except FileNotFoundError:
            return

        with f:
            for lineno, raw in enumerate(f, start=1):
                if not raw.endswith(b"\n"):
                    break
                line = raw.strip()
                if not line:
                    continue
                try:
                    event = event_from_json(line)
                except ValueError as exc:
                    logger.warning("Skipping malformed line {} in {}: {}", lineno, self.log_path, exc)
                    continue
                yield event

    def count(self) -> int:
        """Count readable events."""
        return sum(1 for _ in self.stream())
