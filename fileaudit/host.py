"""
Channels to the host process.

The core emits two kinds of messages: persisted change events and
diagnostic records. The host decides where they go (a UI, a log buffer).
"""

from __future__ import annotations

import json
import sys
import threading
from typing import IO, Any, Protocol


class HostChannel(Protocol):
    """Protocol for delivering messages to the host process."""

    def send_event(self, event: dict[str, Any]) -> None:
        """Deliver one persisted change event."""
        ...

    def send_log(self, record: dict[str, Any]) -> None:
        """Deliver one diagnostic record ({source, level, message, timestamp})."""
        ...


class NullChannel:
    """Drops every message."""

    def send_event(self, event: dict[str, Any]) -> None:
        pass

    def send_log(self, record: dict[str, Any]) -> None:
        pass


class JsonLinesChannel:
    """
    Writes one JSON object per message to a stream (stdout by default):

        {"kind": "event", "event": {...}}
        {"kind": "log", "record": {...}}
    """

    def __init__(self, stream: IO[str] | None = None):
        self.stream = stream if stream is not None else sys.stdout
        self._lock = threading.Lock()

    def _write(self, message: dict[str, Any]) -> None:
        line = json.dumps(message, separators=(",", ":")) + "\n"
        with self._lock:
            self.stream.write(line)
            self.stream.flush()

    def send_event(self, event: dict[str, Any]) -> None:
        self._write({"kind": "event", "event": event})

    def send_log(self, record: dict[str, Any]) -> None:
        self._write({"kind": "log", "record": record})


class RecordingChannel:
    """Keeps every message in memory."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []
        self.logs: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def send_event(self, event: dict[str, Any]) -> None:
        with self._lock:
            self.events.append(event)

    def send_log(self, record: dict[str, Any]) -> None:
        with self._lock:
            self.logs.append(record)
