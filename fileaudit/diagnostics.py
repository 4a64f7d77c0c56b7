"""
Diagnostic records for the host.

The core logs with loguru. install_diagnostics() adds a sink that turns each
record into ``{source, level, type, message, timestamp}`` and hands it to a
HostChannel. Loguru catches sink errors, so an unavailable host never breaks
the pipeline; with ``enqueue=True`` delivery happens off the caller's thread.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from .host import HostChannel

ERROR_LEVEL_NO = 40


def to_host_record(record: dict[str, Any], source: str) -> dict[str, Any]:
    """Convert a loguru record to the host's diagnostic shape."""
    level = record["level"]
    message = record["message"]
    exception = record.get("exception")
    if exception is not None and exception.value is not None:
        message = f"{message}: {exception.type.__name__}: {exception.value}"
    return {
        "source": source,
        "level": level.name,
        "type": "error" if level.no >= ERROR_LEVEL_NO else "log",
        "message": message,
        "timestamp": record["time"].isoformat(),
    }


def install_diagnostics(
    channel: HostChannel,
    *,
    source: str = "Service",
    level: str = "INFO",
    enqueue: bool = True,
    replace_default: bool = False,
) -> int:
    """
    Route loguru output to the host channel.

    Returns the loguru handler id (pass it to ``logger.remove`` to detach).
    With replace_default, the stderr handler loguru installs is removed
    first so nothing reaches the console.
    """
    if replace_default:
        logger.remove()

    def sink(message: Any) -> None:
        channel.send_log(to_host_record(message.record, source))

    return logger.add(sink, level=level, enqueue=enqueue, catch=True, format="{message}")
