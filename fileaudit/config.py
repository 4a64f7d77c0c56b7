"""
Service configuration, read once at process start.

Required:
    USER_DATA_PATH      root directory for per-project data
    WATCHED_PROJECTS    JSON list of {"path": ..., "name": ...}

Optional:
    FILEAUDIT_STABILITY_MS   quiet period before a change is reported (2000)
    FILEAUDIT_POLL_MS        debounce polling granularity (100)
    FILEAUDIT_DEFAULT_USER   identity used when ownership is unknown
"""

from __future__ import annotations

import getpass
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from .exceptions import ConfigError
from .project import Project

DEFAULT_STABILITY_MS = 2000
DEFAULT_POLL_MS = 100
DEFAULT_OWNER_TIMEOUT = 5.0


def current_user() -> str:
    """Account running this process, used as the default identity."""
    try:
        return getpass.getuser()
    except (OSError, KeyError):
        return "unknown"


def parse_projects(raw: str) -> list[Project]:
    """Parse the serialized watch list."""
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise ConfigError(f"WATCHED_PROJECTS is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise ConfigError("WATCHED_PROJECTS must be a JSON list")

    projects: list[Project] = []
    for index, item in enumerate(data):
        if not isinstance(item, dict) or not isinstance(item.get("path"), str) or not item["path"]:
            raise ConfigError(f"WATCHED_PROJECTS[{index}] needs a non-empty 'path'")
        project = Project.from_dict(item)
        if any(p.path == project.path for p in projects):
            continue
        projects.append(project)
    return projects


def _parse_millis(name: str, raw: str | None, default: int) -> float:
    if raw is None or raw == "":
        return default / 1000
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer number of milliseconds, got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"{name} must not be negative")
    return value / 1000


@dataclass
class ServiceConfig:
    """Everything the audit service needs to start."""

    user_data: Path
    projects: list[Project] = field(default_factory=list)
    stability_threshold: float = DEFAULT_STABILITY_MS / 1000
    poll_interval: float = DEFAULT_POLL_MS / 1000
    default_user: str = field(default_factory=current_user)
    owner_timeout: float = DEFAULT_OWNER_TIMEOUT

    @classmethod
    def from_values(
        cls,
        user_data: str | os.PathLike[str] | None,
        projects_raw: str | None,
        *,
        stability_ms: str | None = None,
        poll_ms: str | None = None,
        default_user: str | None = None,
    ) -> ServiceConfig:
        """Validate raw configuration values; raises ConfigError."""
        if not user_data:
            raise ConfigError("USER_DATA_PATH is not set")
        if projects_raw is None:
            raise ConfigError("WATCHED_PROJECTS is not set")

        poll_interval = _parse_millis("FILEAUDIT_POLL_MS", poll_ms, DEFAULT_POLL_MS)
        if poll_interval <= 0:
            raise ConfigError("FILEAUDIT_POLL_MS must be positive")

        return cls(
            user_data=Path(user_data),
            projects=parse_projects(projects_raw),
            stability_threshold=_parse_millis("FILEAUDIT_STABILITY_MS", stability_ms, DEFAULT_STABILITY_MS),
            poll_interval=poll_interval,
            default_user=default_user or current_user(),
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ServiceConfig:
        """Load configuration from the environment."""
        env = os.environ if environ is None else environ
        return cls.from_values(
            env.get("USER_DATA_PATH"),
            env.get("WATCHED_PROJECTS"),
            stability_ms=env.get("FILEAUDIT_STABILITY_MS"),
            poll_ms=env.get("FILEAUDIT_POLL_MS"),
            default_user=env.get("FILEAUDIT_DEFAULT_USER"),
        )
