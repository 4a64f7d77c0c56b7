"""Tests for service configuration and project identity."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from fileaudit.config import ServiceConfig, parse_projects
from fileaudit.exceptions import ConfigError
from fileaudit.project import (
    LOG_FILE_NAME,
    PROJECTS_DIR_NAME,
    SNAPSHOTS_DIR_NAME,
    Project,
    ProjectLayout,
    project_id,
    purge_project_data,
)


def test_from_env(tmp_path: Path):
    env = {
        "USER_DATA_PATH": str(tmp_path),
        "WATCHED_PROJECTS": json.dumps([{"path": str(tmp_path / "site"), "name": "Site"}]),
        "FILEAUDIT_STABILITY_MS": "500",
        "FILEAUDIT_POLL_MS": "20",
        "FILEAUDIT_DEFAULT_USER": "svc",
    }
    config = ServiceConfig.from_env(env)

    assert config.user_data == tmp_path
    assert config.projects == [Project(path=str(tmp_path / "site"), name="Site")]
    assert config.stability_threshold == 0.5
    assert config.poll_interval == 0.02
    assert config.default_user == "svc"


def test_defaults(tmp_path: Path):
    config = ServiceConfig.from_values(tmp_path, "[]")
    assert config.projects == []
    assert config.stability_threshold == 2.0
    assert config.poll_interval == 0.1
    assert config.default_user


@pytest.mark.parametrize(
    "env",
    [
        {"WATCHED_PROJECTS": "[]"},
        {"USER_DATA_PATH": "/data"},
        {"USER_DATA_PATH": "", "WATCHED_PROJECTS": "[]"},
    ],
)
def test_required_values(env):
    with pytest.raises(ConfigError):
        ServiceConfig.from_env(env)


@pytest.mark.parametrize(
    "stability,poll",
    [("soon", None), ("-1", None), (None, "0"), (None, "fast")],
)
def test_invalid_timings(tmp_path: Path, stability, poll):
    with pytest.raises(ConfigError):
        ServiceConfig.from_values(tmp_path, "[]", stability_ms=stability, poll_ms=poll)


@pytest.mark.parametrize(
    "raw",
    ["not json", '{"path": "/a"}', '[{"name": "no path"}]', '[{"path": ""}]', "[42]"],
)
def test_parse_projects_rejects(raw):
    with pytest.raises(ConfigError):
        parse_projects(raw)


def test_parse_projects_dedupes_and_names(tmp_path: Path):
    raw = json.dumps(
        [
            {"path": str(tmp_path / "site")},
            {"path": str(tmp_path / "site" / ".." / "site"), "name": "dup"},
        ]
    )
    projects = parse_projects(raw)
    assert len(projects) == 1
    assert projects[0].name == "site"


def test_layout_paths(tmp_path: Path):
    layout = ProjectLayout(tmp_path, "/srv/site")
    assert layout.data_dir == tmp_path / PROJECTS_DIR_NAME / project_id("/srv/site")
    assert layout.log_path.name == LOG_FILE_NAME
    assert layout.snapshots_dir.name == SNAPSHOTS_DIR_NAME
    assert len(project_id("/srv/site")) == 64
    assert project_id("/srv/site") != project_id("/srv/site2")


def test_purge_removes_only_that_project(tmp_path: Path):
    keep = ProjectLayout(tmp_path, "/srv/keep")
    drop = ProjectLayout(tmp_path, "/srv/drop")
    keep.ensure_dirs()
    drop.ensure_dirs()
    drop.log_path.write_text("")

    assert purge_project_data(tmp_path, "/srv/drop")
    assert not drop.data_dir.exists()
    assert keep.data_dir.exists()
    assert not purge_project_data(tmp_path, "/srv/drop")
