"""CLI entrypoint for fileaudit."""

import sys
from datetime import datetime
from pathlib import Path

import click

from . import __version__

EXIT_CONFIG_ERROR = 2


@click.group()
@click.version_option(__version__, prog_name="fileaudit")
@click.option(
    "--user-data",
    "-d",
    envvar="USER_DATA_PATH",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Root directory holding per-project history (env: USER_DATA_PATH)",
)
@click.pass_context
def cli(ctx: click.Context, user_data: Path | None) -> None:
    """fileaudit - audit trail of file changes in watched project folders.

    Records every create/modify/delete with its author and a content
    snapshot, and lets you query, export and diff the history.
    """
    ctx.ensure_object(dict)
    ctx.obj["user_data"] = user_data


def _require_user_data(ctx: click.Context) -> Path:
    user_data = ctx.obj.get("user_data")
    if user_data is None:
        raise click.UsageError("Pass --user-data or set USER_DATA_PATH.")
    return user_data


def _filter_options(fn):
    """Options shared by query and export."""
    fn = click.option("--search", "search", default=None, help="Case-insensitive match on path or author")(fn)
    fn = click.option(
        "--focus",
        "focus",
        default=None,
        help="Only changes under this path (a file or folder inside the project)",
    )(fn)
    fn = click.option(
        "--to",
        "end_date",
        type=click.DateTime(formats=["%Y-%m-%d"]),
        default=None,
        help="Last day to include (YYYY-MM-DD, local time)",
    )(fn)
    fn = click.option(
        "--from",
        "start_date",
        type=click.DateTime(formats=["%Y-%m-%d"]),
        default=None,
        help="First day to include (YYYY-MM-DD, local time)",
    )(fn)
    return fn


def _as_date(value: datetime | None):
    return value.date() if value is not None else None


@cli.command()
@click.option(
    "--projects",
    "projects_raw",
    envvar="WATCHED_PROJECTS",
    default=None,
    help='JSON list of {"path", "name"} to watch (env: WATCHED_PROJECTS)',
)
@click.option(
    "--stability-ms",
    envvar="FILEAUDIT_STABILITY_MS",
    default=None,
    help="Quiet period before a change is recorded [default: 2000]",
)
@click.option(
    "--poll-ms",
    envvar="FILEAUDIT_POLL_MS",
    default=None,
    help="Debounce polling granularity [default: 100]",
)
@click.option(
    "--default-user",
    envvar="FILEAUDIT_DEFAULT_USER",
    default=None,
    help="Identity recorded when a file's owner cannot be determined",
)
@click.pass_context
def serve(
    ctx: click.Context,
    projects_raw: str | None,
    stability_ms: str | None,
    poll_ms: str | None,
    default_user: str | None,
) -> None:
    """Watch the configured projects and record every change.

    Runs until interrupted (Ctrl+C or SIGTERM). Persisted events and
    diagnostics are written to stdout as JSON lines for the host process.

    Examples:

        USER_DATA_PATH=~/.fileaudit WATCHED_PROJECTS='[{"path": "/srv/site"}]' fileaudit serve
    """
    from .commands.serve_cmd import run_serve
    from .config import ServiceConfig
    from .exceptions import ConfigError

    try:
        config = ServiceConfig.from_values(
            ctx.obj.get("user_data"),
            projects_raw,
            stability_ms=stability_ms,
            poll_ms=poll_ms,
            default_user=default_user,
        )
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    sys.exit(run_serve(config))


@cli.command()
@click.argument("project")
@_filter_options
@click.option("--page", type=click.IntRange(min=1), default=1, show_default=True, help="Page number (1-based)")
@click.option("--page-size", type=click.IntRange(min=1), default=50, show_default=True, help="Events per page")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
    help="Output format",
)
@click.pass_context
def query(
    ctx: click.Context,
    project: str,
    start_date: datetime | None,
    end_date: datetime | None,
    focus: str | None,
    search: str | None,
    page: int,
    page_size: int,
    output_format: str,
) -> None:
    """Show recorded changes of PROJECT, newest first.

    Examples:

        fileaudit query /srv/site --from 2024-05-01 --to 2024-05-31

        fileaudit query /srv/site --focus /srv/site/src --search alice --format json
    """
    from .commands.history_cmd import build_filter, run_query

    flt = build_filter(_as_date(start_date), _as_date(end_date), focus, search)
    run_query(
        _require_user_data(ctx),
        project,
        flt,
        page=page,
        page_size=page_size,
        format=output_format,
    )


@cli.command()
@click.argument("project")
@_filter_options
@click.pass_context
def export(
    ctx: click.Context,
    project: str,
    start_date: datetime | None,
    end_date: datetime | None,
    focus: str | None,
    search: str | None,
) -> None:
    """Print every matching change of PROJECT, oldest first, one JSON record per line.

    Records carry id, type, path, timestamp, user and projectPath.
    """
    from .commands.history_cmd import build_filter, run_export

    flt = build_filter(_as_date(start_date), _as_date(end_date), focus, search)
    run_export(_require_user_data(ctx), project, flt)


@cli.command()
@click.argument("project")
@click.argument("event_id")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
    help="Output format",
)
@click.pass_context
def diff(ctx: click.Context, project: str, event_id: str, output_format: str) -> None:
    """Show the content or patch recorded for EVENT_ID."""
    from .commands.history_cmd import run_diff

    sys.exit(run_diff(_require_user_data(ctx), project, event_id, format=output_format))


@cli.command()
@click.argument("project")
@click.pass_context
def status(ctx: click.Context, project: str) -> None:
    """Summarize the recorded history of PROJECT."""
    from .commands.history_cmd import run_status

    count = run_status(_require_user_data(ctx), project)
    sys.exit(0 if count > 0 else 1)


@cli.command()
@click.argument("project")
@click.pass_context
def migrate(ctx: click.Context, project: str) -> None:
    """Convert a legacy whole-array log of PROJECT to one event per line.

    Safe to run repeatedly; an already converted log is left untouched.
    """
    from .commands.history_cmd import run_migrate

    sys.exit(run_migrate(_require_user_data(ctx), project))


@cli.command()
@click.argument("project")
@click.option("--force", is_flag=True, help="Required: acknowledge that history is erased permanently")
@click.pass_context
def purge(ctx: click.Context, project: str, force: bool) -> None:
    """Delete the recorded history and snapshots of PROJECT.

    Removing a project from the watch list keeps its history; this is the
    only way to erase it.
    """
    from .commands.history_cmd import run_purge

    if not force:
        raise click.UsageError("Purging erases history permanently; pass --force to confirm.")
    sys.exit(run_purge(_require_user_data(ctx), project))


def main() -> None:
    """Main entrypoint."""
    cli()


if __name__ == "__main__":
    main()
