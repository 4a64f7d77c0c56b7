"""History commands - query, export, diff and maintain recorded changes."""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..audit_log import MigrationOutcome, migrate_legacy_log
from ..diff import format_patch
from ..events import ChangeType, format_timestamp
from ..history import ProjectHistory
from ..project import ProjectLayout, normalize_project_path, purge_project_data
from ..query import QueryFilter

TYPE_ICONS = {
    ChangeType.CREATED: ("+", "green"),
    ChangeType.MODIFIED: ("~", "yellow"),
    ChangeType.DELETED: ("-", "red"),
}


def build_filter(
    start_date: date | None = None,
    end_date: date | None = None,
    focus: str | None = None,
    search: str | None = None,
) -> QueryFilter:
    return QueryFilter(
        start_date=start_date,
        end_date=end_date,
        focused_path=normalize_project_path(focus) if focus else None,
        search_term=search or "",
    )


def run_query(
    user_data: Path,
    project_path: str,
    flt: QueryFilter,
    *,
    page: int = 1,
    page_size: int = 50,
    format: str = "text",
) -> int:
    """
    Display one page of matching events, newest first.

    Returns the total number of matching events.
    """
    console = Console()
    history = ProjectHistory(user_data, project_path)
    result = history.query(flt, page=page, page_size=page_size)

    if format == "json":
        console.print_json(json.dumps(result.to_dict()))
        return result.total_count

    if not result.total_count:
        console.print("[dim]No changes found.[/dim]")
        return 0

    table = Table(title=f"Changes in {history.project_path}")
    table.add_column("", width=1)
    table.add_column("Time")
    table.add_column("Path")
    table.add_column("User")
    table.add_column("Event", style="dim")
    for event in result.items:
        icon, color = TYPE_ICONS[event.type]
        table.add_row(
            f"[{color}]{icon}[/{color}]",
            event.timestamp.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
            event.path,
            event.user,
            event.id,
        )
    console.print(table)

    summary = ", ".join(f"{kind.value.lower()} {count}" for kind, count in result.type_counts.items())
    console.print(
        f"Page {result.page}/{max(result.page_count, 1)} - "
        f"{result.total_count} changes ({summary})"
    )
    if result.author_counts:
        authors = ", ".join(
            f"{user} {count}"
            for user, count in sorted(result.author_counts.items(), key=lambda item: (-item[1], item[0]))
        )
        console.print(f"[dim]By author: {authors}[/dim]")
    return result.total_count


def run_export(user_data: Path, project_path: str, flt: QueryFilter) -> int:
    """
    Print every matching event as a flat JSON record per line, oldest first.

    Returns the number of records written.
    """
    console = Console(soft_wrap=True)
    history = ProjectHistory(user_data, project_path)
    count = 0
    for row in history.engine.export_rows(flt):
        console.print(json.dumps(row), markup=False, highlight=False)
        count += 1
    return count


def run_diff(user_data: Path, project_path: str, event_id: str, *, format: str = "text") -> int:
    """Show what a recorded change did. Returns 0 if the event exists, 1 otherwise."""
    console = Console()
    history = ProjectHistory(user_data, project_path)
    details = history.reconstruct(event_id)

    if details is None:
        console.print(f"[red]No event {event_id} in {history.project_path}[/red]")
        return 1

    if format == "json":
        console.print_json(json.dumps(details.to_dict()))
        return 0

    if details.patch is not None:
        for line in format_patch(details.patch).splitlines():
            style = {"+": "green", "-": "red", "@": "cyan"}.get(line[:1])
            if line.startswith(("+++", "---")):
                style = "bold"
            console.print(line, style=style, markup=False, highlight=False)
    else:
        icon, color = TYPE_ICONS[details.type]
        console.print(f"[{color}]{icon} {details.type.value}[/{color}]")
        console.print(details.content, markup=False, highlight=False)
    return 0


def run_migrate(user_data: Path, project_path: str) -> int:
    """Convert a legacy array log. Returns 1 if the log had to be quarantined."""
    console = Console()
    layout = ProjectLayout(user_data, normalize_project_path(project_path))
    outcome = migrate_legacy_log(layout.log_path)

    messages = {
        MigrationOutcome.MISSING: "[dim]No log recorded yet.[/dim]",
        MigrationOutcome.CURRENT: "Log is already line-oriented; nothing to do.",
        MigrationOutcome.MIGRATED: f"[green]Migrated[/green] {layout.log_path}",
        MigrationOutcome.CORRUPT: f"[red]Legacy log could not be parsed;[/red] quarantined next to {layout.log_path}",
    }
    console.print(messages[outcome])
    return 1 if outcome is MigrationOutcome.CORRUPT else 0


def run_purge(user_data: Path, project_path: str) -> int:
    """Delete a project's retained history. Returns 1 if there was none."""
    console = Console()
    if purge_project_data(user_data, project_path):
        console.print(f"[bold]Purged[/bold] history of {normalize_project_path(project_path)}")
        return 0
    console.print("[dim]No history recorded for this project.[/dim]")
    return 1


def run_status(user_data: Path, project_path: str) -> int:
    """Display a summary of a project's recorded history. Returns the event count."""
    console = Console()
    history = ProjectHistory(user_data, project_path)
    events = history.export()

    if not events:
        console.print("[dim]No changes recorded yet.[/dim]")
        return 0

    result = history.query(page_size=1)
    table = Table(title="History Summary")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Project", history.project_path)
    table.add_row("Data directory", str(history.layout.data_dir))
    table.add_row("Total events", str(len(events)))
    table.add_row("", "")
    for kind, count in result.type_counts.items():
        icon, _ = TYPE_ICONS[kind]
        table.add_row(f"  {icon} {kind.value}", str(count))
    table.add_row("", "")
    table.add_row("Authors", str(len(result.author_counts)))
    table.add_row("Snapshots", str(history.snapshots.count()))
    table.add_row("", "")
    table.add_row("First event", format_timestamp(events[0].timestamp)[:19].replace("T", " "))
    table.add_row("Last event", format_timestamp(events[-1].timestamp)[:19].replace("T", " "))

    console.print(table)
    return len(events)
