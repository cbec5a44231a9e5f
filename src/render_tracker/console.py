"""Terminal presentation of render notifications.

``render_notifications`` builds a rich Panel from a NotificationSnapshot;
``main`` backs the ``render-tracker watch <project_id>`` command, which
opens a scope against an HTTP engine and keeps a live view refreshed.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
from typing import Sequence

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from render_tracker.config import RenderSettings, get_settings
from render_tracker.engine import HttpRenderEngine
from render_tracker.logging import configure_logging
from render_tracker.messages import Message, MessageKind
from render_tracker.models import TaskKind, TaskRecord, TaskStats, TaskStatus
from render_tracker.scope import ScopeContext
from render_tracker.view import (
    STATUS_LABELS,
    NotificationSnapshot,
    PanelState,
    progress_text,
    task_stats,
)

_STATUS_STYLES = {
    TaskStatus.QUEUED: "white",
    TaskStatus.RENDERING: "yellow",
    TaskStatus.PAUSED: "dim",
    TaskStatus.COMPLETED: "green",
    TaskStatus.ERROR: "red",
}

_MESSAGE_STYLES = {
    MessageKind.SUCCESS: "bold green",
    MessageKind.ERROR: "bold red",
    MessageKind.INFO: "bold cyan",
    MessageKind.WARNING: "bold yellow",
}


def _task_title(record: TaskRecord) -> str:
    kind = "video" if record.kind is TaskKind.VIDEO_RENDER else "image"
    if record.shot_index is not None:
        return f"Shot #{record.shot_index} - {kind}"
    return f"{record.id} - {kind}"


def _add_task_row(table: Table, record: TaskRecord) -> None:
    status = Text(STATUS_LABELS[record.status], style=_STATUS_STYLES[record.status])
    detail = progress_text(record)
    if record.status is TaskStatus.ERROR and record.error_message:
        detail = record.error_message
    elif record.status is TaskStatus.COMPLETED and record.navigate_target:
        detail = f"open {record.navigate_target}"
    table.add_row(_task_title(record), status, detail)


def render_stats(stats: TaskStats) -> Table:
    table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
    for label in ("Total", "Completed", "Rendering", "Queued", "Paused", "Failed"):
        table.add_column(label, justify="center")
    table.add_row(
        str(stats.total),
        f"[green]{stats.completed}[/green]",
        f"[yellow]{stats.rendering}[/yellow]",
        str(stats.queued),
        f"[dim]{stats.paused}[/dim]",
        f"[red]{stats.error}[/red]",
    )
    return table


def render_notifications(
    snapshot: NotificationSnapshot,
    *,
    stats: TaskStats | None = None,
    message: Message | None = None,
    panel_state: PanelState | None = None,
) -> Panel:
    """Build the notification panel for one snapshot."""
    expanded = panel_state.expanded if panel_state is not None else True
    parts: list = []

    if message is not None:
        parts.append(Text(message.text, style=_MESSAGE_STYLES[message.kind]))
    if stats is not None:
        parts.append(render_stats(stats))

    if expanded:
        table = Table(show_header=False, box=None, padding=(0, 2, 0, 0))
        table.add_column("Task", style="bold", no_wrap=True)
        table.add_column("Status")
        table.add_column("Detail")
        for record in snapshot.active:
            _add_task_row(table, record)
        for record in snapshot.resolved:
            _add_task_row(table, record)
        if snapshot.is_empty:
            table.add_row("[dim]No render tasks[/dim]", "", "")
        parts.append(table)
        if snapshot.remainder:
            parts.append(Text(f"Clear {snapshot.clear_count} resolved", style="dim"))

    title = "[bold]Task Progress[/bold]"
    if snapshot.active:
        title += f" [yellow]({len(snapshot.active)} running)[/yellow]"
    return Panel(Group(*parts), title=title, border_style="cyan")


async def watch(
    project_id: str,
    settings: RenderSettings,
    refresh: float = 0.5,
    panel_state: PanelState | None = None,
) -> None:
    """Follow one project's render tasks until cancelled."""
    panel_state = panel_state or PanelState()
    engine = HttpRenderEngine(
        settings.engine_url,
        timeout=settings.request_timeout,
        reconnect_delay=settings.poll_interval,
    )
    scope = ScopeContext(engine, settings)
    listener = asyncio.create_task(engine.listen())
    console = Console()
    try:
        scope.open(project_id)
        with Live(console=console, refresh_per_second=4) as live:
            while True:
                live.update(
                    render_notifications(
                        scope.notifications(),
                        stats=task_stats(scope.records()),
                        message=scope.messages.current,
                        panel_state=panel_state,
                    )
                )
                await asyncio.sleep(refresh)
    finally:
        scope.close()
        listener.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await listener
        await engine.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="render-tracker")
    sub = parser.add_subparsers(dest="command", required=True)

    watch_parser = sub.add_parser("watch", help="Follow a project's render tasks")
    watch_parser.add_argument("project_id")
    watch_parser.add_argument("--url", help="Render engine base URL")
    watch_parser.add_argument("--interval", type=float, help="Poll interval in seconds")
    watch_parser.add_argument(
        "--collapsed",
        action="store_true",
        help="Show only the summary, not the task list",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    overrides = {}
    if args.url:
        overrides["engine_url"] = args.url
    if args.interval:
        overrides["poll_interval"] = args.interval
    settings = get_settings().model_copy(update=overrides) if overrides else get_settings()
    configure_logging(settings)

    try:
        asyncio.run(
            watch(
                args.project_id,
                settings,
                panel_state=PanelState(expanded=not args.collapsed),
            )
        )
    except KeyboardInterrupt:
        pass
    return 0
