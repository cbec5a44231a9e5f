"""Read-only projections of task records for display.

Nothing here mutates a store; every function takes a record sequence
and returns new values.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

from render_tracker.models import TaskRecord, TaskStats, TaskStatus

DEFAULT_RESOLVED_LIMIT = 3

STATUS_LABELS: dict[TaskStatus, str] = {
    TaskStatus.QUEUED: "Queued",
    TaskStatus.RENDERING: "Rendering",
    TaskStatus.PAUSED: "Paused",
    TaskStatus.COMPLETED: "Completed",
    TaskStatus.ERROR: "Failed",
}


@dataclass(frozen=True)
class NotificationSnapshot:
    """Active and resolved groupings of the visible (non-dismissed) tasks.

    Attributes:
        active: Tasks currently rendering.
        resolved: The most recent non-rendering tasks, capped.
        remainder: Resolved tasks beyond the cap.
        clear_count: All resolved tasks, for the "clear N" affordance.
    """

    active: tuple[TaskRecord, ...] = ()
    resolved: tuple[TaskRecord, ...] = ()
    remainder: int = 0
    clear_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.active and not self.clear_count

    @property
    def visible_count(self) -> int:
        return len(self.active) + self.clear_count


@dataclass
class PanelState:
    """Expand/collapse state of the notification panel; not task state."""

    expanded: bool = True

    def toggle(self) -> bool:
        self.expanded = not self.expanded
        return self.expanded


def project_notifications(
    records: Iterable[TaskRecord],
    resolved_limit: int = DEFAULT_RESOLVED_LIMIT,
) -> NotificationSnapshot:
    """Partition visible records into active and resolved groups."""
    visible = [record for record in records if not record.dismissed]
    active = tuple(r for r in visible if r.status is TaskStatus.RENDERING)
    resolved = sorted(
        (r for r in visible if r.status is not TaskStatus.RENDERING),
        key=lambda r: (r.recency, r.id),
        reverse=True,
    )
    limit = max(0, resolved_limit)
    return NotificationSnapshot(
        active=active,
        resolved=tuple(resolved[:limit]),
        remainder=max(0, len(resolved) - limit),
        clear_count=len(resolved),
    )


def task_stats(records: Iterable[TaskRecord]) -> TaskStats:
    return TaskStats.from_records(records)


def progress_text(record: TaskRecord) -> str:
    """Short progress line: ``"3/5 done, 1 failed"``, ``"42%"`` or ``""``."""
    if record.total_count and record.completed_count is not None:
        text = f"{record.completed_count}/{record.total_count} done"
        if record.error_count:
            text += f", {record.error_count} failed"
        return text
    if record.progress is not None:
        return f"{math.floor(record.progress + 0.5)}%"
    return ""


def progress_fraction(record: TaskRecord) -> float | None:
    """Progress in [0, 1], from the percentage or the batch counts."""
    if record.progress is not None:
        return record.progress / 100.0
    if record.total_count:
        return min(1.0, (record.completed_count or 0) / record.total_count)
    return None


def resolve_navigation(record: TaskRecord) -> str | None:
    """Target for the "jump to result" affordance of a completed task."""
    if record.status is TaskStatus.COMPLETED and record.navigate_target:
        return record.navigate_target
    return None
