"""Status-lattice merge of snapshot and patch updates.

Every write into a TaskStore goes through ``merge_record``; it is the
only place that decides whether an update may change a task's status.

Lattice::

    queued -> rendering -> completed | error
                 ^   |
                 |   v
                paused -> completed | error

``queued`` may also jump straight to any later status, because an
engine can start and finish a job between two polls. A snapshot is
authoritative for every non-terminal record and may move it anywhere,
for example ``paused -> queued`` when the engine re-queues on resume.
``completed`` and ``error`` are terminal for both sources.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from render_tracker.logging import Loggers
from render_tracker.models import TaskRecord, TaskStatus, normalize_fields

logger = Loggers.store()


class MergeSource(str, Enum):
    """Where an update came from."""

    SNAPSHOT = "snapshot"
    PATCH = "patch"


_PATCH_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.QUEUED: frozenset(
        {TaskStatus.RENDERING, TaskStatus.PAUSED, TaskStatus.COMPLETED, TaskStatus.ERROR}
    ),
    TaskStatus.RENDERING: frozenset(
        {TaskStatus.PAUSED, TaskStatus.COMPLETED, TaskStatus.ERROR}
    ),
    TaskStatus.PAUSED: frozenset(
        {TaskStatus.RENDERING, TaskStatus.COMPLETED, TaskStatus.ERROR}
    ),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.ERROR: frozenset(),
}


def can_transition(current: TaskStatus, target: TaskStatus, source: MergeSource) -> bool:
    """Check whether ``source`` may move a record from ``current`` to ``target``."""
    if current == target:
        return True
    if current.is_terminal:
        return False
    if source is MergeSource.SNAPSHOT:
        return True
    return target in _PATCH_TRANSITIONS[current]


def merge_record(
    current: TaskRecord | None,
    incoming: TaskRecord | Mapping[str, Any],
    source: MergeSource,
) -> TaskRecord:
    """Resolve an incoming update against the current record.

    Args:
        current: The stored record, or None if the id is unknown.
        incoming: A full TaskRecord for snapshots, or a partial payload
            (engine keys or field names) for patches.
        source: Which channel produced ``incoming``.

    Returns:
        The record to store. When the update is rejected this is
        ``current`` itself, so callers can detect a no-op by identity.

    Raises:
        ValueError: If a patch has no id or a snapshot entry is not a
            TaskRecord.
    """
    if source is MergeSource.SNAPSHOT:
        if not isinstance(incoming, TaskRecord):
            raise ValueError("Snapshot entries must be TaskRecord instances")
        return _merge_snapshot(current, incoming)

    values = _patch_values(incoming)
    return _merge_patch(current, values)


def _patch_values(incoming: TaskRecord | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(incoming, TaskRecord):
        values = {
            name: value
            for name, value in incoming.to_dict().items()
            if value is not None
        }
        values = normalize_fields(values)
    else:
        values = normalize_fields(incoming)
    if not values.get("id"):
        raise ValueError("Patch has no task id")
    # Local presentation state and display-only flags are not patchable.
    values.pop("dismissed", None)
    values.pop("placeholder", None)
    return values


def _merge_snapshot(current: TaskRecord | None, incoming: TaskRecord) -> TaskRecord:
    if current is None:
        return incoming.with_updates(dismissed=False, placeholder=False)

    if not can_transition(current.status, incoming.status, MergeSource.SNAPSHOT):
        logger.debug(
            "snapshot_regression_rejected",
            task_id=current.id,
            current=current.status.value,
            incoming=incoming.status.value,
        )
        return current

    return incoming.with_updates(dismissed=current.dismissed, placeholder=False)


def _merge_patch(current: TaskRecord | None, values: dict[str, Any]) -> TaskRecord:
    if current is None:
        return TaskRecord.placeholder_from(values)

    if current.is_terminal:
        logger.debug(
            "patch_on_terminal_ignored",
            task_id=current.id,
            current=current.status.value,
        )
        return current

    target = values.get("status", current.status)
    if not can_transition(current.status, target, MergeSource.PATCH):
        logger.debug(
            "patch_regression_rejected",
            task_id=current.id,
            current=current.status.value,
            incoming=target.value,
        )
        return current

    values.pop("id", None)
    merged = current.with_updates(**values)
    if merged == current:
        return current
    return merged
