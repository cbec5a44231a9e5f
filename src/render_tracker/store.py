"""In-memory task store.

The single source of truth for merged render task state within one
project scope. All writes go through ``merge_record``; readers get
immutable tuples and never the live mapping.

Example:
    >>> store = TaskStore()
    >>> store.upsert_snapshot([TaskRecord(id="t1", status=TaskStatus.RENDERING)])
    True
    >>> store.merge_patch({"id": "t1", "progress": 70})
    True
    >>> store.get("t1").progress
    70.0
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

from render_tracker.logging import Loggers
from render_tracker.merge import MergeSource, merge_record
from render_tracker.models import TaskRecord, TaskStats, TaskStatus

logger = Loggers.store()

RecordsListener = Callable[[tuple[TaskRecord, ...]], None]


class TaskStore:
    """Keyed collection of TaskRecord with lattice-checked merges.

    Not thread-safe: every call is expected on the event loop thread,
    which makes each operation atomic with respect to observers.
    """

    def __init__(self) -> None:
        self._records: dict[str, TaskRecord] = {}
        self._listeners: list[RecordsListener] = []

    # ---- write side ----

    def upsert_snapshot(
        self,
        records: Iterable[TaskRecord],
        *,
        complete: bool = False,
        as_of: datetime | None = None,
    ) -> bool:
        """Apply an authoritative snapshot.

        Matching records are replaced field-for-field except for the
        local ``dismissed`` flag; new ids are added.

        Args:
            records: Full records from the engine.
            complete: The snapshot covers the whole scope, so ids absent
                from it are pruned.
            as_of: When the snapshot request was issued. Placeholders
                created after this moment survive pruning.

        Returns:
            True if the store changed.
        """
        changed = False
        seen: set[str] = set()

        for incoming in records:
            seen.add(incoming.id)
            current = self._records.get(incoming.id)
            merged = merge_record(current, incoming, MergeSource.SNAPSHOT)
            if merged is not current and merged != current:
                self._records[incoming.id] = merged
                changed = True

        if complete:
            for task_id in [tid for tid in self._records if tid not in seen]:
                record = self._records[task_id]
                if record.placeholder and as_of is not None and record.created_at > as_of:
                    continue
                del self._records[task_id]
                changed = True
                logger.debug("task_pruned", task_id=task_id)

        if changed:
            self._notify()
        return changed

    def merge_patch(self, partial: Mapping[str, Any]) -> bool:
        """Apply a partial update pushed by the engine.

        Unknown ids get a placeholder record; patches that would leave a
        terminal status or move backwards are ignored.

        Returns:
            True if the store changed.
        """
        task_id = partial.get("id")
        if not task_id:
            logger.warning("patch_without_id_ignored", keys=sorted(partial))
            return False

        task_id = str(task_id)
        current = self._records.get(task_id)
        merged = merge_record(current, partial, MergeSource.PATCH)
        if merged is current:
            return False

        if current is None:
            logger.debug("placeholder_created", task_id=task_id, status=merged.status.value)
        self._records[task_id] = merged
        self._notify()
        return True

    def dismiss(self, task_id: str) -> bool:
        """Hide a record from notifications without removing it."""
        record = self._records.get(task_id)
        if record is None or record.dismissed:
            return False
        self._records[task_id] = record.with_updates(dismissed=True)
        self._notify()
        return True

    def clear_resolved(self) -> int:
        """Remove every record that is not currently rendering.

        Returns:
            Number of records removed.
        """
        doomed = [
            task_id
            for task_id, record in self._records.items()
            if record.status is not TaskStatus.RENDERING
        ]
        for task_id in doomed:
            del self._records[task_id]
        if doomed:
            logger.info("resolved_cleared", count=len(doomed))
            self._notify()
        return len(doomed)

    # ---- read side ----

    def get(self, task_id: str) -> TaskRecord | None:
        return self._records.get(task_id)

    def records(self) -> tuple[TaskRecord, ...]:
        """All records, most recently created first."""
        return tuple(
            sorted(
                self._records.values(),
                key=lambda r: (r.created_at, r.id),
                reverse=True,
            )
        )

    def stats(self) -> TaskStats:
        return TaskStats.from_records(self._records.values())

    def subscribe(self, listener: RecordsListener) -> Callable[[], None]:
        """Register a listener called with the record tuple after each change.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._records

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.records()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("records_listener_failed")
