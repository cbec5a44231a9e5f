"""Timer-driven snapshot poller.

Fetches the full task list of one project on a fixed interval and feeds
it to the TaskStore as a complete snapshot. A failed fetch is logged and
leaves the store untouched; the next tick retries.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from render_tracker.errors import ScopeError
from render_tracker.logging import Loggers
from render_tracker.models import TaskRecord, utcnow

if TYPE_CHECKING:
    from render_tracker.engine import RenderEngine
    from render_tracker.scope import ScopeToken
    from render_tracker.store import TaskStore

logger = Loggers.poll()


class PollLoop:
    """Polls ``list(project_id)`` every ``interval`` seconds.

    At most one timer task exists per loop; ``start`` while running is a
    no-op and ``stop`` cancels synchronously. Responses whose scope token
    is no longer current, or that were requested before a response that
    has already been applied, are discarded.
    """

    def __init__(
        self,
        engine: "RenderEngine",
        store: "TaskStore",
        token: "ScopeToken",
        interval: float,
    ) -> None:
        self._engine = engine
        self._store = store
        self._token = token
        self._interval = interval
        self._task: asyncio.Task[None] | None = None
        self._issued = 0
        self._applied = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval(self) -> float:
        return self._interval

    def start(self) -> None:
        """Start the timer; polls immediately, then every interval."""
        if self.running:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise ScopeError("PollLoop.start() requires a running event loop") from e
        self._task = loop.create_task(
            self._run(), name=f"render-poll:{self._token.project_id}"
        )

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await self.poll_now()
            await asyncio.sleep(self._interval)

    async def poll_now(self) -> bool:
        """Fetch and apply one snapshot immediately.

        Returns:
            True if a snapshot was applied to the store.
        """
        token = self._token
        if not token.is_current:
            return False

        self._issued += 1
        sequence = self._issued
        as_of = utcnow()

        try:
            payload = await self._engine.invoke("list", token.project_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "poll_failed",
                project_id=token.project_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        if not token.is_current:
            logger.info(
                "poll_response_discarded",
                project_id=token.project_id,
                generation=token.generation,
            )
            return False

        if sequence < self._applied:
            logger.debug("poll_response_superseded", project_id=token.project_id)
            return False

        records, skipped = self._parse_snapshot(payload)
        self._applied = sequence
        # Absent ids only prove removal when every entry was readable
        changed = self._store.upsert_snapshot(
            records, complete=not skipped, as_of=as_of
        )
        logger.debug(
            "poll_applied",
            project_id=token.project_id,
            count=len(records),
            skipped=skipped,
            changed=changed,
        )
        return True

    def _parse_snapshot(self, payload) -> tuple[list[TaskRecord], int]:
        records: list[TaskRecord] = []
        skipped = 0
        for item in payload or []:
            try:
                records.append(TaskRecord.from_dict(item))
            except (ValueError, TypeError, AttributeError) as e:
                skipped += 1
                logger.warning(
                    "poll_entry_skipped",
                    project_id=self._token.project_id,
                    error=str(e),
                )
        return records, skipped
