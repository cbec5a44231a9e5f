"""Push listener feeding engine progress events into the TaskStore."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Callable

from render_tracker.engine import PROGRESS_EVENT
from render_tracker.logging import Loggers

if TYPE_CHECKING:
    from render_tracker.engine import RenderEngine
    from render_tracker.scope import ScopeToken
    from render_tracker.store import TaskStore

logger = Loggers.push()


class PushListener:
    """Maps every ``progress`` event onto one ``TaskStore.merge_patch`` call.

    The unsubscribe handle returned by the engine at subscribe time is
    kept and used for teardown. Both ``subscribe`` and ``unsubscribe``
    are idempotent.
    """

    def __init__(
        self,
        engine: "RenderEngine",
        store: "TaskStore",
        token: "ScopeToken",
    ) -> None:
        self._engine = engine
        self._store = store
        self._token = token
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def subscribed(self) -> bool:
        return self._unsubscribe is not None

    def subscribe(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._engine.on(PROGRESS_EVENT, self._handle)

    def unsubscribe(self) -> None:
        handle, self._unsubscribe = self._unsubscribe, None
        if handle is not None:
            handle()

    def _handle(self, payload: Any) -> None:
        token = self._token
        if not token.is_current:
            logger.debug("event_after_teardown_dropped", project_id=token.project_id)
            return
        if not isinstance(payload, Mapping):
            logger.warning("event_payload_ignored", payload_type=type(payload).__name__)
            return

        event_project = payload.get("project_id", payload.get("projectId"))
        if event_project is not None and str(event_project) != token.project_id:
            logger.debug(
                "event_for_other_project_dropped",
                project_id=token.project_id,
                event_project=event_project,
            )
            return

        self._store.merge_patch(payload)
