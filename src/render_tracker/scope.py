"""Scope-bound ownership of the poll timer, push subscription and store.

A ScopeContext tracks one project at a time. ``open(project_id)`` builds
a fresh TaskStore, starts polling and subscribes to push events;
``close()`` synchronously tears all of it down. Every open and close
bumps a generation counter, and every in-flight response carries the
ScopeToken it was issued under, so a response for an old scope is
discarded on arrival instead of being applied.

Example:
    scope = ScopeContext(engine)
    scope.open("project-a")
    await scope.dispatcher.pause("t1")
    scope.open("project-b")   # closes project-a first
    scope.close()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from render_tracker.config import RenderSettings, get_settings
from render_tracker.dispatcher import CommandDispatcher
from render_tracker.engine import RenderEngine
from render_tracker.errors import ScopeError
from render_tracker.logging import Loggers, bind_scope, unbind_scope
from render_tracker.messages import EphemeralMessageBus
from render_tracker.models import TaskRecord
from render_tracker.poller import PollLoop
from render_tracker.push import PushListener
from render_tracker.store import RecordsListener, TaskStore
from render_tracker.view import NotificationSnapshot, project_notifications

logger = Loggers.scope()


@dataclass(frozen=True)
class ScopeToken:
    """Identity of one opened scope, handed to everything that awaits."""

    project_id: str
    generation: int
    current_generation: Callable[[], int] = field(repr=False, compare=False)

    @property
    def is_current(self) -> bool:
        return self.current_generation() == self.generation


class ScopeContext:
    """Owns every resource bound to the currently open project scope."""

    def __init__(
        self,
        engine: RenderEngine,
        settings: RenderSettings | None = None,
        messages: EphemeralMessageBus | None = None,
    ) -> None:
        self._engine = engine
        self._settings = settings or get_settings()
        self.messages = messages or EphemeralMessageBus(self._settings.message_duration)
        self._generation = 0
        self._token: ScopeToken | None = None
        self._store: TaskStore | None = None
        self._poller: PollLoop | None = None
        self._push: PushListener | None = None
        self._dispatcher: CommandDispatcher | None = None
        self._store_unsubscribe: Callable[[], None] | None = None
        self._listeners: list[RecordsListener] = []

    # ---- lifecycle ----

    def open(self, project_id: str) -> ScopeToken:
        """Enter ``project_id``, tearing down any previous scope first.

        Must be called from a running event loop.
        """
        if not project_id:
            raise ScopeError("A project id is required to open a scope")
        self.close()

        self._generation += 1
        token = ScopeToken(project_id, self._generation, lambda: self._generation)
        store = TaskStore()
        poller = PollLoop(self._engine, store, token, self._settings.poll_interval)
        push = PushListener(self._engine, store, token)

        self._token = token
        self._store = store
        self._poller = poller
        self._push = push
        self._dispatcher = CommandDispatcher(self._engine, poller, self.messages, token)
        self._store_unsubscribe = store.subscribe(self._forward)
        # Bound before the poll task exists so it inherits the context
        bind_scope(project_id, token.generation)

        try:
            push.subscribe()
            poller.start()
        except Exception:
            self.close()
            raise

        logger.info("scope_opened")
        self._forward(store.records())
        return token

    def close(self) -> None:
        """Dispose the poll timer, push subscription and message timer.

        Total and idempotent; safe to call on a never-opened context.
        """
        if self._token is None:
            return

        project_id = self._token.project_id
        if self._poller is not None:
            self._poller.stop()
        if self._push is not None:
            self._push.unsubscribe()
        if self._store_unsubscribe is not None:
            self._store_unsubscribe()
        self.messages.close()

        self._generation += 1
        self._token = None
        self._store = None
        self._poller = None
        self._push = None
        self._dispatcher = None
        self._store_unsubscribe = None

        logger.info("scope_closed", closed_project_id=project_id)
        unbind_scope()
        self._forward(())

    async def __aenter__(self) -> "ScopeContext":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ---- accessors ----

    @property
    def is_open(self) -> bool:
        return self._token is not None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def token(self) -> ScopeToken:
        return self._require(self._token)

    @property
    def project_id(self) -> str:
        return self.token.project_id

    @property
    def store(self) -> TaskStore:
        return self._require(self._store)

    @property
    def poller(self) -> PollLoop:
        return self._require(self._poller)

    @property
    def push(self) -> PushListener:
        return self._require(self._push)

    @property
    def dispatcher(self) -> CommandDispatcher:
        return self._require(self._dispatcher)

    def records(self) -> tuple[TaskRecord, ...]:
        if self._store is None:
            return ()
        return self._store.records()

    def notifications(self) -> NotificationSnapshot:
        return project_notifications(self.records(), self._settings.resolved_preview_limit)

    def subscribe(self, listener: RecordsListener) -> Callable[[], None]:
        """Observe the current scope's records across scope switches."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _forward(self, records: tuple[TaskRecord, ...]) -> None:
        for listener in list(self._listeners):
            try:
                listener(records)
            except Exception:
                logger.exception("records_listener_failed")

    @staticmethod
    def _require(value):
        if value is None:
            raise ScopeError("Scope is not open")
        return value
