"""Single-slot, auto-expiring message channel for command feedback."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from render_tracker.config import get_settings
from render_tracker.logging import Loggers

logger = Loggers.messages()


class MessageKind(str, Enum):
    """Severity of a transient message."""

    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"
    WARNING = "warning"


@dataclass(frozen=True)
class Message:
    kind: MessageKind
    text: str


MessageListener = Callable[["Message | None"], None]


class EphemeralMessageBus:
    """Holds at most one message and clears it after a fixed duration.

    ``show`` must be called from a running event loop; the auto-clear
    is a ``loop.call_later`` handle that each new message cancels and
    replaces, so at most one timer is ever pending.
    """

    def __init__(self, duration: float | None = None) -> None:
        self._duration = duration if duration is not None else get_settings().message_duration
        self._current: Message | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._listeners: list[MessageListener] = []

    @property
    def current(self) -> Message | None:
        return self._current

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def has_pending_clear(self) -> bool:
        return self._timer is not None

    def show(self, kind: MessageKind | str, text: str) -> Message:
        """Replace the current message and restart the auto-clear timer."""
        loop = asyncio.get_running_loop()
        self._cancel_timer()

        message = Message(kind=MessageKind(kind), text=text)
        self._current = message
        self._timer = loop.call_later(self._duration, self._expire, message)
        logger.debug("message_shown", kind=message.kind.value, text=text)
        self._notify()
        return message

    def clear(self) -> None:
        self._cancel_timer()
        if self._current is None:
            return
        self._current = None
        self._notify()

    def close(self) -> None:
        """Drop the pending timer and the current message."""
        self.clear()

    def subscribe(self, listener: MessageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _expire(self, message: Message) -> None:
        self._timer = None
        # A replaced message has its own timer
        if self._current is not message:
            return
        self._current = None
        self._notify()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._current)
            except Exception:
                logger.exception("message_listener_failed")
