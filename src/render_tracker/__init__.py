"""Render Tracker - reconciles render task state from a render engine.

Task state reaches the tracker over two channels:

- A periodic full snapshot (PollLoop), authoritative for membership
- Asynchronous progress patches (PushListener), fast but partial

Both feed a single TaskStore whose status-lattice merge keeps terminal
states from regressing. A ScopeContext owns the store, the poll timer
and the push subscription for one project and tears them down when the
project changes; a generation token discards responses that arrive for
a scope that is already gone.

Life-cycle commands (pause, resume, cancel, retry, create) go through a
CommandDispatcher that re-polls after every success and reports through
an EphemeralMessageBus.
"""

from render_tracker.config import (
    RenderSettings,
    SettingsContext,
    get_settings,
    reload_settings,
    set_context_settings,
    set_settings,
)
from render_tracker.dispatcher import CommandDispatcher
from render_tracker.engine import EventEmitter, HttpRenderEngine, RenderEngine
from render_tracker.errors import (
    CommandResult,
    ConflictError,
    EngineError,
    ErrorCode,
    RenderTrackerError,
    ScopeError,
    TransientIOError,
    ValidationError,
)
from render_tracker.merge import MergeSource, can_transition, merge_record
from render_tracker.messages import EphemeralMessageBus, Message, MessageKind
from render_tracker.models import (
    QueueStatus,
    ShotRecord,
    TaskKind,
    TaskRecord,
    TaskStats,
    TaskStatus,
)
from render_tracker.poller import PollLoop
from render_tracker.push import PushListener
from render_tracker.scope import ScopeContext, ScopeToken
from render_tracker.store import TaskStore
from render_tracker.view import (
    STATUS_LABELS,
    NotificationSnapshot,
    PanelState,
    project_notifications,
)

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "RenderSettings",
    "SettingsContext",
    "get_settings",
    "set_settings",
    "set_context_settings",
    "reload_settings",
    # Records
    "TaskKind",
    "TaskStatus",
    "TaskRecord",
    "TaskStats",
    "ShotRecord",
    "QueueStatus",
    # Reconciliation
    "MergeSource",
    "can_transition",
    "merge_record",
    "TaskStore",
    "PollLoop",
    "PushListener",
    "ScopeContext",
    "ScopeToken",
    # Commands and feedback
    "CommandDispatcher",
    "CommandResult",
    "EphemeralMessageBus",
    "Message",
    "MessageKind",
    # Engine
    "RenderEngine",
    "EventEmitter",
    "HttpRenderEngine",
    # Errors
    "ErrorCode",
    "RenderTrackerError",
    "TransientIOError",
    "ValidationError",
    "ConflictError",
    "EngineError",
    "ScopeError",
    # Presentation
    "STATUS_LABELS",
    "NotificationSnapshot",
    "PanelState",
    "project_notifications",
]
