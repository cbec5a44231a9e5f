"""Error taxonomy for engine calls and command results.

Engine adapters raise one of the RenderTrackerError subclasses below; the
CommandDispatcher turns them into a CommandResult and a user message:

- TransientIOError: engine unreachable or overloaded; nothing changed
- ValidationError: the request was rejected as malformed
- ConflictError: the task already moved on server-side; re-poll
- EngineError: any other engine failure
- ScopeError: a scope was used outside its open/close lifecycle
"""

from dataclasses import dataclass
from typing import Any


class ErrorCode:
    """Machine-readable error codes."""

    VALIDATION_FAILED = "VALIDATION_FAILED"
    UNKNOWN_COMMAND = "UNKNOWN_COMMAND"

    # Task state on the engine
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"

    # Engine availability
    ENGINE_ERROR = "ENGINE_ERROR"
    TIMEOUT = "TIMEOUT"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    SCOPE_CLOSED = "SCOPE_CLOSED"


class RenderTrackerError(Exception):
    """Base error for render tracker failures.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        recoverable: Whether issuing the command again might succeed
        details: Extra context, e.g. the HTTP status code
    """

    default_code = ErrorCode.ENGINE_ERROR
    default_recoverable = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        recoverable: bool | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.recoverable = (
            self.default_recoverable if recoverable is None else recoverable
        )
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "code": self.error_code,
            "recoverable": self.recoverable,
            "details": self.details,
        }


class TransientIOError(RenderTrackerError):
    """A poll or command request failed because the engine was unreachable."""

    default_code = ErrorCode.SERVICE_UNAVAILABLE
    default_recoverable = True


class ValidationError(RenderTrackerError):
    """A command was rejected because its arguments are invalid."""

    default_code = ErrorCode.VALIDATION_FAILED


class ConflictError(RenderTrackerError):
    """A command targeted a task whose state already moved on server-side."""

    default_code = ErrorCode.CONFLICT


class EngineError(RenderTrackerError):
    """The engine answered with an unexpected failure."""


class ScopeError(RenderTrackerError):
    """A scope was used outside its lifecycle."""

    default_code = ErrorCode.SCOPE_CLOSED


@dataclass
class CommandResult:
    """Outcome of a life-cycle command.

    ``stale`` is set when the scope changed while the command was in
    flight; the response was not applied and no message was raised.
    """

    success: bool
    data: Any = None
    error: RenderTrackerError | None = None
    stale: bool = False

    @classmethod
    def ok(cls, data: Any = None) -> "CommandResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: RenderTrackerError) -> "CommandResult":
        return cls(success=False, error=error)

    @classmethod
    def discarded(
        cls, data: Any = None, error: RenderTrackerError | None = None
    ) -> "CommandResult":
        """Result for a response that arrived after its scope closed."""
        return cls(success=error is None, data=data, error=error, stale=True)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success, "stale": self.stale}
        if self.error is not None:
            result["error"] = self.error.to_dict()
        else:
            result["data"] = self.data
        return result
