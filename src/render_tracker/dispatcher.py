"""Life-cycle commands against the render engine.

Commands never mutate the TaskStore directly. A successful command is
followed by a forced poll before it returns, so a caller awaiting it
observes a store reconciled against the engine. Failures leave the
store alone and raise one transient message; nothing is retried
automatically.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Iterable

from render_tracker.errors import (
    CommandResult,
    ConflictError,
    EngineError,
    RenderTrackerError,
    ValidationError,
)
from render_tracker.logging import Loggers
from render_tracker.messages import MessageKind
from render_tracker.models import (
    QueueStatus,
    ShotRecord,
    TaskKind,
    TaskRecord,
    shots_needing_render,
)

if TYPE_CHECKING:
    from render_tracker.engine import RenderEngine
    from render_tracker.messages import EphemeralMessageBus
    from render_tracker.poller import PollLoop
    from render_tracker.scope import ScopeToken

logger = Loggers.commands()

_KIND_NOUNS = {
    TaskKind.IMAGE_RENDER: "image",
    TaskKind.VIDEO_RENDER: "video",
    TaskKind.GENERIC: "render",
}

_NOTHING_TO_RENDER = {
    TaskKind.IMAGE_RENDER: "All shots already have images",
    TaskKind.VIDEO_RENDER: "No shots are ready for video (render their images first)",
    TaskKind.GENERIC: "No shots selected for rendering",
}


def _unknown_kind(kind: object) -> ValidationError:
    return ValidationError(f"Unknown render kind '{kind}'")


class CommandDispatcher:
    """Issues pause/resume/cancel/retry/create commands for one scope."""

    def __init__(
        self,
        engine: "RenderEngine",
        poller: "PollLoop",
        messages: "EphemeralMessageBus",
        token: "ScopeToken",
    ) -> None:
        self._engine = engine
        self._poller = poller
        self._messages = messages
        self._token = token

    async def pause(self, task_id: str) -> CommandResult:
        return await self._execute("Pause", "pause", task_id)

    async def resume(self, task_id: str) -> CommandResult:
        return await self._execute("Resume", "resume", task_id)

    async def cancel(self, task_id: str) -> CommandResult:
        return await self._execute(
            "Cancel", "cancel", task_id, success_message="Task cancelled"
        )

    async def create(self, project_id: str, shot_id: str, kind: TaskKind | str) -> CommandResult:
        parsed = TaskKind.parse(kind)
        if parsed is None:
            return self._reject(_unknown_kind(kind))
        kind = parsed
        return await self._execute(
            "Create",
            "create",
            project_id,
            shot_id,
            kind.value,
            success_message=f"Queued 1 {_KIND_NOUNS[kind]} render",
        )

    async def create_batch(
        self,
        project_id: str,
        shot_ids: Iterable[str],
        kind: TaskKind | str,
    ) -> CommandResult:
        """Queue one render per shot.

        An empty selection is rejected before any engine call.
        """
        parsed = TaskKind.parse(kind)
        if parsed is None:
            return self._reject(_unknown_kind(kind))
        kind = parsed
        shot_ids = list(shot_ids)
        if not shot_ids:
            return self._reject(ValidationError(_NOTHING_TO_RENDER[TaskKind.GENERIC]))

        noun = _KIND_NOUNS[kind]
        return await self._execute(
            "Batch create",
            "create-batch",
            project_id,
            shot_ids,
            kind.value,
            success_message=f"Queued {len(shot_ids)} {noun} renders",
        )

    async def render_missing(
        self,
        project_id: str,
        shots: Iterable[ShotRecord],
        kind: TaskKind | str,
    ) -> CommandResult:
        """Queue ``kind`` renders for every shot still lacking that output."""
        parsed = TaskKind.parse(kind)
        if parsed is None:
            return self._reject(_unknown_kind(kind))
        kind = parsed
        targets = shots_needing_render(shots, kind)
        if not targets:
            return self._reject(ValidationError(_NOTHING_TO_RENDER[kind]))
        return await self.create_batch(project_id, [shot.id for shot in targets], kind)

    async def retry(self, task: TaskRecord) -> CommandResult:
        """Cancel ``task`` and queue a fresh render for the same shot.

        The create is never issued when the cancel fails, so a shot can
        not end up with two active jobs.
        """
        if not task.shot_id:
            return self._reject(ValidationError(f"Task {task.id} has no shot to re-render"))

        token = self._token
        if not token.is_current:
            return CommandResult.discarded()

        project_id = task.project_id or token.project_id
        try:
            await self._invoke("cancel", task.id)
        except RenderTrackerError as e:
            return await self._fail("Retry", e, token)

        try:
            data = await self._invoke("create", project_id, task.shot_id, task.kind.value)
        except RenderTrackerError as e:
            # The cancel went through, so the store is already out of date.
            return await self._fail("Retry", e, token, resync=True)

        return await self._succeed(data, token, "Task re-queued")

    async def queue_status(self) -> CommandResult:
        """Fetch engine queue occupancy; no poll and no success message."""
        token = self._token
        if not token.is_current:
            return CommandResult.discarded()
        try:
            data = await self._invoke("status")
        except RenderTrackerError as e:
            return await self._fail("Queue status", e, token)
        if not token.is_current:
            return CommandResult.discarded(data)
        return CommandResult.ok(QueueStatus.from_dict(data))

    # ---- plumbing ----

    async def _execute(
        self,
        label: str,
        command: str,
        *args: Any,
        success_message: str | None = None,
    ) -> CommandResult:
        token = self._token
        if not token.is_current:
            return CommandResult.discarded()
        try:
            data = await self._invoke(command, *args)
        except RenderTrackerError as e:
            return await self._fail(label, e, token)
        return await self._succeed(data, token, success_message)

    async def _invoke(self, command: str, *args: Any) -> Any:
        logger.debug("command_sent", command=command, project_id=self._token.project_id)
        try:
            return await self._engine.invoke(command, *args)
        except (RenderTrackerError, asyncio.CancelledError):
            raise
        except Exception as e:
            logger.exception("command_unexpected_failure", command=command)
            raise EngineError(str(e) or type(e).__name__) from e

    async def _succeed(
        self,
        data: Any,
        token: "ScopeToken",
        success_message: str | None,
    ) -> CommandResult:
        if not token.is_current:
            logger.info("command_response_discarded", project_id=token.project_id)
            return CommandResult.discarded(data)
        await self._poller.poll_now()
        if success_message and token.is_current:
            self._messages.show(MessageKind.SUCCESS, success_message)
        return CommandResult.ok(data)

    async def _fail(
        self,
        label: str,
        error: RenderTrackerError,
        token: "ScopeToken",
        *,
        resync: bool = False,
    ) -> CommandResult:
        if not token.is_current:
            logger.info("command_failure_discarded", project_id=token.project_id)
            return CommandResult.discarded(error=error)

        logger.warning(
            "command_failed",
            command=label,
            error_type=type(error).__name__,
            error=error.message,
        )
        if isinstance(error, ValidationError):
            self._messages.show(MessageKind.INFO, error.message)
        else:
            self._messages.show(MessageKind.ERROR, f"{label} failed: {error.message}")

        if resync or isinstance(error, ConflictError):
            await self._poller.poll_now()
        return CommandResult.fail(error)

    def _reject(self, error: ValidationError) -> CommandResult:
        if not self._token.is_current:
            return CommandResult.discarded(error=error)
        logger.info("command_rejected", reason=error.message)
        self._messages.show(MessageKind.INFO, error.message)
        return CommandResult.fail(error)
