"""Boundary to the external render engine.

Provides:
- RenderEngine: Capability protocol consumed by the tracker
- EventEmitter: ``on``/``off``/``emit`` push channel shared by adapters
- HttpRenderEngine: httpx adapter for an engine exposing a REST API and
  a server-sent-events progress stream

Recognized commands::

    list(project_id)                         -> list[dict]
    create(project_id, shot_id, kind)        -> dict
    create-batch(project_id, shot_ids, kind) -> list[dict]
    pause(task_id) / resume(task_id) / cancel(task_id) -> None
    status()                                 -> dict
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

import httpx

from render_tracker.config import get_settings
from render_tracker.errors import (
    ConflictError,
    EngineError,
    ErrorCode,
    RenderTrackerError,
    TransientIOError,
    ValidationError,
)
from render_tracker.logging import Loggers

logger = Loggers.engine()

EventHandler = Callable[[Any], None]
Unsubscribe = Callable[[], None]

PROGRESS_EVENT = "progress"


@runtime_checkable
class RenderEngine(Protocol):
    """Capability contract of the external render engine."""

    async def invoke(self, command: str, *args: Any) -> Any:
        """Run a request/response command."""
        ...

    def on(self, event: str, handler: EventHandler) -> Unsubscribe:
        """Subscribe to a push event; returns the unsubscribe handle."""
        ...

    def off(self, event: str, handler: EventHandler) -> None:
        """Remove a push event handler."""
        ...


class EventEmitter:
    """Synchronous in-process event channel.

    Handlers run in registration order on the emitting thread. A handler
    that raises is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def on(self, event: str, handler: EventHandler) -> Unsubscribe:
        self._handlers.setdefault(event, []).append(handler)

        def unsubscribe() -> None:
            self.off(event, handler)

        return unsubscribe

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str, payload: Any) -> int:
        """Deliver ``payload`` to every handler of ``event``.

        Returns:
            Number of handlers that were called.
        """
        handlers = list(self._handlers.get(event, ()))
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                logger.exception("event_handler_failed", event_name=event)
        return len(handlers)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))


class HttpRenderEngine(EventEmitter):
    """Render engine reached over HTTP.

    Request/response commands map onto REST endpoints; the push channel
    is a server-sent-events stream read by ``listen()``, which emits one
    ``progress`` event per SSE message.

    Example:
        engine = HttpRenderEngine("http://127.0.0.1:8765")
        listener = asyncio.create_task(engine.listen())
        tasks = await engine.invoke("list", "project-1")
        ...
        listener.cancel()
        await engine.close()
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        reconnect_delay: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__()
        settings = get_settings()
        self.base_url = (base_url or settings.engine_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self.reconnect_delay = (
            reconnect_delay if reconnect_delay is not None else settings.poll_interval
        )
        self._client = client
        self._commands: dict[str, Callable[..., Awaitable[Any]]] = {
            "list": self._list,
            "create": self._create,
            "create-batch": self._create_batch,
            "pause": self._pause,
            "resume": self._resume,
            "cancel": self._cancel,
            "status": self._status,
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx client"""
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def invoke(self, command: str, *args: Any) -> Any:
        handler = self._commands.get(command)
        if handler is None:
            raise ValidationError(
                f"Unknown engine command '{command}'",
                error_code=ErrorCode.UNKNOWN_COMMAND,
            )
        return await handler(*args)

    # ---- commands ----

    async def _list(self, project_id: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/projects/{project_id}/render-tasks")
        return list(data or [])

    async def _create(self, project_id: str, shot_id: str, kind: str) -> Any:
        return await self._request(
            "POST",
            f"/projects/{project_id}/render-tasks",
            json={"shot_id": shot_id, "kind": kind},
        )

    async def _create_batch(self, project_id: str, shot_ids: list[str], kind: str) -> Any:
        return await self._request(
            "POST",
            f"/projects/{project_id}/render-tasks/batch",
            json={"shot_ids": list(shot_ids), "kind": kind},
        )

    async def _pause(self, task_id: str) -> None:
        await self._request("POST", f"/render-tasks/{task_id}/pause")

    async def _resume(self, task_id: str) -> None:
        await self._request("POST", f"/render-tasks/{task_id}/resume")

    async def _cancel(self, task_id: str) -> None:
        await self._request("DELETE", f"/render-tasks/{task_id}")

    async def _status(self) -> Any:
        return await self._request("GET", "/render-queue")

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        client = await self._get_client()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientIOError(
                f"Engine request timed out: {method} {url}",
                error_code=ErrorCode.TIMEOUT,
            ) from e
        except httpx.TransportError as e:
            raise TransientIOError(f"Engine unreachable: {e}") from e

        _raise_for_status(response)
        if not response.content:
            return None
        return response.json()

    # ---- push channel ----

    async def listen(self) -> None:
        """Read the progress stream until cancelled, reconnecting on failure."""
        while True:
            try:
                await self._consume_stream()
                logger.info("event_stream_closed", base_url=self.base_url)
            except (httpx.TransportError, RenderTrackerError) as e:
                logger.warning(
                    "event_stream_failed",
                    base_url=self.base_url,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            await asyncio.sleep(self.reconnect_delay)

    async def _consume_stream(self) -> None:
        client = await self._get_client()
        async with client.stream("GET", "/events", timeout=None) as response:
            if response.status_code >= 400:
                await response.aread()
                _raise_for_status(response)

            event_name = "message"
            data_lines: list[str] = []
            async for line in response.aiter_lines():
                if not line:
                    self._dispatch_sse(event_name, data_lines)
                    event_name, data_lines = "message", []
                elif line.startswith(":"):
                    continue
                elif line.startswith("event:"):
                    event_name = line[len("event:"):].strip()
                elif line.startswith("data:"):
                    data_lines.append(line[len("data:"):].lstrip())
            self._dispatch_sse(event_name, data_lines)

    def _dispatch_sse(self, event_name: str, data_lines: list[str]) -> None:
        if not data_lines or event_name != PROGRESS_EVENT:
            return
        try:
            payload = json.loads("\n".join(data_lines))
        except json.JSONDecodeError:
            logger.warning("event_payload_invalid", event_name=event_name)
            return
        self.emit(PROGRESS_EVENT, payload)

    async def close(self) -> None:
        """Close httpx client connection"""
        if self._client:
            await self._client.aclose()
            self._client = None


def _raise_for_status(response: httpx.Response) -> None:
    """Translate an HTTP error status into the tracker's error taxonomy."""
    status = response.status_code
    if status < 400:
        return

    detail = _error_detail(response)
    details = {"status_code": status}
    if status == 409:
        raise ConflictError(detail, details=details)
    if status == 404:
        raise ConflictError(detail, error_code=ErrorCode.NOT_FOUND, details=details)
    if status in (400, 422):
        raise ValidationError(detail, details=details)
    if status >= 500 or status == 429:
        raise TransientIOError(detail, details=details)
    raise EngineError(detail, details=details)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("detail", "message", "error"):
            if body.get(key):
                return str(body[key])
    text = response.text.strip()
    return text or f"Engine returned HTTP {response.status_code}"
