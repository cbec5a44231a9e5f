"""Shared test fixtures and utilities for render-tracker tests.

Provides:
- MockContext for isolating tests from global settings and environment
- FakeEngine, an in-memory render engine with call recording and gates
- Record factories and an event-loop ``drain`` helper
"""

import asyncio
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Generator

import pytest

from render_tracker.config import (
    RenderSettings,
    reload_settings,
    set_context_settings,
    set_settings,
)
from render_tracker.engine import PROGRESS_EVENT, EventEmitter
from render_tracker.models import TaskKind, TaskRecord, TaskStatus

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

# Tests never wait on the poll timer; they call poll_now or drain the loop.
TEST_SETTINGS = {
    "poll_interval": 60.0,
    "message_duration": 0.2,
    "request_timeout": 1.0,
}


class MockContext:
    """Context manager for isolating tests from global state.

    Handles:
    - Clearing RENDER_TRACKER_* environment variables
    - Running from a temporary directory so no project settings.json leaks in
    - Resetting the global settings singleton on exit

    Usage:
        with MockContext(poll_interval=0.05) as ctx:
            settings = ctx.settings
    """

    def __init__(self, **settings_kwargs):
        self._settings_kwargs = {**TEST_SETTINGS, **settings_kwargs}
        self._temp_dir: tempfile.TemporaryDirectory | None = None
        self._settings: RenderSettings | None = None
        self._original_env: dict[str, str] = {}
        self._original_cwd: Path | None = None

    def __enter__(self) -> "MockContext":
        self._temp_dir = tempfile.TemporaryDirectory()

        for var in [v for v in os.environ if v.startswith("RENDER_TRACKER_")]:
            self._original_env[var] = os.environ.pop(var)

        self._original_cwd = Path.cwd()
        os.chdir(self._temp_dir.name)

        self._settings = RenderSettings(**self._settings_kwargs)
        set_settings(self._settings)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        set_context_settings(None)
        os.environ.update(self._original_env)
        if self._original_cwd is not None:
            os.chdir(self._original_cwd)
        reload_settings()
        if self._temp_dir:
            self._temp_dir.cleanup()

    @property
    def settings(self) -> RenderSettings:
        if self._settings is None:
            raise RuntimeError("MockContext not entered")
        return self._settings

    @property
    def workspace_dir(self) -> Path:
        if self._temp_dir is None:
            raise RuntimeError("MockContext not entered")
        return Path(self._temp_dir.name)


class FakeEngine(EventEmitter):
    """In-memory render engine.

    ``tasks`` maps a project id to the payloads ``list`` returns.
    ``failures`` maps a command to the exception it raises, ``results``
    to the value it returns. ``hold`` parks the next matching call until
    the returned event is set.
    """

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[Any, ...]] = []
        self.tasks: dict[str, list[dict[str, Any]]] = {}
        self.failures: dict[str, Exception] = {}
        self.results: dict[str, Any] = {}
        self._holds: dict[tuple[Any, ...], asyncio.Event] = {}

    def hold(self, command: str, key: Any = None) -> asyncio.Event:
        gate = asyncio.Event()
        self._holds[(command,) if key is None else (command, key)] = gate
        return gate

    async def invoke(self, command: str, *args: Any) -> Any:
        self.calls.append((command, *args))

        gate = None
        if args:
            gate = self._holds.pop((command, args[0]), None)
        if gate is None:
            gate = self._holds.pop((command,), None)
        if gate is not None:
            await gate.wait()

        if command in self.failures:
            raise self.failures[command]
        if command == "list":
            return [dict(item) for item in self.tasks.get(args[0], [])]
        return self.results.get(command)

    def push(self, payload: Any) -> int:
        return self.emit(PROGRESS_EVENT, payload)

    def commands(self, name: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == name]


async def drain(rounds: int = 10) -> None:
    """Let pending tasks on the running loop make progress."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_record(
    task_id: str,
    status: TaskStatus = TaskStatus.QUEUED,
    *,
    minutes: int = 0,
    **fields,
) -> TaskRecord:
    """TaskRecord with a deterministic created_at."""
    fields.setdefault("kind", TaskKind.IMAGE_RENDER)
    return TaskRecord(
        id=task_id,
        status=status,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        **fields,
    )


def task_payload(task_id: str, status: str = "queued", **fields) -> dict[str, Any]:
    """Engine-style camelCase task payload."""
    payload = {
        "id": task_id,
        "type": "image",
        "status": status,
        "createdAt": "2024-05-01T12:00:00Z",
    }
    payload.update(fields)
    return payload


@pytest.fixture(autouse=True)
def mock_context() -> Generator[MockContext, None, None]:
    """Every test runs with isolated, fast-timing settings."""
    with MockContext() as ctx:
        yield ctx


@pytest.fixture
def settings(mock_context: MockContext) -> RenderSettings:
    return mock_context.settings


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@contextmanager
def env(**values: str):
    """Temporarily set RENDER_TRACKER_* environment variables."""
    keys = {f"RENDER_TRACKER_{k.upper()}": v for k, v in values.items()}
    original = {k: os.environ.get(k) for k in keys}
    os.environ.update(keys)
    try:
        yield
    finally:
        for key, value in original.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
