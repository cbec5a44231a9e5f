"""Tests for the push listener."""

import pytest

from render_tracker.engine import PROGRESS_EVENT
from render_tracker.models import TaskStatus
from render_tracker.push import PushListener
from render_tracker.scope import ScopeToken
from render_tracker.store import TaskStore
from tests.conftest import FakeEngine, make_record


@pytest.fixture
def store() -> TaskStore:
    store = TaskStore()
    store.upsert_snapshot([make_record("t1", TaskStatus.RENDERING, progress=40.0)])
    return store


def current_token(project_id: str = "p1") -> ScopeToken:
    return ScopeToken(project_id, 1, lambda: 1)


def test_subscribe_and_unsubscribe_are_idempotent(engine: FakeEngine, store):
    listener = PushListener(engine, store, current_token())

    listener.subscribe()
    listener.subscribe()
    assert listener.subscribed
    assert engine.listener_count(PROGRESS_EVENT) == 1

    listener.unsubscribe()
    listener.unsubscribe()
    assert not listener.subscribed
    assert engine.listener_count(PROGRESS_EVENT) == 0


def test_progress_event_becomes_patch(engine, store):
    PushListener(engine, store, current_token()).subscribe()

    engine.push({"id": "t1", "progress": 70, "projectId": "p1"})

    assert store.get("t1").progress == 70.0
    assert store.get("t1").status is TaskStatus.RENDERING


def test_event_for_other_project_is_dropped(engine, store):
    PushListener(engine, store, current_token("p1")).subscribe()

    engine.push({"id": "t1", "progress": 90, "project_id": "p2"})
    engine.push({"id": "x1", "status": "rendering", "projectId": "p2"})

    assert store.get("t1").progress == 40.0
    assert "x1" not in store


def test_event_after_generation_change_is_dropped(engine, store):
    generation = [1]
    token = ScopeToken("p1", 1, lambda: generation[0])
    PushListener(engine, store, token).subscribe()

    generation[0] = 2
    engine.push({"id": "t1", "progress": 90})

    assert store.get("t1").progress == 40.0


def test_non_mapping_payload_is_ignored(engine, store):
    PushListener(engine, store, current_token()).subscribe()

    assert engine.push(["t1", 90]) == 1
    assert store.get("t1").progress == 40.0


def test_no_events_after_unsubscribe(engine, store):
    listener = PushListener(engine, store, current_token())
    listener.subscribe()
    listener.unsubscribe()

    assert engine.push({"id": "t2", "status": "rendering"}) == 0
    assert "t2" not in store
