"""Tests for terminal rendering and the CLI entry point."""

from unittest.mock import AsyncMock, patch

import pytest
from rich.console import Console

from render_tracker.console import build_parser, main, render_notifications
from render_tracker.messages import Message, MessageKind
from render_tracker.models import TaskStatus
from render_tracker.view import PanelState, project_notifications, task_stats
from tests.conftest import make_record


def render_text(renderable) -> str:
    console = Console(record=True, width=120, color_system=None)
    console.print(renderable)
    return console.export_text()


@pytest.fixture
def records():
    return [
        make_record("r1", TaskStatus.RENDERING, progress=42.0, shot_index=2),
        make_record(
            "e1",
            TaskStatus.ERROR,
            minutes=1,
            shot_index=3,
            error_message="Out of GPU memory",
        ),
        make_record("c1", TaskStatus.COMPLETED, minutes=2, navigate_target="/shots/s4"),
        make_record("c2", TaskStatus.COMPLETED, minutes=3),
        make_record("c3", TaskStatus.COMPLETED, minutes=4),
    ]


def test_panel_lists_tasks(records):
    snapshot = project_notifications(records)

    text = render_text(render_notifications(snapshot, stats=task_stats(records)))

    assert "Task Progress" in text
    assert "(1 running)" in text
    assert "Shot #2 - image" in text
    assert "42%" in text
    assert "Total" in text
    # The failed task is the oldest resolved one, past the preview
    assert "Out of GPU memory" not in text
    assert "open /shots/s4" in text
    assert "Clear 4 resolved" in text


def test_panel_shows_error_detail_when_in_preview(records):
    snapshot = project_notifications(records, resolved_limit=4)

    text = render_text(render_notifications(snapshot))

    assert "Shot #3 - image" in text
    assert "Failed" in text
    assert "Out of GPU memory" in text
    assert "open /shots/s4" in text


def test_collapsed_panel_hides_rows(records):
    snapshot = project_notifications(records)
    panel_state = PanelState()
    panel_state.toggle()

    text = render_text(render_notifications(snapshot, panel_state=panel_state))

    assert "Shot #2" not in text
    assert "(1 running)" in text


def test_message_and_empty_state():
    snapshot = project_notifications([])
    message = Message(MessageKind.SUCCESS, "Task cancelled")

    text = render_text(render_notifications(snapshot, message=message))

    assert "Task cancelled" in text
    assert "No render tasks" in text


def test_parser_watch_command():
    args = build_parser().parse_args(["watch", "p1", "--url", "http://render:9000"])
    assert args.command == "watch"
    assert args.project_id == "p1"
    assert args.url == "http://render:9000"
    assert args.interval is None
    assert args.collapsed is False


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_main_runs_watch_with_overrides():
    with patch("render_tracker.console.watch", new=AsyncMock()) as watch, patch(
        "render_tracker.console.configure_logging"
    ) as configure:
        assert main(["watch", "p1", "--url", "http://render:9000", "--interval", "2"]) == 0

    project_id, settings = watch.await_args.args
    assert project_id == "p1"
    assert settings.engine_url == "http://render:9000"
    assert settings.poll_interval == 2.0
    configure.assert_called_once_with(settings)
    assert watch.await_args.kwargs["panel_state"].expanded


def test_main_collapsed_flag_starts_with_collapsed_panel():
    with patch("render_tracker.console.watch", new=AsyncMock()) as watch, patch(
        "render_tracker.console.configure_logging"
    ):
        assert main(["watch", "p1", "--collapsed"]) == 0

    assert watch.await_args.kwargs["panel_state"].expanded is False
