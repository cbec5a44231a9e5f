"""Tests for the status-lattice merge."""

import itertools

import pytest

from render_tracker.merge import MergeSource, can_transition, merge_record
from render_tracker.models import TaskStatus
from tests.conftest import make_record

Q, R, P, C, E = (
    TaskStatus.QUEUED,
    TaskStatus.RENDERING,
    TaskStatus.PAUSED,
    TaskStatus.COMPLETED,
    TaskStatus.ERROR,
)


class TestCanTransition:
    @pytest.mark.parametrize(
        "current,target",
        [(Q, R), (Q, P), (Q, C), (Q, E), (R, P), (P, R), (R, C), (R, E), (P, C), (P, E)],
    )
    def test_forward_patch_transitions(self, current, target):
        assert can_transition(current, target, MergeSource.PATCH)

    @pytest.mark.parametrize("current,target", [(R, Q), (P, Q)])
    def test_patch_cannot_move_back_to_queued(self, current, target):
        assert not can_transition(current, target, MergeSource.PATCH)

    def test_snapshot_is_authoritative_for_live_records(self):
        assert can_transition(P, Q, MergeSource.SNAPSHOT)
        assert can_transition(R, Q, MergeSource.SNAPSHOT)

    @pytest.mark.parametrize("terminal", [C, E])
    @pytest.mark.parametrize("source", list(MergeSource))
    def test_terminal_never_leaves(self, terminal, source):
        for target in TaskStatus:
            if target is terminal:
                assert can_transition(terminal, target, source)
            else:
                assert not can_transition(terminal, target, source)


class TestMergeRecord:
    def test_patch_merges_partial_fields(self):
        current = make_record("t1", R, progress=40.0)
        merged = merge_record(current, {"id": "t1", "progress": 70}, MergeSource.PATCH)

        assert merged.status is R
        assert merged.progress == 70.0
        assert merged.created_at == current.created_at

    def test_rejected_patch_returns_current_instance(self):
        current = make_record("t1", C, progress=100.0)
        merged = merge_record(
            current, {"id": "t1", "status": "rendering", "progress": 60}, MergeSource.PATCH
        )
        assert merged is current

    def test_patch_on_terminal_ignores_every_field(self):
        current = make_record("t1", E, error_message="boom")
        merged = merge_record(
            current, {"id": "t1", "errorMessage": "other", "progress": 5}, MergeSource.PATCH
        )
        assert merged is current

    def test_noop_patch_returns_current_instance(self):
        current = make_record("t1", R, progress=40.0)
        merged = merge_record(current, {"id": "t1", "progress": 40}, MergeSource.PATCH)
        assert merged is current

    def test_patch_for_unknown_id_creates_placeholder(self):
        merged = merge_record(None, {"id": "t9", "status": "rendering", "progress": 5}, MergeSource.PATCH)
        assert merged.placeholder
        assert merged.status is R
        assert merged.progress == 5.0

    def test_patch_without_id_raises(self):
        with pytest.raises(ValueError):
            merge_record(None, {"progress": 5}, MergeSource.PATCH)

    def test_patch_cannot_dismiss(self):
        current = make_record("t1", R)
        merged = merge_record(current, {"id": "t1", "dismissed": True}, MergeSource.PATCH)
        assert merged is current

    def test_snapshot_replaces_fields_but_keeps_dismissed(self):
        current = make_record("t1", R, progress=40.0, dismissed=True, shot_id="s1")
        incoming = make_record("t1", C, progress=100.0, minutes=1)

        merged = merge_record(current, incoming, MergeSource.SNAPSHOT)

        assert merged.status is C
        assert merged.progress == 100.0
        assert merged.shot_id is None
        assert merged.dismissed is True

    def test_snapshot_clears_placeholder_flag(self):
        placeholder = merge_record(None, {"id": "t9", "status": "rendering"}, MergeSource.PATCH)
        merged = merge_record(placeholder, make_record("t9", R), MergeSource.SNAPSHOT)
        assert not merged.placeholder

    def test_stale_snapshot_cannot_revive_terminal(self):
        current = make_record("t1", C, progress=100.0)
        merged = merge_record(current, make_record("t1", R, progress=60.0), MergeSource.SNAPSHOT)
        assert merged is current

    def test_snapshot_requires_task_record(self):
        with pytest.raises(ValueError):
            merge_record(None, {"id": "t1"}, MergeSource.SNAPSHOT)


class TestNonRegression:
    @pytest.mark.parametrize("length", [2, 3, 4])
    def test_no_sequence_leaves_a_terminal_status(self, length):
        """Whatever order updates arrive in, a terminal status is final."""
        for steps in itertools.product(
            itertools.product(TaskStatus, MergeSource), repeat=length
        ):
            record = None
            terminal = None
            for status, source in steps:
                if source is MergeSource.SNAPSHOT:
                    incoming = make_record("t1", status)
                else:
                    incoming = {"id": "t1", "status": status.value}
                record = merge_record(record, incoming, source)
                if terminal is not None:
                    assert record.status is terminal, steps
                elif record.status.is_terminal:
                    terminal = record.status
