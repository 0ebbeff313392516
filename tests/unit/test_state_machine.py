"""
Unit tests for workflow status transitions.
"""

import pytest

from automation_engine.core.state_machine import (
    InvalidStatusTransitionError,
    WorkflowStatus,
    WorkflowStatusMachine,
)


class TestWorkflowStatusMachine:
    """Tests for the workflow status lifecycle."""

    def test_initial_state(self):
        """Test default initial status is DRAFT."""
        sm = WorkflowStatusMachine()

        assert sm.state == WorkflowStatus.DRAFT
        assert not sm.is_dispatchable

    def test_activate(self):
        """Test DRAFT -> ACTIVE records the transition."""
        sm = WorkflowStatusMachine()

        transition = sm.transition(WorkflowStatus.ACTIVE, reason="Ready", triggered_by="admin@example.com")

        assert sm.state == WorkflowStatus.ACTIVE
        assert sm.is_dispatchable
        assert transition.from_state == "DRAFT"
        assert transition.to_state == "ACTIVE"
        assert transition.triggered_by == "admin@example.com"
        assert len(sm.history) == 1

    def test_pause_and_resume(self):
        sm = WorkflowStatusMachine(WorkflowStatus.ACTIVE)

        sm.transition(WorkflowStatus.PAUSED)
        assert not sm.is_dispatchable

        sm.transition(WorkflowStatus.ACTIVE)
        assert sm.is_dispatchable
        assert [t.to_state for t in sm.history] == ["PAUSED", "ACTIVE"]

    def test_back_to_draft(self):
        sm = WorkflowStatusMachine(WorkflowStatus.PAUSED)

        sm.transition(WorkflowStatus.DRAFT)

        assert sm.state == WorkflowStatus.DRAFT

    def test_draft_cannot_pause(self):
        """Test a workflow that never ran cannot be paused."""
        sm = WorkflowStatusMachine()

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            sm.transition(WorkflowStatus.PAUSED)

        assert exc_info.value.from_state == "DRAFT"
        assert exc_info.value.to_state == "PAUSED"
        assert "ACTIVE" in str(exc_info.value)
        assert sm.state == WorkflowStatus.DRAFT

    @pytest.mark.parametrize("target", [WorkflowStatus.DRAFT, WorkflowStatus.ACTIVE, WorkflowStatus.PAUSED])
    def test_archived_is_terminal(self, target):
        sm = WorkflowStatusMachine(WorkflowStatus.ARCHIVED)

        assert sm.is_terminal
        with pytest.raises(InvalidStatusTransitionError):
            sm.transition(target)

    def test_guard_blocks_transition(self):
        """Test a failing guard leaves the status unchanged."""
        sm = WorkflowStatusMachine()

        with pytest.raises(InvalidStatusTransitionError, match="Guard condition failed"):
            sm.transition(WorkflowStatus.ACTIVE, guard=lambda: False)

        assert sm.state == WorkflowStatus.DRAFT
        assert sm.history == []

    def test_valid_transitions(self):
        sm = WorkflowStatusMachine(WorkflowStatus.ACTIVE)

        assert sm.get_valid_transitions() == {
            WorkflowStatus.PAUSED,
            WorkflowStatus.DRAFT,
            WorkflowStatus.ARCHIVED,
        }
        assert sm.can_transition_to(WorkflowStatus.PAUSED)
        assert not sm.can_transition_to(WorkflowStatus.ACTIVE)
