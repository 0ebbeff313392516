"""
Workflow status lifecycle.

Implements explicit status transitions with guards and validation. Only
ACTIVE workflows are eligible for dispatch; pausing affects future
dispatches only.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from automation_engine.core.errors import AutomationError


class WorkflowStatus(str, Enum):
    """
    Possible statuses of a workflow definition.

    Status transitions:
    - DRAFT -> ACTIVE (requires a compiled form)
    - ACTIVE <-> PAUSED
    - ACTIVE/PAUSED -> DRAFT
    - Any non-archived status -> ARCHIVED
    """

    DRAFT = "DRAFT"          # Being edited, never dispatched
    ACTIVE = "ACTIVE"        # Eligible for dispatch
    PAUSED = "PAUSED"        # Temporarily not dispatched
    ARCHIVED = "ARCHIVED"    # Retired, read-only


class StateTransition(BaseModel):
    """Represents a status transition event."""

    from_state: str
    to_state: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    reason: Optional[str] = None
    triggered_by: Optional[str] = None  # User, system, etc.
    metadata: dict = Field(default_factory=dict)


class InvalidStatusTransitionError(AutomationError):
    """Raised when an invalid status transition is attempted."""

    def __init__(self, from_state: str, to_state: str, message: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid status transition from {from_state} to {to_state}"
            + (f": {message}" if message else "")
        )


# Type alias for transition guards
TransitionGuard = Callable[[], bool]


class WorkflowStatusMachine:
    """
    State machine for workflow statuses.

    Defines valid transitions and provides transition guards.
    """

    # Valid state transitions: from_state -> [valid_to_states]
    VALID_TRANSITIONS: dict[WorkflowStatus, set[WorkflowStatus]] = {
        WorkflowStatus.DRAFT: {WorkflowStatus.ACTIVE, WorkflowStatus.ARCHIVED},
        WorkflowStatus.ACTIVE: {
            WorkflowStatus.PAUSED,
            WorkflowStatus.DRAFT,
            WorkflowStatus.ARCHIVED,
        },
        WorkflowStatus.PAUSED: {
            WorkflowStatus.ACTIVE,
            WorkflowStatus.DRAFT,
            WorkflowStatus.ARCHIVED,
        },
        WorkflowStatus.ARCHIVED: set(),  # Terminal state
    }

    TERMINAL_STATES: set[WorkflowStatus] = {WorkflowStatus.ARCHIVED}

    # Statuses eligible for event dispatch
    DISPATCHABLE_STATES: set[WorkflowStatus] = {WorkflowStatus.ACTIVE}

    def __init__(self, initial_state: WorkflowStatus = WorkflowStatus.DRAFT):
        self._state = initial_state
        self._history: list[StateTransition] = []

    @property
    def state(self) -> WorkflowStatus:
        """Get current status."""
        return self._state

    @property
    def history(self) -> list[StateTransition]:
        """Get transition history."""
        return self._history.copy()

    @property
    def is_terminal(self) -> bool:
        return self._state in self.TERMINAL_STATES

    @property
    def is_dispatchable(self) -> bool:
        return self._state in self.DISPATCHABLE_STATES

    def can_transition_to(self, to_state: WorkflowStatus) -> bool:
        """Check if transition to given status is valid."""
        return to_state in self.VALID_TRANSITIONS.get(self._state, set())

    def get_valid_transitions(self) -> set[WorkflowStatus]:
        """Get all valid transitions from current status."""
        return self.VALID_TRANSITIONS.get(self._state, set()).copy()

    def transition(
        self,
        to_state: WorkflowStatus,
        reason: Optional[str] = None,
        triggered_by: Optional[str] = None,
        guard: Optional[TransitionGuard] = None,
        metadata: Optional[dict] = None,
    ) -> StateTransition:
        """
        Transition to a new status.

        Args:
            to_state: Target status
            reason: Reason for transition
            triggered_by: Who/what triggered the transition
            guard: Optional guard function that must return True
            metadata: Additional metadata for the transition

        Returns:
            StateTransition record

        Raises:
            InvalidStatusTransitionError: If transition is not valid
        """
        if not self.can_transition_to(to_state):
            valid = sorted(state.value for state in self.get_valid_transitions())
            raise InvalidStatusTransitionError(
                self._state.value,
                to_state.value,
                f"Valid transitions: {valid}",
            )

        if guard is not None and not guard():
            raise InvalidStatusTransitionError(
                self._state.value,
                to_state.value,
                "Guard condition failed",
            )

        transition = StateTransition(
            from_state=self._state.value,
            to_state=to_state.value,
            reason=reason,
            triggered_by=triggered_by,
            metadata=metadata or {},
        )

        self._history.append(transition)
        self._state = to_state

        return transition
