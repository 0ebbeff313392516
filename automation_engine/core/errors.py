"""
Exception hierarchy for the automation engine.

StructuralError and CompileError belong to the save path; EvaluationError,
ActionError and DispatchError belong to the runtime path and are normally
recorded in an ExecutionTrace rather than propagated to callers.
"""

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from automation_engine.core.validator import ValidationResult


class AutomationError(Exception):
    """Base class for all automation engine errors."""


class StructuralError(AutomationError):
    """Raised when a graph fails validation and cannot be saved."""

    def __init__(self, result: "ValidationResult"):
        self.result = result
        self.errors = result.messages
        super().__init__(f"Workflow graph is invalid: {self.errors}")


class CompileError(AutomationError):
    """
    Raised when compilation is attempted on a graph that did not pass validation.

    Indicates a programming error, never a user-facing condition.
    """


class EvaluationError(AutomationError):
    """Operator type mismatch or unusable operand while evaluating a predicate."""

    def __init__(self, message: str, field: Optional[str] = None, operator: Optional[str] = None):
        self.field = field
        self.operator = operator
        super().__init__(message)


class ActionError(AutomationError):
    """Raised by action handlers when an invocation fails."""

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        details: Optional[dict[str, Any]] = None,
    ):
        self.retryable = retryable
        self.details = details or {}
        super().__init__(message)


class ActionTimeoutError(ActionError):
    """Raised when an action invocation exceeds its timeout."""

    def __init__(self, action_type: str, timeout: float):
        self.action_type = action_type
        self.timeout = timeout
        super().__init__(f"Action {action_type} timed out after {timeout} seconds", retryable=True)


class DispatchError(AutomationError):
    """A single workflow failed during event fan-out."""

    def __init__(self, workflow_id: Any, message: str):
        self.workflow_id = workflow_id
        super().__init__(f"Dispatch of workflow {workflow_id} failed: {message}")


class WorkflowNotFoundError(AutomationError):
    """Raised when a workflow id does not exist."""

    def __init__(self, workflow_id: Any):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")
