"""Core domain models and business logic."""

from automation_engine.core.models import (
    ActionNode,
    ConditionNode,
    Edge,
    EventEnvelope,
    EventType,
    GraphModel,
    Operator,
    TriggerNode,
)
from automation_engine.core.compiled import Branch, CompiledWorkflow, Sequence, Terminal
from automation_engine.core.trace import ExecutionTrace, NodeResult, NodeStatus, TraceStatus
from automation_engine.core.state_machine import WorkflowStatus, WorkflowStatusMachine
from automation_engine.core.validator import GraphValidator, ValidationResult
from automation_engine.core.compiler import Compiler
from automation_engine.core.workflow import Workflow

__all__ = [
    "ActionNode",
    "ConditionNode",
    "Edge",
    "EventEnvelope",
    "EventType",
    "GraphModel",
    "Operator",
    "TriggerNode",
    "Branch",
    "CompiledWorkflow",
    "Sequence",
    "Terminal",
    "ExecutionTrace",
    "NodeResult",
    "NodeStatus",
    "TraceStatus",
    "WorkflowStatus",
    "WorkflowStatusMachine",
    "GraphValidator",
    "ValidationResult",
    "Compiler",
    "Workflow",
]
