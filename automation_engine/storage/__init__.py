"""Storage layer: workflows, execution traces and idempotency claims."""

from automation_engine.storage.base import ExecutionStore, IdempotencyStore, WorkflowStore
from automation_engine.storage.memory import (
    InMemoryExecutionStore,
    InMemoryIdempotencyStore,
    InMemoryWorkflowStore,
)

__all__ = [
    "ExecutionStore",
    "IdempotencyStore",
    "WorkflowStore",
    "InMemoryExecutionStore",
    "InMemoryIdempotencyStore",
    "InMemoryWorkflowStore",
]
