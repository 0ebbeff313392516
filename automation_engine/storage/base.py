"""
Storage interfaces.

Workflows, execution traces and idempotency claims each sit behind a small
async interface with a PostgreSQL/Redis implementation and an in-memory one.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from automation_engine.core.models import EventType
from automation_engine.core.state_machine import WorkflowStatus
from automation_engine.core.trace import ExecutionTrace
from automation_engine.core.workflow import Workflow


class WorkflowStore(ABC):
    """Persistence for workflows (graph, compiled form, status, stats)."""

    @abstractmethod
    async def create(self, workflow: Workflow) -> Workflow:
        """Insert a new workflow."""

    @abstractmethod
    async def get(self, workflow_id: UUID) -> Optional[Workflow]:
        """Get workflow by ID."""

    @abstractmethod
    async def save(self, workflow: Workflow) -> Workflow:
        """Replace a stored workflow's editable fields, compiled form and status."""

    @abstractmethod
    async def list_workflows(self, status: Optional[WorkflowStatus] = None, limit: int = 100) -> list[Workflow]:
        """List workflows, optionally filtered by status."""

    @abstractmethod
    async def list_dispatchable(self, event_type: EventType, limit: int) -> list[Workflow]:
        """ACTIVE workflows with a compiled trigger on `event_type`, ordered by (priority, id)."""

    @abstractmethod
    async def record_execution(self, workflow_id: UUID, executed_at: datetime) -> None:
        """Bump execution_count and last_executed_at."""


class ExecutionStore(ABC):
    """Append-only store of ExecutionTraces."""

    @abstractmethod
    async def append(self, trace: ExecutionTrace) -> None:
        """Persist a trace. Traces are never updated afterwards."""

    @abstractmethod
    async def get(self, trace_id: UUID) -> Optional[ExecutionTrace]:
        """Get a trace by ID."""

    @abstractmethod
    async def list_for_workflow(self, workflow_id: UUID, limit: int = 50) -> list[ExecutionTrace]:
        """Traces of one workflow, newest first."""


class IdempotencyStore(ABC):
    """At-most-once claims for (event, workflow) pairs."""

    @abstractmethod
    async def claim(self, key: str, ttl_seconds: int) -> bool:
        """Atomically claim `key`. Returns False if it was already claimed."""

    @abstractmethod
    async def release(self, key: str) -> None:
        """Drop a claim so the pair may be dispatched again."""
