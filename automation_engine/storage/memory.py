"""In-memory stores for tests and local runs."""

import asyncio
import time
from datetime import datetime
from typing import Optional
from uuid import UUID

from automation_engine.core.models import EventType
from automation_engine.core.state_machine import WorkflowStatus
from automation_engine.core.trace import ExecutionTrace
from automation_engine.core.workflow import Workflow
from automation_engine.storage.base import ExecutionStore, IdempotencyStore, WorkflowStore


class InMemoryWorkflowStore(WorkflowStore):
    def __init__(self) -> None:
        self._workflows: dict[UUID, Workflow] = {}
        self._lock = asyncio.Lock()

    async def create(self, workflow: Workflow) -> Workflow:
        async with self._lock:
            if workflow.id in self._workflows:
                raise ValueError(f"Workflow already exists: {workflow.id}")
            self._workflows[workflow.id] = workflow.model_copy(deep=True)
        return workflow

    async def get(self, workflow_id: UUID) -> Optional[Workflow]:
        workflow = self._workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None

    async def save(self, workflow: Workflow) -> Workflow:
        async with self._lock:
            current = self._workflows.get(workflow.id)
            stored = workflow.model_copy(deep=True)
            if current is not None:
                # Stats are owned by record_execution
                stored.execution_count = current.execution_count
                stored.last_executed_at = current.last_executed_at
            self._workflows[workflow.id] = stored
        return stored.model_copy(deep=True)

    async def list_workflows(self, status: Optional[WorkflowStatus] = None, limit: int = 100) -> list[Workflow]:
        workflows = [w for w in self._workflows.values() if status is None or w.status == status]
        workflows.sort(key=lambda w: (w.priority, str(w.id)))
        return [w.model_copy(deep=True) for w in workflows[:limit]]

    async def list_dispatchable(self, event_type: EventType, limit: int) -> list[Workflow]:
        workflows = [
            w for w in self._workflows.values()
            if w.is_dispatchable and w.event_type == event_type
        ]
        workflows.sort(key=lambda w: (w.priority, str(w.id)))
        return [w.model_copy(deep=True) for w in workflows[:limit]]

    async def record_execution(self, workflow_id: UUID, executed_at: datetime) -> None:
        async with self._lock:
            workflow = self._workflows.get(workflow_id)
            if workflow is not None:
                workflow.execution_count += 1
                workflow.last_executed_at = executed_at


class InMemoryExecutionStore(ExecutionStore):
    def __init__(self) -> None:
        self._traces: dict[UUID, ExecutionTrace] = {}

    async def append(self, trace: ExecutionTrace) -> None:
        if trace.id in self._traces:
            raise ValueError(f"Trace already recorded: {trace.id}")
        self._traces[trace.id] = trace.model_copy(deep=True)

    async def get(self, trace_id: UUID) -> Optional[ExecutionTrace]:
        trace = self._traces.get(trace_id)
        return trace.model_copy(deep=True) if trace else None

    async def list_for_workflow(self, workflow_id: UUID, limit: int = 50) -> list[ExecutionTrace]:
        traces = [t for t in self._traces.values() if t.workflow_id == workflow_id]
        traces.sort(key=lambda t: t.started_at, reverse=True)
        return [t.model_copy(deep=True) for t in traces[:limit]]



class InMemoryIdempotencyStore(IdempotencyStore):
    def __init__(self) -> None:
        self._claims: dict[str, float] = {}

    async def claim(self, key: str, ttl_seconds: int) -> bool:
        # No await between check and set, so this is atomic on one loop
        now = time.monotonic()
        expires_at = self._claims.get(key)
        if expires_at is not None and expires_at > now:
            return False
        self._claims[key] = now + ttl_seconds
        return True

    async def release(self, key: str) -> None:
        self._claims.pop(key, None)
