"""WorkflowStore / ExecutionStore backed by PostgreSQL."""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from automation_engine.core.models import EventType
from automation_engine.core.state_machine import WorkflowStatus
from automation_engine.core.trace import ExecutionTrace
from automation_engine.core.workflow import Workflow
from automation_engine.storage.base import ExecutionStore, WorkflowStore
from automation_engine.storage.postgres.database import Database
from automation_engine.storage.postgres.repository import (
    WorkflowRepository,
    trace_from_model,
    workflow_from_model,
)

logger = logging.getLogger(__name__)


class PostgresWorkflowStore(WorkflowStore):
    def __init__(self, database: Database):
        self.database = database

    async def create(self, workflow: Workflow) -> Workflow:
        async with self.database.session() as session:
            model = await WorkflowRepository(session).create_workflow(workflow)
            await session.refresh(model)
            return workflow_from_model(model)

    async def get(self, workflow_id: UUID) -> Optional[Workflow]:
        async with self.database.session() as session:
            model = await WorkflowRepository(session).get_workflow(workflow_id)
            return workflow_from_model(model) if model else None

    async def save(self, workflow: Workflow) -> Workflow:
        async with self.database.session() as session:
            repo = WorkflowRepository(session)
            await repo.update_workflow(workflow)
            model = await repo.get_workflow(workflow.id)
            if model is None:
                raise ValueError(f"Workflow not found: {workflow.id}")
            await session.refresh(model)
            return workflow_from_model(model)

    async def list_workflows(self, status: Optional[WorkflowStatus] = None, limit: int = 100) -> list[Workflow]:
        async with self.database.session() as session:
            models = await WorkflowRepository(session).list_workflows(status=status, limit=limit)
            return [workflow_from_model(m) for m in models]

    async def list_dispatchable(self, event_type: EventType, limit: int) -> list[Workflow]:
        async with self.database.session() as session:
            models = await WorkflowRepository(session).list_dispatchable(event_type, limit)
            return [workflow_from_model(m) for m in models]

    async def record_execution(self, workflow_id: UUID, executed_at: datetime) -> None:
        async with self.database.session() as session:
            await WorkflowRepository(session).increment_execution_stats(workflow_id, executed_at)


class PostgresExecutionStore(ExecutionStore):
    def __init__(self, database: Database):
        self.database = database

    async def append(self, trace: ExecutionTrace) -> None:
        async with self.database.session() as session:
            await WorkflowRepository(session).insert_trace(trace)

    async def get(self, trace_id: UUID) -> Optional[ExecutionTrace]:
        async with self.database.session() as session:
            model = await WorkflowRepository(session).get_trace(trace_id)
            return trace_from_model(model) if model else None

    async def list_for_workflow(self, workflow_id: UUID, limit: int = 50) -> list[ExecutionTrace]:
        async with self.database.session() as session:
            models = await WorkflowRepository(session).list_traces(workflow_id, limit)
            return [trace_from_model(m) for m in models]
