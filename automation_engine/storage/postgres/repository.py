"""
Repository layer for workflow data access.

Provides high-level data access methods with proper transaction handling.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from automation_engine.core.compiled import CompiledWorkflow
from automation_engine.core.models import EventType, GraphModel
from automation_engine.core.state_machine import WorkflowStatus
from automation_engine.core.trace import ExecutionTrace
from automation_engine.core.workflow import Workflow
from automation_engine.storage.postgres.models import ExecutionTraceModel, WorkflowModel


def workflow_from_model(model: WorkflowModel) -> Workflow:
    """Convert a row into the domain model."""
    return Workflow(
        id=model.id,
        name=model.name,
        description=model.description,
        status=WorkflowStatus(model.status),
        priority=model.priority,
        graph=GraphModel.model_validate(model.graph or {}),
        compiled=CompiledWorkflow.model_validate(model.compiled) if model.compiled else None,
        version=model.version,
        execution_count=model.execution_count,
        last_executed_at=model.last_executed_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def trace_from_model(model: ExecutionTraceModel) -> ExecutionTrace:
    return ExecutionTrace.model_validate(model.trace)


class WorkflowRepository:
    """
    Repository for workflows and execution traces.

    All methods operate within the provided session's transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== Workflow Operations ====================

    async def create_workflow(self, workflow: Workflow) -> WorkflowModel:
        """Create a new workflow."""
        model = WorkflowModel(
            id=workflow.id,
            name=workflow.name,
            description=workflow.description,
            status=workflow.status.value,
            priority=workflow.priority,
            event_type=workflow.event_type.value if workflow.event_type else None,
            graph=workflow.graph.model_dump(mode="json", by_alias=True),
            compiled=workflow.compiled.model_dump(mode="json", by_alias=True) if workflow.compiled else None,
            version=workflow.version,
            execution_count=workflow.execution_count,
            last_executed_at=workflow.last_executed_at,
        )

        self.session.add(model)
        await self.session.flush()
        return model

    async def get_workflow(self, workflow_id: UUID) -> Optional[WorkflowModel]:
        """Get workflow by ID."""
        result = await self.session.execute(
            select(WorkflowModel).where(WorkflowModel.id == workflow_id)
        )
        return result.scalar_one_or_none()

    async def update_workflow(self, workflow: Workflow) -> None:
        """Write graph, compiled form, version and status. Stats are left untouched."""
        await self.session.execute(
            update(WorkflowModel)
            .where(WorkflowModel.id == workflow.id)
            .values(
                name=workflow.name,
                description=workflow.description,
                status=workflow.status.value,
                priority=workflow.priority,
                event_type=workflow.event_type.value if workflow.event_type else None,
                graph=workflow.graph.model_dump(mode="json", by_alias=True),
                compiled=workflow.compiled.model_dump(mode="json", by_alias=True) if workflow.compiled else None,
                version=workflow.version,
            )
        )

    async def list_workflows(
        self,
        status: Optional[WorkflowStatus] = None,
        limit: int = 100,
    ) -> list[WorkflowModel]:
        query = select(WorkflowModel)
        if status is not None:
            query = query.where(WorkflowModel.status == status.value)
        query = query.order_by(WorkflowModel.priority, WorkflowModel.id).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_dispatchable(self, event_type: EventType, limit: int) -> list[WorkflowModel]:
        """ACTIVE compiled workflows listening to an event type."""
        result = await self.session.execute(
            select(WorkflowModel)
            .where(
                WorkflowModel.status == WorkflowStatus.ACTIVE.value,
                WorkflowModel.event_type == event_type.value,
                WorkflowModel.compiled.is_not(None),
            )
            .order_by(WorkflowModel.priority, WorkflowModel.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def increment_execution_stats(self, workflow_id: UUID, executed_at: datetime) -> None:
        await self.session.execute(
            update(WorkflowModel)
            .where(WorkflowModel.id == workflow_id)
            .values(
                execution_count=WorkflowModel.execution_count + 1,
                last_executed_at=executed_at,
            )
        )

    # ==================== Execution Trace Operations ====================

    async def insert_trace(self, trace: ExecutionTrace) -> ExecutionTraceModel:
        model = ExecutionTraceModel(
            id=trace.id,
            workflow_id=trace.workflow_id,
            workflow_version=trace.workflow_version,
            event_type=trace.event_type.value,
            entity_id=trace.entity_id,
            idempotency_key=trace.idempotency_key,
            status=trace.status.value,
            error_message=trace.error,
            dry_run=trace.dry_run,
            event_context=trace.event_context,
            trace=trace.model_dump(mode="json", by_alias=True),
            started_at=trace.started_at,
            completed_at=trace.completed_at,
            duration_ms=trace.duration_ms,
        )
        self.session.add(model)
        await self.session.flush()
        return model

    async def get_trace(self, trace_id: UUID) -> Optional[ExecutionTraceModel]:
        result = await self.session.execute(
            select(ExecutionTraceModel).where(ExecutionTraceModel.id == trace_id)
        )
        return result.scalar_one_or_none()

    async def list_traces(self, workflow_id: UUID, limit: int = 50) -> list[ExecutionTraceModel]:
        result = await self.session.execute(
            select(ExecutionTraceModel)
            .where(ExecutionTraceModel.workflow_id == workflow_id)
            .order_by(ExecutionTraceModel.started_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
