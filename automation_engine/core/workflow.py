"""Workflow aggregate: editable graph, compiled form, status and stats."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from pydantic import Field

from automation_engine.core.compiled import CompiledWorkflow
from automation_engine.core.models import CamelModel, EventType, GraphModel
from automation_engine.core.state_machine import WorkflowStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Workflow(CamelModel):
    """A stored workflow."""

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: WorkflowStatus = WorkflowStatus.DRAFT
    priority: int = Field(default=100, description="Lower runs earlier")
    graph: GraphModel = Field(default_factory=GraphModel)
    compiled: Optional[CompiledWorkflow] = None
    version: int = Field(default=0, ge=0)
    execution_count: int = Field(default=0, ge=0)
    last_executed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def event_type(self) -> Optional[EventType]:
        """Event type of the compiled trigger (None until first successful save)."""
        return self.compiled.event_type if self.compiled else None

    @property
    def is_dispatchable(self) -> bool:
        return self.status == WorkflowStatus.ACTIVE and self.compiled is not None


class WorkflowCreate(CamelModel):
    """Request body for creating a workflow."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    priority: int = 100
    graph: Optional[GraphModel] = None
