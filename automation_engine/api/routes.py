"""
FastAPI routes for the automation engine API.

Implements the editor and platform facing endpoints:
- POST /workflows/validate - Dry validation of a graph
- POST /workflows - Create workflow
- GET /workflows/:id - Get workflow
- PUT /workflows/:id/graph - Validate, compile and save a graph
- POST /workflows/:id/status - Change status (the only path that changes dispatch eligibility)
- GET /workflows/:id/executions - Execution traces, newest first
- POST /workflows/:id/test - Dry-run against sample context
- GET /executions/:id - Get trace
- GET /executions/:id/node-status - Trace projected over the graph
- POST /events - Event ingress (dispatch in background)
- GET /health - Health check

Platform services may also publish events to the 'automation:stream:events'
Redis Stream instead of calling /events.
"""

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import Field

from automation_engine import __version__
from automation_engine.core.errors import StructuralError, WorkflowNotFoundError
from automation_engine.core.models import CamelModel, EventEnvelope, GraphModel
from automation_engine.core.state_machine import InvalidStatusTransitionError, WorkflowStatus
from automation_engine.core.trace import ExecutionTrace
from automation_engine.core.workflow import Workflow, WorkflowCreate
from automation_engine.engine.runtime import AutomationRuntime
from automation_engine.engine.service import TraceNotFoundError, WorkflowService

router = APIRouter(prefix="/v1", tags=["workflows"])


# ==================== Request/Response Models ====================

class ValidationResponse(CamelModel):
    """Result of a dry validation."""

    valid: bool
    errors: list[str] = Field(default_factory=list, description="Error messages in the order found")
    details: list[dict[str, Any]] = Field(default_factory=list)


class StatusChangeRequest(CamelModel):
    """Request body for a status change."""

    status: WorkflowStatus
    reason: Optional[str] = None
    triggered_by: Optional[str] = None


class TestWorkflowRequest(CamelModel):
    """Sample event context for a dry run."""

    __test__ = False

    context: dict[str, Any] = Field(default_factory=dict)
    entity_id: Optional[str] = None


class EventAcceptedResponse(CamelModel):
    accepted: bool = True
    event_type: str
    entity_id: Optional[str] = None
    idempotency_token: str


class HealthResponse(CamelModel):
    """Health check response."""

    status: str
    version: str
    services: dict[str, str]


# ==================== Dependency Injection ====================

def get_runtime(request: Request) -> AutomationRuntime:
    """Get runtime from app state."""
    return request.app.state.runtime


def get_service(runtime: AutomationRuntime = Depends(get_runtime)) -> WorkflowService:
    return runtime.service


def _not_found(e: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def _invalid_graph(e: StructuralError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={
            "errors": e.errors,
            "details": [error.to_dict() for error in e.result.errors],
        },
    )


# ==================== Workflow Routes ====================

@router.post(
    "/workflows/validate",
    response_model=ValidationResponse,
    summary="Validate a graph",
    description="Run structural validation without saving anything.",
)
async def validate_graph(
    graph: GraphModel,
    service: WorkflowService = Depends(get_service),
) -> ValidationResponse:
    result = service.validate(graph)
    return ValidationResponse(
        valid=result.is_valid,
        errors=result.messages,
        details=[error.to_dict() for error in result.errors],
    )


@router.post(
    "/workflows",
    response_model=Workflow,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow",
)
async def create_workflow(
    request: WorkflowCreate,
    service: WorkflowService = Depends(get_service),
) -> Workflow:
    """Create a DRAFT workflow. A graph, when given, must be valid."""
    try:
        return await service.create_workflow(request)
    except StructuralError as e:
        raise _invalid_graph(e)


@router.get(
    "/workflows/{workflow_id}",
    response_model=Workflow,
    summary="Get a workflow",
)
async def get_workflow(
    workflow_id: UUID,
    service: WorkflowService = Depends(get_service),
) -> Workflow:
    try:
        return await service.get_workflow(workflow_id)
    except WorkflowNotFoundError as e:
        raise _not_found(e)


@router.put(
    "/workflows/{workflow_id}/graph",
    response_model=Workflow,
    summary="Save a graph",
    description="Validate and compile the graph; on success the compiled form and version are replaced.",
)
async def save_graph(
    workflow_id: UUID,
    graph: GraphModel,
    service: WorkflowService = Depends(get_service),
) -> Workflow:
    try:
        return await service.save_graph(workflow_id, graph)
    except WorkflowNotFoundError as e:
        raise _not_found(e)
    except StructuralError as e:
        raise _invalid_graph(e)


@router.post(
    "/workflows/{workflow_id}/status",
    response_model=Workflow,
    summary="Change workflow status",
)
async def change_status(
    workflow_id: UUID,
    request: StatusChangeRequest,
    service: WorkflowService = Depends(get_service),
) -> Workflow:
    try:
        return await service.set_status(
            workflow_id,
            request.status,
            reason=request.reason,
            triggered_by=request.triggered_by,
        )
    except WorkflowNotFoundError as e:
        raise _not_found(e)
    except InvalidStatusTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.get(
    "/workflows/{workflow_id}/executions",
    response_model=list[ExecutionTrace],
    summary="List execution traces",
)
async def list_executions(
    workflow_id: UUID,
    limit: int = Query(default=50, ge=1, le=500),
    service: WorkflowService = Depends(get_service),
) -> list[ExecutionTrace]:
    try:
        return await service.list_executions(workflow_id, limit=limit)
    except WorkflowNotFoundError as e:
        raise _not_found(e)


@router.post(
    "/workflows/{workflow_id}/test",
    response_model=ExecutionTrace,
    summary="Dry-run a workflow",
    description="Evaluate against sample context with actions in dry-run mode. Nothing is persisted.",
)
async def test_workflow(
    workflow_id: UUID,
    request: TestWorkflowRequest,
    service: WorkflowService = Depends(get_service),
) -> ExecutionTrace:
    try:
        return await service.test_workflow(workflow_id, request.context, entity_id=request.entity_id)
    except WorkflowNotFoundError as e:
        raise _not_found(e)
    except StructuralError as e:
        raise _invalid_graph(e)


# ==================== Execution Routes ====================

@router.get(
    "/executions/{trace_id}",
    response_model=ExecutionTrace,
    summary="Get an execution trace",
)
async def get_execution(
    trace_id: UUID,
    service: WorkflowService = Depends(get_service),
) -> ExecutionTrace:
    try:
        return await service.get_execution(trace_id)
    except TraceNotFoundError as e:
        raise _not_found(e)


@router.get(
    "/executions/{trace_id}/node-status",
    response_model=dict[str, str],
    summary="Per-node execution status",
    description="Trace projected over the workflow's graph: success, error, skipped or idle per node.",
)
async def get_node_status(
    trace_id: UUID,
    service: WorkflowService = Depends(get_service),
) -> dict[str, str]:
    try:
        return await service.node_statuses(trace_id)
    except (TraceNotFoundError, WorkflowNotFoundError) as e:
        raise _not_found(e)


# ==================== Event Ingress ====================

@router.post(
    "/events",
    response_model=EventAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["events"],
    summary="Publish a platform event",
    description="Dispatch runs in the background; traces appear under the matching workflows.",
)
async def publish_event(
    event: EventEnvelope,
    runtime: AutomationRuntime = Depends(get_runtime),
) -> EventAcceptedResponse:
    runtime.dispatcher.on_event(event)
    return EventAcceptedResponse(
        event_type=event.event_type.value,
        entity_id=event.entity_id,
        idempotency_token=event.idempotency_token,
    )


# ==================== Health Check Routes ====================

@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
)
async def health_check(runtime: AutomationRuntime = Depends(get_runtime)) -> HealthResponse:
    services = await runtime.health()

    unhealthy_count = sum(1 for s in services.values() if s == "unhealthy")
    if unhealthy_count == 0:
        overall_status = "healthy"
    elif unhealthy_count == len(services):
        overall_status = "unhealthy"
    else:
        overall_status = "degraded"

    return HealthResponse(status=overall_status, version=__version__, services=services)
