"""
Workflow service.

The only write path for workflows: saving a graph runs the validator and
compiler, and status changes go through the status state machine. Also
serves trace queries and dry-run tests for the API.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from automation_engine.actions.registry import ActionRegistry
from automation_engine.core.compiler import Compiler
from automation_engine.core.errors import StructuralError, WorkflowNotFoundError
from automation_engine.core.models import GraphModel, derive_entity_id
from automation_engine.core.state_machine import (
    InvalidStatusTransitionError,
    WorkflowStatus,
    WorkflowStatusMachine,
)
from automation_engine.core.trace import ExecutionTrace, project_node_statuses
from automation_engine.core.validator import GraphValidator, ValidationResult
from automation_engine.core.workflow import Workflow, WorkflowCreate
from automation_engine.engine.evaluator import Evaluator
from automation_engine.storage.base import ExecutionStore, WorkflowStore

logger = logging.getLogger(__name__)


class TraceNotFoundError(LookupError):
    def __init__(self, trace_id: Any):
        self.trace_id = trace_id
        super().__init__(f"Execution trace not found: {trace_id}")


class WorkflowService:
    """Validate/compile on save, status lifecycle, trace queries."""

    def __init__(
        self,
        store: WorkflowStore,
        execution_store: ExecutionStore,
        registry: ActionRegistry,
        evaluator: Evaluator,
        compiler: Optional[Compiler] = None,
    ):
        self.store = store
        self.execution_store = execution_store
        self.registry = registry
        self.evaluator = evaluator
        self.compiler = compiler or Compiler()
        self.validator = GraphValidator(registry)

    # ==================== Graph Save Path ====================

    def validate(self, graph: GraphModel) -> ValidationResult:
        """Dry validation; nothing is persisted."""
        return self.validator.validate(graph)

    async def create_workflow(self, request: WorkflowCreate) -> Workflow:
        """Create a DRAFT workflow, compiling its graph when one is given."""
        workflow = Workflow(
            name=request.name,
            description=request.description,
            priority=request.priority,
        )
        if request.graph is not None:
            self._apply_graph(workflow, request.graph)

        workflow = await self.store.create(workflow)
        logger.info(f"Created workflow {workflow.id} ({workflow.name})")
        return workflow

    async def save_graph(self, workflow_id: UUID, graph: GraphModel) -> Workflow:
        """
        Validate, compile and persist a graph.

        The compiled form and version are replaced only when the graph is
        valid; an invalid save leaves the stored workflow untouched.

        Raises:
            WorkflowNotFoundError: Unknown workflow
            StructuralError: Graph failed validation
        """
        workflow = await self.get_workflow(workflow_id)
        self._apply_graph(workflow, graph)
        saved = await self.store.save(workflow)
        logger.info(f"Saved workflow {workflow_id} graph as v{saved.version}")
        return saved

    def _apply_graph(self, workflow: Workflow, graph: GraphModel) -> None:
        result = self.validate(graph)
        if not result.is_valid:
            logger.info(f"Rejected graph for workflow {workflow.id}: {result.codes}")
            raise StructuralError(result)

        version = workflow.version + 1
        graph = graph.model_copy(update={"version": version})
        workflow.compiled = self.compiler.compile(graph, workflow_id=workflow.id, version=version)
        workflow.graph = graph
        workflow.version = version
        workflow.updated_at = datetime.now(timezone.utc)

    # ==================== Status Lifecycle ====================

    async def set_status(
        self,
        workflow_id: UUID,
        to_status: WorkflowStatus,
        reason: Optional[str] = None,
        triggered_by: Optional[str] = None,
    ) -> Workflow:
        """
        Change a workflow's status.

        Raises:
            WorkflowNotFoundError: Unknown workflow
            InvalidStatusTransitionError: Transition not allowed, or
                activation without a compiled form
        """
        workflow = await self.get_workflow(workflow_id)
        if workflow.status == to_status:
            return workflow

        machine = WorkflowStatusMachine(workflow.status)
        guard = None
        if to_status == WorkflowStatus.ACTIVE:
            guard = lambda: workflow.compiled is not None  # noqa: E731

        try:
            machine.transition(to_status, reason=reason, triggered_by=triggered_by, guard=guard)
        except InvalidStatusTransitionError as e:
            logger.info(f"Refused status change for workflow {workflow_id}: {e}")
            raise

        workflow.status = machine.state
        workflow.updated_at = datetime.now(timezone.utc)
        saved = await self.store.save(workflow)
        logger.info(f"Workflow {workflow_id} is now {saved.status.value}")
        return saved

    # ==================== Queries ====================

    async def get_workflow(self, workflow_id: UUID) -> Workflow:
        workflow = await self.store.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    async def list_workflows(self, status: Optional[WorkflowStatus] = None, limit: int = 100) -> list[Workflow]:
        return await self.store.list_workflows(status=status, limit=limit)

    async def list_executions(self, workflow_id: UUID, limit: int = 50) -> list[ExecutionTrace]:
        await self.get_workflow(workflow_id)
        return await self.execution_store.list_for_workflow(workflow_id, limit=limit)

    async def get_execution(self, trace_id: UUID) -> ExecutionTrace:
        trace = await self.execution_store.get(trace_id)
        if trace is None:
            raise TraceNotFoundError(trace_id)
        return trace

    async def node_statuses(self, trace_id: UUID) -> dict[str, str]:
        """Per-node status of a trace projected over the workflow's current graph."""
        trace = await self.get_execution(trace_id)
        workflow = await self.get_workflow(trace.workflow_id)
        return project_node_statuses(trace, workflow.graph)

    # ==================== Dry Run ====================

    async def test_workflow(
        self,
        workflow_id: UUID,
        context: dict[str, Any],
        entity_id: Optional[str] = None,
    ) -> ExecutionTrace:
        """
        Evaluate a workflow against sample context in dry-run mode.

        The trigger filter is not applied and the trace is not persisted.

        Raises:
            WorkflowNotFoundError: Unknown workflow
            StructuralError: Workflow has no compiled form yet
        """
        workflow = await self.get_workflow(workflow_id)
        if workflow.compiled is None:
            result = ValidationResult(is_valid=True)
            result.add_error("NOT_COMPILED", "Workflow has no saved graph to test")
            raise StructuralError(result)

        if entity_id is None:
            entity_id = derive_entity_id(workflow.compiled.event_type, context)

        trace = await self.evaluator.evaluate(
            workflow.compiled,
            context,
            entity_id=entity_id,
            dry_run=True,
        )
        logger.info(f"Dry run of workflow {workflow_id} finished {trace.status.value}")
        return trace
