"""
Trigger dispatcher.

Fans one platform event out to every ACTIVE workflow whose trigger matches:

1. load ACTIVE workflows for the event type (capped)
2. evaluate each trigger filter, skipping non-matching workflows
3. order by priority, then id
4. claim the per-workflow idempotency key, skipping already-claimed pairs
5. evaluate the survivors concurrently, isolating failures
6. append each trace and bump the workflow's stats
"""

import asyncio
import copy
import logging
from datetime import datetime, timezone
from typing import Optional

from automation_engine.config.settings import DispatcherSettings
from automation_engine.core.errors import DispatchError
from automation_engine.core.operators import evaluate_filter
from automation_engine.core.trace import ExecutionTrace, TraceStatus
from automation_engine.core.models import EventEnvelope
from automation_engine.core.workflow import Workflow
from automation_engine.engine.evaluator import Evaluator
from automation_engine.storage.base import ExecutionStore, IdempotencyStore, WorkflowStore

logger = logging.getLogger(__name__)


def idempotency_key(event: EventEnvelope, workflow: Workflow) -> str:
    """`{eventType}:{entityId}:{eventVersion}:{workflowId}`"""
    return f"{event.idempotency_token}:{workflow.id}"


class TriggerDispatcher:
    """
    Routes events to workflows.

    `on_event` is fire-and-continue: it schedules `dispatch` as a background
    task bounded by a semaphore and returns immediately. `drain` waits for
    in-flight dispatches (used on shutdown).
    """

    def __init__(
        self,
        workflow_store: WorkflowStore,
        execution_store: ExecutionStore,
        evaluator: Evaluator,
        idempotency_store: IdempotencyStore,
        settings: Optional[DispatcherSettings] = None,
    ):
        self.workflow_store = workflow_store
        self.execution_store = execution_store
        self.evaluator = evaluator
        self.idempotency_store = idempotency_store
        self.settings = settings or DispatcherSettings()

        self._semaphore = asyncio.Semaphore(self.settings.concurrency)
        self._tasks: set[asyncio.Task] = set()

    # ==================== Entry Points ====================

    def on_event(self, event: EventEnvelope) -> asyncio.Task:
        """Schedule dispatch of an event in the background and return."""
        task = asyncio.create_task(
            self._dispatch_in_background(event),
            name=f"dispatch:{event.idempotency_token}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _dispatch_in_background(self, event: EventEnvelope) -> None:
        async with self._semaphore:
            try:
                await self.dispatch(event)
            except Exception as e:
                logger.error(f"Dispatch of {event.idempotency_token} failed: {e}", exc_info=True)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight background dispatches, cancelling stragglers after `timeout`."""
        if not self._tasks:
            return

        timeout = self.settings.graceful_shutdown_timeout if timeout is None else timeout
        pending = list(self._tasks)
        logger.info(f"Waiting for {len(pending)} in-flight dispatches")
        try:
            await asyncio.wait_for(asyncio.gather(*pending, return_exceptions=True), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Graceful shutdown timed out, cancelling remaining dispatches")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def dispatch(self, event: EventEnvelope) -> list[ExecutionTrace]:
        """
        Evaluate every matching workflow for an event.

        Returns:
            Traces recorded for this event, in priority order
        """
        candidates = await self.workflow_store.list_dispatchable(
            event.event_type,
            limit=self.settings.max_workflows_per_event,
        )
        selected = self.select_workflows(event, candidates)

        claimed: list[tuple[Workflow, str]] = []
        try:
            for workflow in selected:
                key = idempotency_key(event, workflow)
                if await self.idempotency_store.claim(key, self.settings.idempotency_ttl):
                    claimed.append((workflow, key))
                else:
                    logger.info(f"Skipping workflow {workflow.id}: {key} already dispatched")
        except BaseException:
            for _, key in claimed:
                await self._release(key)
            raise

        if not claimed:
            logger.debug(f"No workflows to run for {event.idempotency_token}")
            return []

        logger.info(
            f"Dispatching {event.idempotency_token} to {len(claimed)} workflow(s): "
            f"{[str(w.id) for w, _ in claimed]}"
        )

        results = await asyncio.gather(
            *(self._run_workflow(event, workflow, key) for workflow, key in claimed),
        )
        return [trace for trace in results if trace is not None]

    def select_workflows(self, event: EventEnvelope, candidates: list[Workflow]) -> list[Workflow]:
        """Filter by dispatchability and trigger filter, then order by (priority, id)."""
        selected = []
        for workflow in candidates:
            compiled = workflow.compiled
            if not workflow.is_dispatchable or compiled is None or compiled.event_type != event.event_type:
                continue
            if not evaluate_filter(compiled.filter, compiled.filter_logic, event.context, compiled.filter_enabled):
                logger.debug(f"Workflow {workflow.id} trigger filter did not match {event.idempotency_token}")
                continue
            selected.append(workflow)

        selected.sort(key=lambda w: (w.priority, str(w.id)))
        return selected[: self.settings.max_workflows_per_event]

    # ==================== Per-Workflow Run ====================

    async def _run_workflow(self, event: EventEnvelope, workflow: Workflow, key: str) -> Optional[ExecutionTrace]:
        """
        Evaluate one workflow; never raises except on cancellation, so siblings are unaffected.

        Whenever no trace gets recorded, including when the run is cancelled,
        the idempotency claim is released so a redelivery can run it again.
        """
        recorded = False
        try:
            trace = await self._evaluate(event, workflow, key)
            try:
                await self.execution_store.append(trace)
            except Exception as e:
                logger.error(f"Failed to record trace for workflow {workflow.id}: {e}", exc_info=True)
                return None
            recorded = True
        finally:
            if not recorded:
                await self._release(key)

        try:
            await self.workflow_store.record_execution(workflow.id, trace.completed_at or trace.started_at)
        except Exception as e:
            logger.warning(f"Failed to update execution stats for workflow {workflow.id}: {e}")

        logger.info(
            f"Workflow {workflow.id} v{trace.workflow_version} finished {trace.status.value} "
            f"for {event.idempotency_token} ({len(trace.results)} node(s), {trace.duration_ms} ms)"
        )
        return trace

    async def _evaluate(self, event: EventEnvelope, workflow: Workflow, key: str) -> ExecutionTrace:
        """Run the evaluator, turning an unexpected failure into an error trace."""
        try:
            return await self.evaluator.evaluate(
                workflow.compiled,
                event.context,
                entity_id=event.entity_id,
                idempotency_key=key,
            )
        except Exception as e:
            error = DispatchError(workflow.id, f"{type(e).__name__}: {e}")
            logger.error(str(error), exc_info=True)
            now = datetime.now(timezone.utc)
            return ExecutionTrace(
                workflow_id=workflow.id,
                workflow_version=workflow.compiled.version if workflow.compiled else workflow.version,
                event_type=event.event_type,
                entity_id=event.entity_id,
                idempotency_key=key,
                event_context=copy.deepcopy(event.context),
                status=TraceStatus.ERROR,
                error=str(error),
                started_at=now,
                completed_at=now,
            )

    async def _release(self, key: str) -> None:
        try:
            await self.idempotency_store.release(key)
        except Exception as e:
            logger.error(f"Failed to release idempotency key {key}: {e}", exc_info=True)
