"""
Compiled workflow evaluator.

Walks a CompiledWorkflow against one event context and produces an
ExecutionTrace. The walk is sequential; the only suspension points are
action invocations, each bounded by a per-attempt timeout and retried
according to the handler's retry policy. The whole run is bounded by
`workflow_timeout` and by `max_steps` visited nodes.
"""

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from automation_engine.actions.base import ActionSignal, is_retryable_error
from automation_engine.actions.registry import ActionRegistry, UnknownActionTypeError
from automation_engine.config.settings import EvaluatorSettings
from automation_engine.core.compiled import ActionStep, Branch, CompiledWorkflow, Sequence, Terminal
from automation_engine.core.errors import ActionError, ActionTimeoutError, EvaluationError
from automation_engine.core.operators import UNDEFINED, evaluate_predicate, resolve_field
from automation_engine.core.trace import ExecutionTrace, NodeResult, NodeStatus, TraceStatus

logger = logging.getLogger(__name__)

CONTEXT_UPDATES_KEY = "contextUpdates"

Sleep = Callable[[float], Awaitable[Any]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def merge_context(target: dict[str, Any], updates: dict[str, Any]) -> None:
    """Deep-merge `updates` into `target` in place (nested dicts merge, everything else replaces)."""
    stack = [(target, updates)]
    while stack:
        dest, src = stack.pop()
        for key, value in src.items():
            if isinstance(value, dict) and isinstance(dest.get(key), dict):
                stack.append((dest[key], value))
            else:
                dest[key] = copy.deepcopy(value)


@dataclass
class _Run:
    """Mutable state of one evaluation; frozen into an ExecutionTrace at the end."""

    workflow_id: Optional[UUID]
    event_type: str
    entity_id: Optional[str]
    dry_run: bool
    results: list[NodeResult] = field(default_factory=list)
    steps: int = 0
    error: Optional[str] = None
    current_step: Optional[ActionStep] = None
    current_started_at: Optional[datetime] = None
    current_attempt: int = 0

    def fail(self, message: str) -> None:
        if self.error is None:
            self.error = message


class Evaluator:
    """
    Executes compiled workflows.

    Stateless between runs; one instance is shared by the dispatcher.
    """

    def __init__(
        self,
        registry: ActionRegistry,
        settings: Optional[EvaluatorSettings] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.registry = registry
        self.settings = settings or EvaluatorSettings()
        self._sleep = sleep

    async def evaluate(
        self,
        compiled: CompiledWorkflow,
        event_context: dict[str, Any],
        *,
        entity_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        dry_run: bool = False,
    ) -> ExecutionTrace:
        """
        Execute a compiled workflow against an event context.

        Args:
            compiled: Executable form produced by the Compiler
            event_context: Event payload; never mutated
            entity_id: Entity the event is about (passed to handlers)
            idempotency_key: Recorded on the trace
            dry_run: Handlers are told not to cause side effects

        Returns:
            ExecutionTrace (never raises for workflow-level failures)
        """
        snapshot = copy.deepcopy(event_context)
        context = copy.deepcopy(event_context)
        run = _Run(
            workflow_id=compiled.workflow_id,
            event_type=compiled.event_type.value,
            entity_id=entity_id,
            dry_run=dry_run,
        )

        started_at = _now()
        started = time.monotonic()

        try:
            async with asyncio.timeout(self.settings.workflow_timeout):
                await self._walk(compiled, context, run)
        except TimeoutError:
            message = f"Workflow timed out after {self.settings.workflow_timeout} seconds"
            logger.warning(f"Workflow {compiled.workflow_id}: {message}")
            self._record_interrupted_step(run, message)
            run.fail(message)

        completed_at = _now()
        return ExecutionTrace(
            workflow_id=compiled.workflow_id,
            workflow_version=compiled.version,
            event_type=compiled.event_type,
            entity_id=entity_id,
            idempotency_key=idempotency_key,
            event_context=snapshot,
            results=tuple(run.results),
            status=TraceStatus.ERROR if run.error else TraceStatus.SUCCESS,
            error=run.error,
            dry_run=dry_run,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    async def _walk(self, compiled: CompiledWorkflow, context: dict[str, Any], run: _Run) -> None:
        node = compiled.root_node

        while not isinstance(node, Terminal):
            if isinstance(node, Branch):
                if not self._count_step(run, node.node_id):
                    return
                taken = node.on_true if self._evaluate_branch(node, context, run) else node.on_false
                node = compiled.node(taken)

            elif isinstance(node, Sequence):
                for step in node.steps:
                    if not self._count_step(run, step.node_id):
                        return
                    succeeded = await self._run_step(step, context, run)
                    if not succeeded and not step.continue_on_error:
                        run.fail(f"Action {step.node_id} ({step.action_type}) failed")
                        return
                node = compiled.node(node.on_complete)

            else:
                raise TypeError(f"Unexpected compiled node: {type(node).__name__}")

    def _count_step(self, run: _Run, node_id: str) -> bool:
        run.steps += 1
        if run.steps > self.settings.max_steps:
            run.fail(f"Step limit of {self.settings.max_steps} exceeded at node {node_id}")
            return False
        return True

    # ==================== Branches ====================

    def _evaluate_branch(self, branch: Branch, context: dict[str, Any], run: _Run) -> bool:
        started_at = _now()
        started = time.monotonic()
        actual = resolve_field(context, branch.field)
        value = None if actual is UNDEFINED else actual

        try:
            outcome = evaluate_predicate(context, branch.field, branch.operator, branch.value)
        except EvaluationError as e:
            logger.info(f"Branch {branch.node_id} evaluation error, taking false branch: {e}")
            run.results.append(NodeResult(
                node_id=branch.node_id,
                kind="branch",
                status=NodeStatus.ERROR,
                started_at=started_at,
                duration_ms=int((time.monotonic() - started) * 1000),
                output={"result": False, "value": value},
                error=str(e),
                error_type=type(e).__name__,
            ))
            return False

        run.results.append(NodeResult(
            node_id=branch.node_id,
            kind="branch",
            status=NodeStatus.SUCCESS,
            started_at=started_at,
            duration_ms=int((time.monotonic() - started) * 1000),
            output={"result": outcome, "value": value},
        ))
        return outcome

    # ==================== Actions ====================

    async def _run_step(self, step: ActionStep, context: dict[str, Any], run: _Run) -> bool:
        """Invoke one action with timeout and retries. Returns True on success."""
        started_at = _now()
        started = time.monotonic()
        run.current_step = step
        run.current_started_at = started_at
        run.current_attempt = 0

        try:
            handler = self.registry.get(step.action_type)
            policy = handler.retry_policy_for(step.config)
            timeout = handler.timeout_for(step.config)
        except (UnknownActionTypeError, ValueError) as e:
            self._record_step_error(run, step, started_at, started, 0, e)
            return False

        last_error: Optional[Exception] = None
        attempt = 0

        while attempt < policy.max_attempts:
            attempt += 1
            run.current_attempt = attempt
            signal = ActionSignal(
                timeout=timeout,
                attempt=attempt,
                dry_run=run.dry_run,
                workflow_id=run.workflow_id,
                node_id=step.node_id,
                event_type=run.event_type,
                entity_id=run.entity_id,
            )

            try:
                async with asyncio.timeout(timeout):
                    output = await handler.execute(copy.deepcopy(step.config), copy.deepcopy(context), signal)
            except TimeoutError:
                signal.cancelled.set()
                last_error = ActionTimeoutError(step.action_type, timeout)
                retryable = True
            except asyncio.CancelledError:
                signal.cancelled.set()
                raise
            except ActionError as e:
                last_error = e
                retryable = e.retryable
            except Exception as e:
                last_error = e
                retryable = is_retryable_error(e)
            else:
                output = output if isinstance(output, dict) else {"result": output}
                updates = output.get(CONTEXT_UPDATES_KEY)
                if isinstance(updates, dict):
                    merge_context(context, updates)
                run.results.append(NodeResult(
                    node_id=step.node_id,
                    kind="action",
                    status=NodeStatus.SUCCESS,
                    started_at=started_at,
                    duration_ms=int((time.monotonic() - started) * 1000),
                    attempts=attempt,
                    output=output,
                ))
                run.current_step = None
                return True

            logger.warning(
                f"Action {step.node_id} ({step.action_type}) attempt {attempt}/{policy.max_attempts} "
                f"failed: {last_error}"
            )
            if not retryable or attempt >= policy.max_attempts:
                break
            await self._sleep(policy.delay_for(attempt))

        self._record_step_error(run, step, started_at, started, attempt, last_error)
        return False

    def _record_step_error(
        self,
        run: _Run,
        step: ActionStep,
        started_at: datetime,
        started: float,
        attempts: int,
        error: Optional[Exception],
    ) -> None:
        output = None
        if isinstance(error, ActionError) and error.details:
            output = dict(error.details)
        run.results.append(NodeResult(
            node_id=step.node_id,
            kind="action",
            status=NodeStatus.ERROR,
            started_at=started_at,
            duration_ms=int((time.monotonic() - started) * 1000),
            attempts=attempts,
            output=output,
            error=str(error) if error else "Action failed",
            error_type=type(error).__name__ if error else None,
        ))
        run.current_step = None

    def _record_interrupted_step(self, run: _Run, message: str) -> None:
        """Record the step that was in flight when the workflow deadline hit."""
        step = run.current_step
        if step is None or run.current_started_at is None:
            return
        elapsed = (_now() - run.current_started_at).total_seconds()
        run.results.append(NodeResult(
            node_id=step.node_id,
            kind="action",
            status=NodeStatus.ERROR,
            started_at=run.current_started_at,
            duration_ms=max(int(elapsed * 1000), 0),
            attempts=run.current_attempt,
            error=message,
            error_type="TimeoutError",
        ))
        run.current_step = None
