"""
Pytest fixtures and configuration for tests.
"""

import asyncio
from typing import Any, Callable, Optional

import pytest

from automation_engine.actions.base import ActionHandler, ActionSignal, RetryPolicy
from automation_engine.actions.platform import InMemoryCommandSink
from automation_engine.actions.registry import ActionRegistry, default_registry
from automation_engine.config.settings import (
    DispatcherSettings,
    Environment,
    EvaluatorSettings,
    RetrySettings,
    Settings,
)
from automation_engine.core.errors import ActionError
from automation_engine.core.models import GraphModel
from automation_engine.engine.evaluator import Evaluator
from automation_engine.engine.runtime import AutomationRuntime, build_in_memory_runtime


# ==================== Fake Action Handlers ====================

class RecordingAction(ActionHandler):
    """Succeeds and remembers every invocation."""

    action_type = "RECORD"

    def __init__(self, output: Optional[dict[str, Any]] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.output = output or {}
        self.calls: list[tuple[dict[str, Any], dict[str, Any], ActionSignal]] = []

    async def execute(self, config, context, signal):
        self.calls.append((config, context, signal))
        return {"recorded": True, **self.output, **config.get("output", {})}


class FlakyAction(ActionHandler):
    """Fails `failures` times, then succeeds."""

    action_type = "FLAKY"

    def __init__(self, failures: int = 1, retryable: bool = True, **kwargs: Any):
        super().__init__(**kwargs)
        self.failures = failures
        self.retryable = retryable
        self.attempts = 0

    async def execute(self, config, context, signal):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ActionError(f"Upstream unavailable (attempt {signal.attempt})", retryable=self.retryable)
        return {"attempt": signal.attempt}


class SlowAction(ActionHandler):
    """Sleeps longer than any sane timeout."""

    action_type = "SLOW"

    def __init__(self, delay: float = 5.0, **kwargs: Any):
        super().__init__(**kwargs)
        self.delay = delay
        self.started = 0
        self.signals: list[ActionSignal] = []

    async def execute(self, config, context, signal):
        self.started += 1
        self.signals.append(signal)
        await asyncio.sleep(self.delay)
        return {}


class BrokenAction(ActionHandler):
    """Raises a programming error (not retryable)."""

    action_type = "BROKEN"

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        self.attempts = 0

    async def execute(self, config, context, signal):
        self.attempts += 1
        raise KeyError("missing")


# ==================== Settings ====================

@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        environment=Environment.TEST,
        debug=True,
        log_level="DEBUG",
        evaluator=EvaluatorSettings(default_action_timeout_ms=1000, workflow_timeout=5.0, max_steps=100),
        retry=RetrySettings(max_attempts=1, initial_delay=0.0, max_delay=0.0, jitter=False),
        dispatcher=DispatcherSettings(concurrency=4, consume_event_stream=False, graceful_shutdown_timeout=5.0),
    )


@pytest.fixture
def command_sink() -> InMemoryCommandSink:
    return InMemoryCommandSink()


@pytest.fixture
def registry(command_sink, test_settings) -> ActionRegistry:
    """Built-in catalogue plus the fake handlers."""
    registry = default_registry(sink=command_sink, settings=test_settings)
    registry.register(RecordingAction())
    return registry


@pytest.fixture
def recorder(registry) -> RecordingAction:
    return registry.get("RECORD")


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def evaluator(registry, test_settings, sleeps) -> Evaluator:
    """Evaluator whose retry sleeps are recorded instead of awaited."""

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return Evaluator(registry, test_settings.evaluator, sleep=fake_sleep)


@pytest.fixture
def runtime(test_settings, command_sink) -> AutomationRuntime:
    runtime = build_in_memory_runtime(settings=test_settings, sink=command_sink)
    runtime.registry.register(RecordingAction())
    return runtime


@pytest.fixture
def fake_actions() -> dict[str, Callable[..., ActionHandler]]:
    return {
        "recording": RecordingAction,
        "flaky": FlakyAction,
        "slow": SlowAction,
        "broken": BrokenAction,
    }


@pytest.fixture
def no_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=1)


# ==================== Graph Documents ====================

REQUIRE_APPROVAL_CONFIG = {
    "title": "Large order needs approval",
    "requiredApprovers": [{"role": "COMPLIANCE", "minApprovals": 1}],
}

AUTO_APPROVE_CONFIG = {"approvalReason": "Small order", "reasonCategory": "SMALL_AMOUNT"}


def make_trigger(node_id: str = "trigger", event_type: str = "ORDER_CREATED", **payload: Any) -> dict:
    return {"id": node_id, "kind": "trigger", "payload": {"eventType": event_type, **payload}}


def make_condition(node_id: str, field: str, operator: str, value: Any) -> dict:
    return {"id": node_id, "kind": "condition", "payload": {"field": field, "operator": operator, "value": value}}


def make_action(node_id: str, action_type: str, config: Optional[dict] = None, **payload: Any) -> dict:
    return {
        "id": node_id,
        "kind": "action",
        "payload": {"actionType": action_type, "config": config or {}, **payload},
    }


def make_edge(source: str, target: str, handle: Optional[str] = None) -> dict:
    edge = {"id": f"{source}-{target}", "sourceNodeId": source, "targetNodeId": target}
    if handle is not None:
        edge["sourceHandle"] = handle
    return edge


@pytest.fixture
def graph_parts() -> dict[str, Callable]:
    """Builders for editor graph documents."""
    return {
        "trigger": make_trigger,
        "condition": make_condition,
        "action": make_action,
        "edge": make_edge,
    }


@pytest.fixture
def approval_graph_json() -> dict:
    """ORDER_CREATED -> amount > 1000 -> REQUIRE_APPROVAL / AUTO_APPROVE."""
    return {
        "nodes": [
            make_trigger("trigger"),
            make_condition("big_order", "amount", ">", 1000),
            make_action("approve", "REQUIRE_APPROVAL", REQUIRE_APPROVAL_CONFIG),
            make_action("auto", "AUTO_APPROVE", AUTO_APPROVE_CONFIG),
        ],
        "edges": [
            make_edge("trigger", "big_order"),
            make_edge("big_order", "approve", "true"),
            make_edge("big_order", "auto", "false"),
        ],
    }


@pytest.fixture
def approval_graph(approval_graph_json) -> GraphModel:
    return GraphModel.model_validate(approval_graph_json)


@pytest.fixture
def kyc_graph_json() -> dict:
    """KYC_SUBMITTED -> user.kycLevel in [L1, L2] -> FLAG_FOR_REVIEW / RECORD."""
    return {
        "nodes": [
            make_trigger("trigger", "KYC_SUBMITTED"),
            make_condition("low_level", "user.kycLevel", "in", ["L1", "L2"]),
            make_action("flag", "FLAG_FOR_REVIEW", {"flagType": "DOCUMENT_VERIFICATION", "reason": "Low KYC level"}),
            make_action("noop", "RECORD"),
        ],
        "edges": [
            make_edge("trigger", "low_level"),
            make_edge("low_level", "flag", "true"),
            make_edge("low_level", "noop", "false"),
        ],
    }


@pytest.fixture
def linear_graph_json() -> dict:
    """PAYOUT_REQUESTED -> RECORD(first) -> RECORD(second) -> RECORD(third)."""
    return {
        "nodes": [
            make_trigger("trigger", "PAYOUT_REQUESTED"),
            make_action("first", "RECORD", {"output": {"step": 1}}),
            make_action("second", "RECORD", {"output": {"step": 2}}),
            make_action("third", "RECORD", {"output": {"step": 3}}),
        ],
        "edges": [
            make_edge("trigger", "first"),
            make_edge("first", "second"),
            make_edge("second", "third"),
        ],
    }
