"""
Unit tests for the action registry and the built-in platform actions.
"""

from uuid import uuid4

import pytest

from automation_engine.actions.base import ActionSignal, RetryPolicy, is_retryable_error
from automation_engine.actions.platform import (
    PLATFORM_ACTIONS,
    FreezeOrderAction,
    InMemoryCommandSink,
    PlatformCommand,
)
from automation_engine.actions.registry import ActionRegistry, UnknownActionTypeError, default_registry
from automation_engine.core.errors import ActionError

REQUIRE_APPROVAL_CONFIG = {
    "title": "Large order needs approval",
    "requiredApprovers": [{"role": "COMPLIANCE", "minApprovals": 1}],
}


FREEZE_CONFIG = {
    "reason": "Order {{ orderId }} over {{ amount }} {{ currency }}",
    "reasonCategory": "SUSPICIOUS_ACTIVITY",
    "freezeDuration": "48H",
}


def _signal(**kwargs) -> ActionSignal:
    defaults = {"timeout": 1.0, "event_type": "ORDER_CREATED", "entity_id": "o-1", "node_id": "freeze"}
    defaults.update(kwargs)
    return ActionSignal(**defaults)


class TestActionRegistry:
    """Tests for the action catalogue."""

    def test_default_catalogue(self, test_settings):
        registry = default_registry(settings=test_settings)

        assert registry.types() == sorted(
            [cls.action_type for cls in PLATFORM_ACTIONS] + ["HTTP_REQUEST"]
        )
        assert len(registry) == 9
        assert "FREEZE_ORDER" in registry

    def test_unknown_type(self):
        with pytest.raises(UnknownActionTypeError) as exc_info:
            ActionRegistry().get("LAUNCH_ROCKET")

        assert exc_info.value.action_type == "LAUNCH_ROCKET"

    def test_duplicate_registration(self, fake_actions):
        recording = fake_actions["recording"]
        registry = ActionRegistry()
        registry.register(recording())

        with pytest.raises(ValueError):
            registry.register(recording())

        replacement = recording(output={"v": 2})
        registry.register(replacement, replace=True)
        assert registry.get("RECORD") is replacement

    def test_settings_flow_into_handlers(self, test_settings):
        handler = default_registry(settings=test_settings).get("FREEZE_ORDER")

        assert handler.timeout_ms == 1000
        assert handler.retry_policy.max_attempts == 1


class TestPlatformActions:
    """Tests for config validation and command publishing."""

    def test_validate_config_ok(self, registry):
        assert registry.get("FREEZE_ORDER").validate_config(FREEZE_CONFIG) == []
        assert registry.get("REQUIRE_APPROVAL").validate_config(REQUIRE_APPROVAL_CONFIG) == []
        assert registry.get("AUTO_APPROVE").validate_config({}) == []

    def test_validate_config_problems(self, registry):
        """Test problems name the offending camelCase field."""
        problems = registry.get("FREEZE_ORDER").validate_config({"reason": "x", "freezeDuration": "1Y"})

        assert any(p.startswith("reasonCategory") for p in problems)
        assert any(p.startswith("freezeDuration") for p in problems)

    def test_editor_metadata_ignored(self, registry):
        config = {**FREEZE_CONFIG, "continueOnError": True, "uiCollapsed": False}

        assert registry.get("FREEZE_ORDER").validate_config(config) == []

    @pytest.mark.asyncio
    async def test_publishes_rendered_command(self, registry, command_sink):
        """Test templates are resolved before the command is published."""
        workflow_id = uuid4()
        handler = registry.get("FREEZE_ORDER")
        context = {"orderId": "o-1", "amount": 5000, "currency": "EUR"}

        output = await handler.execute(FREEZE_CONFIG, context, _signal(workflow_id=workflow_id))

        command = command_sink.commands[0]
        assert command.action_type == "FREEZE_ORDER"
        assert command.entity_id == "o-1"
        assert command.workflow_id == workflow_id
        assert command.node_id == "freeze"
        assert command.config["reason"] == "Order o-1 over 5000 EUR"
        assert command.config["freezeDuration"] == "48H"
        assert command.config["notifyCustomer"] is True
        assert output["commandId"] == str(command.id)
        assert output["deliveryId"] == str(command.id)

    @pytest.mark.asyncio
    async def test_dry_run_publishes_nothing(self, registry, command_sink):
        handler = registry.get("FREEZE_ORDER")

        output = await handler.execute(FREEZE_CONFIG, {"orderId": "o-1"}, _signal(dry_run=True))

        assert output["dryRun"] is True
        assert output["command"]["config"]["reason"] == "Order o-1 over  "
        assert command_sink.commands == []

    @pytest.mark.asyncio
    async def test_invalid_config_at_runtime(self, registry):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            await registry.get("SEND_NOTIFICATION").execute({}, {}, _signal())

    @pytest.mark.asyncio
    async def test_sink_failure_is_retryable(self):
        class DownSink:
            async def publish(self, command: PlatformCommand) -> str:
                raise ConnectionError("stream unavailable")

        handler = FreezeOrderAction(DownSink())

        with pytest.raises(ActionError) as exc_info:
            await handler.execute(FREEZE_CONFIG, {"orderId": "o-1"}, _signal())

        assert exc_info.value.retryable is True

    def test_sink_helpers(self):
        sink = InMemoryCommandSink()
        sink.commands.append(PlatformCommand(action_type="AUTO_APPROVE"))
        sink.commands.append(PlatformCommand(action_type="FREEZE_ORDER"))

        assert len(sink.of_type("FREEZE_ORDER")) == 1
        sink.clear()
        assert sink.commands == []


class TestRetryPolicy:
    """Tests for backoff computation."""

    def test_exponential_delays(self):
        policy = RetryPolicy(max_attempts=5, initial_delay=1.0, max_delay=5.0, backoff_factor=2.0, jitter=False)

        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

    def test_jitter_stays_in_range(self):
        policy = RetryPolicy(initial_delay=2.0, max_delay=2.0, jitter=True)

        for _ in range(20):
            assert 1.0 <= policy.delay_for(1) <= 2.0

    def test_max_delay_below_initial_rejected(self):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            RetryPolicy(initial_delay=5.0, max_delay=1.0)

    def test_programming_errors_not_retryable(self):
        assert not is_retryable_error(KeyError("x"))
        assert not is_retryable_error(TypeError("x"))
        assert is_retryable_error(ConnectionError("x"))
