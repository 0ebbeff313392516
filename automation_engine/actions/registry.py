"""Action type registry."""

import logging
from typing import Optional

from automation_engine.actions.base import ActionHandler, RetryPolicy
from automation_engine.actions.http import HttpRequestAction
from automation_engine.actions.platform import PLATFORM_ACTIONS, CommandSink, InMemoryCommandSink
from automation_engine.config import Settings, get_settings

logger = logging.getLogger(__name__)


class UnknownActionTypeError(KeyError):
    """Raised when looking up an action type that was never registered."""

    def __init__(self, action_type: str):
        self.action_type = action_type
        super().__init__(f"Unknown action type: {action_type}")


class ActionRegistry:
    """Open catalogue of action handlers keyed by action type."""

    def __init__(self) -> None:
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, handler: ActionHandler, replace: bool = False) -> None:
        action_type = handler.action_type
        if action_type in self._handlers and not replace:
            raise ValueError(f"Action type already registered: {action_type}")
        self._handlers[action_type] = handler
        logger.debug(f"Registered action handler {action_type}")

    def get(self, action_type: str) -> ActionHandler:
        try:
            return self._handlers[action_type]
        except KeyError:
            raise UnknownActionTypeError(action_type) from None

    def has(self, action_type: str) -> bool:
        return action_type in self._handlers

    def types(self) -> list[str]:
        return sorted(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, action_type: object) -> bool:
        return action_type in self._handlers


def default_registry(
    sink: Optional[CommandSink] = None,
    settings: Optional[Settings] = None,
    http_action: Optional[HttpRequestAction] = None,
) -> ActionRegistry:
    """
    Registry with the built-in catalogue.

    Args:
        sink: Where platform commands go (in-memory when omitted)
        settings: Timeouts and retry defaults
        http_action: Pre-built HTTP_REQUEST handler (e.g. with a mock transport)
    """
    settings = settings or get_settings()
    sink = sink if sink is not None else InMemoryCommandSink()
    retry_policy = RetryPolicy.from_settings(settings.retry)

    registry = ActionRegistry()
    for handler_cls in PLATFORM_ACTIONS:
        registry.register(handler_cls(
            sink,
            timeout_ms=settings.evaluator.default_action_timeout_ms,
            retry_policy=retry_policy,
        ))

    registry.register(http_action or HttpRequestAction(
        settings=settings.http_action,
        retry_policy=retry_policy,
    ))
    return registry
