"""Action catalogue: handler interface, built-in actions and the registry."""

from automation_engine.actions.base import ActionHandler, ActionSignal, RetryPolicy
from automation_engine.actions.http import HttpRequestAction
from automation_engine.actions.platform import CommandSink, InMemoryCommandSink, PlatformCommand
from automation_engine.actions.registry import ActionRegistry, default_registry

__all__ = [
    "ActionHandler",
    "ActionSignal",
    "RetryPolicy",
    "HttpRequestAction",
    "CommandSink",
    "InMemoryCommandSink",
    "PlatformCommand",
    "ActionRegistry",
    "default_registry",
]
