"""
Action handler interface.

Every action type exposes a pure config check, an async execute, a
per-invocation timeout and a retry policy. Handlers never see the graph;
they get the step config, a copy of the working context and an ActionSignal.
"""

import asyncio
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError, model_validator

from automation_engine.config.settings import RetrySettings


class RetryPolicy(BaseModel):
    """Configuration for retry behavior of one action step."""

    max_attempts: int = Field(default=1, ge=1, le=100, description="Total attempts, first included")
    initial_delay: float = Field(default=1.0, ge=0.0, description="Initial delay in seconds")
    max_delay: float = Field(default=30.0, ge=0.0, description="Maximum delay in seconds")
    backoff_factor: float = Field(default=2.0, ge=1.0, le=10.0, description="Backoff base")
    jitter: bool = Field(default=True, description="Add randomized jitter")

    @model_validator(mode="after")
    def validate_delays(self) -> "RetryPolicy":
        """Ensure max_delay is greater than initial_delay."""
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        return self

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay=settings.initial_delay,
            max_delay=max(settings.max_delay, settings.initial_delay),
            backoff_factor=settings.backoff_factor,
            jitter=settings.jitter,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt number `attempt` (1-based)."""
        delay = min(self.initial_delay * (self.backoff_factor ** max(attempt - 1, 0)), self.max_delay)
        if self.jitter and delay > 0:
            delay = random.uniform(delay / 2, delay)
        return delay


@dataclass
class ActionSignal:
    """
    Invocation metadata handed to a handler alongside the config.

    `cancelled` is set when the evaluator abandons the invocation (step
    timeout, workflow deadline or shutdown), so handlers that hand work to
    background tasks can stop it.
    """

    timeout: float
    attempt: int = 1
    dry_run: bool = False
    workflow_id: Optional[UUID] = None
    node_id: Optional[str] = None
    event_type: Optional[str] = None
    entity_id: Optional[str] = None
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)


class ActionHandler(ABC):
    """
    Base class for action handlers.

    Subclasses set `action_type` and implement `execute`. `validate_config`
    must be pure: it is called on every save.
    """

    action_type: ClassVar[str]
    description: ClassVar[str] = ""

    def __init__(
        self,
        timeout_ms: int = 10_000,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.timeout_ms = timeout_ms
        self.retry_policy = retry_policy or RetryPolicy()

    def validate_config(self, config: dict[str, Any]) -> list[str]:
        """Return a list of problems with the config (empty when valid)."""
        return []

    @abstractmethod
    async def execute(
        self,
        config: dict[str, Any],
        context: dict[str, Any],
        signal: ActionSignal,
    ) -> dict[str, Any]:
        """
        Perform the action.

        Returns:
            Output mapping recorded on the NodeResult. A `contextUpdates`
            mapping in it is merged into the working context.

        Raises:
            ActionError: On failure (retryable or not)
        """

    def retry_policy_for(self, config: dict[str, Any]) -> RetryPolicy:
        """Retry policy for one step; handlers may let the config override it."""
        return self.retry_policy

    def timeout_for(self, config: dict[str, Any]) -> float:
        """Per-attempt timeout in seconds for one step."""
        return self.timeout_ms / 1000


class SchemaActionHandler(ActionHandler):
    """Handler whose config is described by a Pydantic model."""

    config_model: ClassVar[type[BaseModel]]

    def validate_config(self, config: dict[str, Any]) -> list[str]:
        try:
            self.config_model.model_validate(config)
        except ValidationError as e:
            return [_format_error(error) for error in e.errors()]
        return []

    def parse_config(self, config: dict[str, Any]) -> BaseModel:
        return self.config_model.model_validate(config)


def _format_error(error: dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ())) or "config"
    return f"{location}: {error.get('msg', 'invalid value')}"


def is_retryable_error(error: Exception) -> bool:
    """Determine if a non-ActionError exception raised by a handler is retryable."""
    non_retryable = (
        ValueError,
        TypeError,
        KeyError,
        AttributeError,
    )
    return not isinstance(error, non_retryable)
