"""
Runtime wiring.

Builds the object graph the API and the stream consumer share: stores,
action registry, evaluator, dispatcher and workflow service.
"""

import logging
import socket
from dataclasses import dataclass
from typing import Optional

from automation_engine.actions.http import HttpRequestAction
from automation_engine.actions.platform import CommandSink, InMemoryCommandSink
from automation_engine.actions.registry import ActionRegistry, default_registry
from automation_engine.config.settings import Settings, get_settings
from automation_engine.engine.dispatcher import TriggerDispatcher
from automation_engine.engine.evaluator import Evaluator
from automation_engine.engine.service import WorkflowService
from automation_engine.messaging.consumer import EventConsumer
from automation_engine.messaging.streams import EventStream, RedisCommandSink
from automation_engine.storage.base import ExecutionStore, IdempotencyStore, WorkflowStore
from automation_engine.storage.memory import (
    InMemoryExecutionStore,
    InMemoryIdempotencyStore,
    InMemoryWorkflowStore,
)
from automation_engine.storage.postgres.database import Database
from automation_engine.storage.postgres.stores import PostgresExecutionStore, PostgresWorkflowStore
from automation_engine.storage.redis.connection import RedisConnection
from automation_engine.storage.redis.idempotency import RedisIdempotencyStore

logger = logging.getLogger(__name__)


@dataclass
class AutomationRuntime:
    settings: Settings
    workflow_store: WorkflowStore
    execution_store: ExecutionStore
    idempotency_store: IdempotencyStore
    registry: ActionRegistry
    evaluator: Evaluator
    dispatcher: TriggerDispatcher
    service: WorkflowService
    redis: Optional[RedisConnection] = None
    database: Optional[Database] = None
    event_stream: Optional[EventStream] = None
    consumer: Optional[EventConsumer] = None

    async def health(self) -> dict[str, str]:
        """Component name -> "healthy" | "unhealthy" | "disabled"."""
        checks = {}
        for name, component in (("redis", self.redis), ("postgres", self.database)):
            if component is None:
                checks[name] = "disabled"
            else:
                checks[name] = "healthy" if await component.health_check() else "unhealthy"
        return checks

    async def close(self) -> None:
        """Stop consuming, let in-flight dispatches finish, release connections."""
        if self.consumer is not None:
            await self.consumer.stop()
        await self.dispatcher.drain()

        if self.registry.has(HttpRequestAction.action_type):
            http_action = self.registry.get(HttpRequestAction.action_type)
            await http_action.close()

        if self.database is not None:
            await self.database.close()
        if self.redis is not None:
            await self.redis.close()


def _assemble(
    settings: Settings,
    workflow_store: WorkflowStore,
    execution_store: ExecutionStore,
    idempotency_store: IdempotencyStore,
    registry: ActionRegistry,
) -> AutomationRuntime:
    evaluator = Evaluator(registry, settings.evaluator)
    dispatcher = TriggerDispatcher(
        workflow_store,
        execution_store,
        evaluator,
        idempotency_store,
        settings.dispatcher,
    )
    service = WorkflowService(workflow_store, execution_store, registry, evaluator)
    return AutomationRuntime(
        settings=settings,
        workflow_store=workflow_store,
        execution_store=execution_store,
        idempotency_store=idempotency_store,
        registry=registry,
        evaluator=evaluator,
        dispatcher=dispatcher,
        service=service,
    )


def build_in_memory_runtime(
    settings: Optional[Settings] = None,
    sink: Optional[CommandSink] = None,
    http_action: Optional[HttpRequestAction] = None,
) -> AutomationRuntime:
    """Runtime backed entirely by in-memory stores (tests, local runs)."""
    settings = settings or get_settings()
    registry = default_registry(
        sink=sink if sink is not None else InMemoryCommandSink(),
        settings=settings,
        http_action=http_action,
    )
    return _assemble(
        settings,
        InMemoryWorkflowStore(),
        InMemoryExecutionStore(),
        InMemoryIdempotencyStore(),
        registry,
    )


async def start_runtime(settings: Optional[Settings] = None) -> AutomationRuntime:
    """
    Connect to Redis and PostgreSQL and start the event stream consumer.

    Raises whatever the connection attempts raise; nothing is left open on
    failure.
    """
    settings = settings or get_settings()

    redis_connection = RedisConnection(settings.redis)
    await redis_connection.init()

    database = Database(settings.postgres)
    try:
        await database.init()
    except Exception:
        await redis_connection.close()
        raise

    client = redis_connection.client
    sink = RedisCommandSink(
        client,
        stream_key=settings.dispatcher.command_stream,
        max_length=settings.dispatcher.stream_max_length,
    )
    runtime = _assemble(
        settings,
        PostgresWorkflowStore(database),
        PostgresExecutionStore(database),
        RedisIdempotencyStore(client),
        default_registry(sink=sink, settings=settings),
    )
    runtime.redis = redis_connection
    runtime.database = database

    if settings.dispatcher.consume_event_stream:
        runtime.event_stream = EventStream(
            client,
            stream_key=settings.dispatcher.event_stream,
            consumer_group=settings.dispatcher.consumer_group,
        )
        runtime.consumer = EventConsumer(
            runtime.event_stream,
            runtime.dispatcher,
            consumer_id=f"dispatcher-{socket.gethostname()}",
            settings=settings.dispatcher,
        )
        try:
            await runtime.consumer.start()
        except Exception:
            runtime.consumer = None
            await runtime.close()
            raise

    logger.info(f"Automation runtime started ({len(runtime.registry)} action types)")
    return runtime
