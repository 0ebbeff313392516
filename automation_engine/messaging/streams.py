"""
Redis Streams used by the engine.

- Event ingress: platform services XADD events; dispatchers read them
  through a consumer group.
- Command egress: platform actions XADD commands for the services that
  carry them out.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as redis
from pydantic import ValidationError

from automation_engine.actions.platform import PlatformCommand
from automation_engine.core.models import EventEnvelope

logger = logging.getLogger(__name__)


class EventStream:
    """
    Event ingress stream with a consumer group and a dead letter stream.

    Each message carries one field, `event`, holding the JSON envelope.
    """

    DLQ_SUFFIX = ":dlq"

    def __init__(
        self,
        client: redis.Redis,
        stream_key: str = "automation:stream:events",
        consumer_group: str = "automation-dispatchers",
    ):
        self.client = client
        self.stream_key = stream_key
        self.consumer_group = consumer_group
        self.dlq_key = f"{stream_key}{self.DLQ_SUFFIX}"

    async def init(self) -> None:
        """Initialize the stream and consumer group."""
        try:
            # Create consumer group (creates stream if not exists)
            await self.client.xgroup_create(
                self.stream_key,
                self.consumer_group,
                id="0",
                mkstream=True,
            )
        except redis.ResponseError as e:
            # Group already exists
            if "BUSYGROUP" not in str(e):
                raise

    async def publish(self, event: EventEnvelope) -> str:
        """Publish an event. Returns the stream message ID."""
        return await self.client.xadd(
            self.stream_key,
            {"event": event.model_dump_json(by_alias=True)},
        )

    async def consume(
        self,
        consumer_id: str,
        count: int = 1,
        block_ms: int = 5000,
    ) -> list[tuple[str, dict[str, Any]]]:
        """
        Read new messages for this consumer (XREADGROUP).

        Returns list of (message_id, raw_fields) tuples.
        """
        try:
            messages = await self.client.xreadgroup(
                groupname=self.consumer_group,
                consumername=consumer_id,
                streams={self.stream_key: ">"},
                count=count,
                block=block_ms,
            )
        except redis.ResponseError as e:
            if "NOGROUP" in str(e):
                await self.init()
                return []
            raise

        result = []
        for _, stream_messages in messages or []:
            for msg_id, msg_data in stream_messages:
                result.append((msg_id, msg_data))
        return result

    @staticmethod
    def parse(msg_data: dict[str, Any]) -> EventEnvelope:
        """
        Decode a message into an EventEnvelope.

        Raises:
            ValueError: If the message is not a valid event
        """
        raw = msg_data.get("event")
        if raw is None:
            raise ValueError("Message has no 'event' field")
        try:
            return EventEnvelope.model_validate_json(raw)
        except ValidationError as e:
            raise ValueError(f"Invalid event: {e}") from e

    async def acknowledge(self, message_id: str) -> None:
        """Acknowledge successful message processing."""
        await self.client.xack(self.stream_key, self.consumer_group, message_id)

    async def reject(self, message_id: str, msg_data: dict[str, Any], error: str) -> None:
        """Acknowledge and move a message to the dead letter stream."""
        await self.client.xack(self.stream_key, self.consumer_group, message_id)
        await self.client.xadd(self.dlq_key, {
            **msg_data,
            "original_message_id": message_id,
            "error": error,
            "rejected_at": datetime.now(timezone.utc).isoformat(),
        })

    async def get_pending_count(self) -> int:
        """Get count of pending (unacknowledged) messages."""
        try:
            info = await self.client.xpending(self.stream_key, self.consumer_group)
            return info["pending"] if info else 0
        except redis.ResponseError:
            return 0

    async def claim_stale_messages(
        self,
        consumer_id: str,
        min_idle_ms: int = 60000,
        count: int = 10,
    ) -> list[tuple[str, dict[str, Any]]]:
        """Claim messages left pending by a dead dispatcher (XAUTOCLAIM)."""
        try:
            result = await self.client.xautoclaim(
                self.stream_key,
                self.consumer_group,
                consumer_id,
                min_idle_time=min_idle_ms,
                count=count,
            )
        except redis.ResponseError:
            return []

        if not result or len(result) < 2:
            return []
        return [(msg_id, msg_data) for msg_id, msg_data in result[1] if msg_data]


class RedisCommandSink:
    """CommandSink that appends platform commands to a capped Redis Stream."""

    def __init__(
        self,
        client: redis.Redis,
        stream_key: str = "automation:stream:commands",
        max_length: Optional[int] = 10000,
    ):
        self.client = client
        self.stream_key = stream_key
        self.max_length = max_length

    async def publish(self, command: PlatformCommand) -> str:
        data = {
            "id": str(command.id),
            "action_type": command.action_type,
            "event_type": command.event_type or "",
            "entity_id": command.entity_id or "",
            "workflow_id": str(command.workflow_id) if command.workflow_id else "",
            "node_id": command.node_id or "",
            "config": json.dumps(command.config, default=str),
            "issued_at": command.issued_at.isoformat(),
        }
        try:
            return await self.client.xadd(
                self.stream_key,
                data,
                maxlen=self.max_length,
                approximate=True,
            )
        except redis.RedisError as e:
            # Surface as a retryable connection failure to the action handler
            raise ConnectionError(f"Could not publish command {command.id}: {e}") from e
