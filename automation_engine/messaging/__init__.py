"""Messaging layer using Redis Streams."""

from automation_engine.messaging.consumer import EventConsumer
from automation_engine.messaging.streams import EventStream, RedisCommandSink

__all__ = ["EventConsumer", "EventStream", "RedisCommandSink"]
