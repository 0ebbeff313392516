"""
Event consumer for the ingress stream.

Reads platform events through the consumer group and hands each one to the
TriggerDispatcher. A semaphore bounds the number of events dispatched at
once; the consume loop blocks on it, so no more messages are pulled than
can be handled (backpressure).

A message is acknowledged only after its dispatch has recorded traces, so
an event left pending by a crashed process is reclaimed by a peer and
re-dispatched; idempotency keys stop workflows from running twice.
"""

import asyncio
import logging
from typing import Any, Optional

import redis.exceptions

from automation_engine.config.settings import DispatcherSettings
from automation_engine.engine.dispatcher import TriggerDispatcher
from automation_engine.messaging.streams import EventStream

logger = logging.getLogger(__name__)


class EventConsumer:
    """Consumes events from an EventStream and dispatches them."""

    def __init__(
        self,
        stream: EventStream,
        dispatcher: TriggerDispatcher,
        consumer_id: str,
        settings: Optional[DispatcherSettings] = None,
    ):
        self.stream = stream
        self.dispatcher = dispatcher
        self.consumer_id = consumer_id
        self.settings = settings or DispatcherSettings()

        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._processing_tasks: set[asyncio.Task] = set()
        self._semaphore: Optional[asyncio.Semaphore] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start consuming messages."""
        if self._running:
            return

        await self.stream.init()
        self._running = True
        self._semaphore = asyncio.Semaphore(self.settings.concurrency)

        logger.info(
            f"Starting event consumer {self.consumer_id} on {self.stream.stream_key} "
            f"(concurrency: {self.settings.concurrency})"
        )

        self._tasks.append(asyncio.create_task(self._consume_loop()))
        self._tasks.append(asyncio.create_task(self._claim_stale_messages()))

    async def stop(self) -> None:
        """Stop consuming, then wait for in-flight events."""
        if not self._running:
            return

        self._running = False
        logger.info(f"Stopping event consumer {self.consumer_id}")

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self._processing_tasks:
            logger.info(f"Waiting for {len(self._processing_tasks)} in-flight events to complete")
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._processing_tasks, return_exceptions=True),
                    timeout=self.settings.graceful_shutdown_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Graceful shutdown timed out, cancelling remaining events")
                for task in self._processing_tasks:
                    task.cancel()
                await asyncio.gather(*self._processing_tasks, return_exceptions=True)

        self._processing_tasks.clear()

    def _spawn(self, msg_id: str, msg_data: dict[str, Any]) -> None:
        # Caller holds a semaphore slot
        task = asyncio.create_task(self._process_message_with_semaphore(msg_id, msg_data))
        self._processing_tasks.add(task)
        task.add_done_callback(self._processing_tasks.discard)

    async def _consume_loop(self) -> None:
        while self._running:
            acquired = False
            try:
                await self._semaphore.acquire()
                acquired = True

                if not self._running:
                    break

                messages = await self.stream.consume(
                    consumer_id=self.consumer_id,
                    count=1,
                    block_ms=self.settings.stream_block_ms,
                )
                if not messages:
                    continue

                for msg_id, msg_data in messages:
                    self._spawn(msg_id, msg_data)
                    acquired = False

            except asyncio.CancelledError:
                logger.debug("Event consume loop cancelled")
                break
            except redis.exceptions.TimeoutError as e:
                logger.debug(f"Redis timeout on {self.stream.stream_key}, retrying: {e}")
            except redis.exceptions.ConnectionError as e:
                logger.warning(f"Redis connection error on {self.stream.stream_key}: {e}")
                await asyncio.sleep(1)
            except Exception as e:
                logger.error(f"Error in event consume loop: {e}", exc_info=True)
                await asyncio.sleep(1)
            finally:
                if acquired:
                    self._semaphore.release()

    async def _process_message_with_semaphore(self, msg_id: str, msg_data: dict[str, Any]) -> None:
        try:
            await self.process_message(msg_id, msg_data)
        finally:
            self._semaphore.release()

    async def process_message(self, msg_id: str, msg_data: dict[str, Any]) -> None:
        """Parse, dispatch and acknowledge one message."""
        try:
            event = self.stream.parse(msg_data)
        except ValueError as e:
            logger.warning(f"Rejecting malformed event message {msg_id}: {e}")
            await self.stream.reject(msg_id, msg_data, str(e))
            return

        try:
            traces = await self.dispatcher.dispatch(event)
        except Exception as e:
            # Left pending; the stale claimer retries it later
            logger.error(f"Error dispatching event message {msg_id}: {e}", exc_info=True)
            return

        await self.stream.acknowledge(msg_id)
        logger.debug(f"Processed event message {msg_id} ({len(traces)} trace(s))")

    async def _claim_stale_messages(self) -> None:
        """Periodically take over events left pending by dead dispatchers."""
        while self._running:
            try:
                claimed = await self.stream.claim_stale_messages(
                    consumer_id=self.consumer_id,
                    min_idle_ms=self.settings.stale_min_idle_ms,
                    count=5,
                )
                for msg_id, msg_data in claimed:
                    logger.info(f"Claimed stale event message: {msg_id} (idle > {self.settings.stale_min_idle_ms}ms)")
                    await self._semaphore.acquire()
                    self._spawn(msg_id, msg_data)

                await asyncio.sleep(self.settings.stale_claim_interval)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error claiming stale event messages: {e}")
                await asyncio.sleep(5)
