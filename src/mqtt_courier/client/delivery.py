"""
Pending-Message Delivery Engine.

This module contains the `DeliveryQueue`, which guarantees that every
publish request is either delivered or reported as permanently failed,
even when it was submitted while the broker was unreachable.

- Messages published while disconnected are queued and the call returns
  at once; "accepted for delivery" is not "delivered".
- A failed direct send is queued for retry AND reported to the caller.
- Every flush takes the whole live queue, so messages arriving during a
  pass wait for the next one.
- Failed attempts are requeued after `retry_interval * retry_count`
  seconds until `max_retries` is exceeded, then the message is dropped
  and its outcome fails with RetryExhaustedError.

Everything runs on one event loop; the queue is never touched from another
thread, so no locking is needed.
"""
import asyncio
import logging
from typing import Coroutine, List, Optional, Set, Tuple

from mqtt_courier.client.config import DeliveryConfig
from mqtt_courier.client.connection import ConnectionManager
from mqtt_courier.client.errors import NotInitializedError, NotReadyError, RetryExhaustedError, TransportSendError
from mqtt_courier.client.models import GrantedSubscription, PayloadLike, PendingMessage, PublishOptions, encode_payload
from mqtt_courier.client.transport import Topics, Transport

logger = logging.getLogger(__name__)


class DeliveryQueue:
    connection: ConnectionManager
    config: DeliveryConfig
    _pending: List[PendingMessage]
    _backoff: Set[PendingMessage]
    _tasks: Set[asyncio.Task]

    def __init__(self, connection: ConnectionManager, config: Optional[DeliveryConfig] = None):
        self.connection = connection
        self.config = config or DeliveryConfig()
        self._pending = []
        self._backoff = set()  # messages sleeping before their next attempt
        self._tasks = set()

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> Tuple[PendingMessage, ...]:
        return tuple(self._pending)

    @property
    def backoff_count(self) -> int:
        return len(self._backoff)

    async def publish(self, topic: str, payload: PayloadLike, options: Optional[PublishOptions] = None) -> PendingMessage:
        """
        Publishes now if the connection is ready, otherwise queues.

        Returns the PendingMessage; its `outcome` future tells whether the
        broker eventually accepted it. Raises NotInitializedError without a
        transport, and TransportSendError when a direct send fails (the
        message is queued for retry in that case too).
        """
        transport = self.connection.get_client()
        if transport is None:
            error = NotInitializedError()
            logger.error(f"Publish failed: {error}")
            raise error

        message = PendingMessage(topic=topic, payload=encode_payload(payload), options=options or PublishOptions())

        if not self.connection.is_ready():
            logger.info(f"MQTT not connected, queuing message for topic: {topic}")
            self._pending.append(message)
            return message

        try:
            await transport.publish(message.topic, message.payload, message.options)
        except Exception as e:
            logger.error(f"Failed to publish to {topic}: {e}")
            message.last_error = e
            self._pending.append(message)
            raise TransportSendError(topic, e, pending=message) from e

        logger.info(f"Published to {topic}")
        message.resolve()
        return message

    async def subscribe(self, topics: Topics, options: Optional[PublishOptions] = None) -> List[GrantedSubscription]:
        """
        Subscribes right away or fails; subscriptions are never queued.
        Only the QoS of `options` is used.
        """
        transport = self.connection.get_client()
        if transport is None:
            raise NotInitializedError()
        if not self.connection.is_ready():
            raise NotReadyError()

        try:
            granted = await transport.subscribe(topics, options or PublishOptions())
        except Exception as e:
            logger.error(f"Subscribe failed: {e}")
            raise

        logger.info(f"Subscribed to: {', '.join(g.topic for g in granted)}")
        return granted

    def schedule_flush(self) -> asyncio.Task:
        """Runs flush() in the background; used by lifecycle listeners."""
        return self._spawn(self.flush())

    async def flush(self):
        """
        Attempts every queued message once.
        """
        if not self._pending:
            return
        # Re-check: a scheduled flush can start after the link dropped again
        if not self.connection.is_ready():
            return

        transport = self.connection.get_client()
        # Take the batch before the first await so nothing is sent twice in one pass
        batch, self._pending = self._pending, []
        logger.info(f"Flushing {len(batch)} pending MQTT messages...")

        await asyncio.gather(*(self._deliver(transport, message) for message in batch))

    async def _deliver(self, transport: Transport, message: PendingMessage):
        try:
            await transport.publish(message.topic, message.payload, message.options)
        except Exception as e:
            message.last_error = e
            message.retry_count += 1
            if message.retry_count <= self.config.max_retries:
                logger.warning(f"Publish to {message.topic} failed, retry {message.retry_count}/{self.config.max_retries}")
                self._schedule_requeue(message)
            else:
                logger.error(f"Dropping message to {message.topic} after {self.config.max_retries} retries")
                message.reject(RetryExhaustedError(message, self.config.max_retries))
            return

        logger.info(f"Pending message delivered to {message.topic}")
        message.resolve()

    def _schedule_requeue(self, message: PendingMessage):
        self._backoff.add(message)
        self._spawn(self._requeue_after(message, self.config.backoff(message.retry_count)))

    async def _requeue_after(self, message: PendingMessage, delay: float):
        await asyncio.sleep(delay)
        self._backoff.discard(message)
        self._pending.append(message)
        logger.debug(f"Requeued message: {message.describe()}")

        # Drain right away instead of waiting for the next connect event
        if self.connection.is_ready():
            await self.flush()

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Delivery task failed: {task.exception()}")
