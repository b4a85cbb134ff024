"""
The composed client the rest of an application talks to.

`CourierClient` wires a ConnectionManager and a DeliveryQueue together:
every `connected` notification schedules exactly one flush of the queue.
There is no module-level instance; the application constructs one at
startup and must `await close()` at shutdown.
"""
import logging
from typing import Any, List, Mapping, Optional

from mqtt_courier.client.config import DeliveryConfig
from mqtt_courier.client.connection import ConnectionManager, LifecycleListener
from mqtt_courier.client.delivery import DeliveryQueue
from mqtt_courier.client.models import ConnectionState, GrantedSubscription, LifecycleEvent, PayloadLike, PendingMessage, PublishOptions
from mqtt_courier.client.transport import MessageHandler, Topics, Transport, TransportFactory, aiomqtt_transport_factory

logger = logging.getLogger(__name__)


class CourierClient:
    connection: ConnectionManager
    queue: DeliveryQueue

    def __init__(
        self,
        delivery_config: Optional[DeliveryConfig] = None,
        transport_factory: TransportFactory = aiomqtt_transport_factory,
    ):
        self.connection = ConnectionManager(transport_factory=transport_factory)
        self.queue = DeliveryQueue(self.connection, delivery_config)
        self.connection.add_listener(self._on_lifecycle_event)

    def _on_lifecycle_event(self, event: LifecycleEvent, error: Optional[BaseException] = None):
        if event == LifecycleEvent.CONNECTED:
            self.queue.schedule_flush()

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    def initialize(self, broker_url: str, options: Optional[Mapping[str, Any]] = None) -> Transport:
        return self.connection.initialize(broker_url, options)

    def get_client(self) -> Optional[Transport]:
        return self.connection.get_client()

    def is_ready(self) -> bool:
        return self.connection.is_ready()

    async def publish(self, topic: str, payload: PayloadLike, options: Optional[PublishOptions] = None) -> PendingMessage:
        return await self.queue.publish(topic, payload, options)

    async def subscribe(self, topics: Topics, options: Optional[PublishOptions] = None) -> List[GrantedSubscription]:
        return await self.queue.subscribe(topics, options)

    async def close(self):
        """
        Ends the connection. Queued messages are not delivered or failed;
        they stay in the queue unresolved.
        """
        if len(self.queue) or self.queue.backoff_count:
            logger.warning(f"Closing with {len(self.queue) + self.queue.backoff_count} undelivered messages")
        await self.connection.close()

    def add_listener(self, listener: LifecycleListener):
        self.connection.add_listener(listener)

    def remove_listener(self, listener: LifecycleListener):
        self.connection.remove_listener(listener)

    def add_message_handler(self, handler: MessageHandler):
        self.connection.add_message_handler(handler)
