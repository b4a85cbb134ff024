"""
Client-side core of mqtt_courier.

A broker connection that stays usable while disconnected: the
ConnectionManager tracks the link, the DeliveryQueue holds and retries
outbound messages, and CourierClient puts the two together.
"""
from mqtt_courier.client.config import ConnectionConfig, DeliveryConfig
from mqtt_courier.client.connection import ConnectionManager
from mqtt_courier.client.delivery import DeliveryQueue
from mqtt_courier.client.errors import (
    CourierError,
    NotInitializedError,
    NotReadyError,
    RetryExhaustedError,
    TransportSendError,
)
from mqtt_courier.client.models import (
    ConnectionState,
    GrantedSubscription,
    LifecycleEvent,
    PendingMessage,
    PublishOptions,
    TransportEvent,
)
from mqtt_courier.client.service import CourierClient
from mqtt_courier.client.transport import AiomqttTransport, Transport

__all__ = [
    "AiomqttTransport",
    "ConnectionConfig",
    "ConnectionManager",
    "ConnectionState",
    "CourierClient",
    "CourierError",
    "DeliveryConfig",
    "DeliveryQueue",
    "GrantedSubscription",
    "LifecycleEvent",
    "NotInitializedError",
    "NotReadyError",
    "PendingMessage",
    "PublishOptions",
    "RetryExhaustedError",
    "Transport",
    "TransportEvent",
    "TransportSendError",
]
