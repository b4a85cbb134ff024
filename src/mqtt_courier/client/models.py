"""
Data Models for the Resilient Client Core.

Defines the connection states, lifecycle notifications, delivery options
and the pending-message record shared by the ConnectionManager and the
DeliveryQueue, plus the JSON payload helpers used by the application.
"""
import asyncio
import json
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class LifecycleEvent(str, Enum):
    """Notifications fanned out by the ConnectionManager to its listeners."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    OFFLINE = "offline"
    ERROR = "error"


class TransportEvent(str, Enum):
    """Raw events reported by a Transport."""
    CONNECT = "connect"
    ERROR = "error"
    CLOSE = "close"
    RECONNECT = "reconnect"
    OFFLINE = "offline"


# --- Delivery options ---

@dataclass(frozen=True)
class PublishOptions:
    """
    Options handed to the broker with every publish or subscribe.
    Their meaning is defined by MQTT, not by this package.
    """
    qos: int = 1
    retain: bool = False

    def __post_init__(self):
        if self.qos not in (0, 1, 2):
            raise ValueError(f"Invalid QoS level: {self.qos}")


@dataclass(frozen=True)
class GrantedSubscription:
    """A subscription acknowledged by the broker, with the negotiated QoS."""
    topic: str
    qos: int


# --- Payloads ---

@dataclass(frozen=True, kw_only=True)
class BasePayload:
    """Base class for all JSON payloads sent over MQTT."""
    timestamp: float = field(default_factory=time.time)

    def to_json(self) -> str:
        """Converts the object to a JSON string."""
        return json.dumps(asdict(self))

    def to_bytes(self) -> bytes:
        """Converts the object to UTF-8 encoded bytes for MQTT."""
        return self.to_json().encode('utf-8')


@dataclass(frozen=True, kw_only=True)
class StatusPayload(BasePayload):
    """Heartbeat/status report published by the application."""
    client_id: str
    status: str = "online"
    queued: int = 0


PayloadLike = Union[str, bytes, bytearray, BasePayload]


def encode_payload(payload: PayloadLike) -> bytes:
    """Normalizes the accepted payload types to the raw bytes put on the wire."""
    if isinstance(payload, BasePayload):
        return payload.to_bytes()
    if isinstance(payload, str):
        return payload.encode('utf-8')
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    raise TypeError(f"Unsupported payload type: {type(payload).__name__}")


# --- The queue entry ---

def _mark_outcome_retrieved(outcome: asyncio.Future):
    # Nobody is obliged to await an outcome; drops are already logged by the queue.
    if not outcome.cancelled():
        outcome.exception()


@dataclass(eq=False)
class PendingMessage:
    """
    A message accepted for delivery but not yet acknowledged by the broker.

    `outcome` is completed exactly once: with None when the broker accepts
    the message, or with a RetryExhaustedError when the queue gives up.
    The message itself is fixed once created; only the DeliveryQueue updates
    `retry_count` and `last_error`.
    """
    _fixed_fields = ("topic", "payload", "options", "outcome")

    topic: str
    payload: bytes
    options: PublishOptions = field(default_factory=PublishOptions)
    retry_count: int = 0
    last_error: Optional[BaseException] = None
    outcome: asyncio.Future = field(default=None, repr=False)

    def __post_init__(self):
        if not self.topic:
            raise ValueError("Topic must be a non-empty string")
        if self.outcome is None:
            object.__setattr__(self, "outcome", asyncio.get_running_loop().create_future())
        self.outcome.add_done_callback(_mark_outcome_retrieved)

    def __setattr__(self, name, value):
        if name in self._fixed_fields and name in self.__dict__:
            raise AttributeError(f"PendingMessage.{name} cannot be changed after creation")
        super().__setattr__(name, value)

    @property
    def settled(self) -> bool:
        return self.outcome.done()

    def resolve(self):
        if not self.outcome.done():
            self.outcome.set_result(None)

    def reject(self, error: BaseException):
        if not self.outcome.done():
            self.outcome.set_exception(error)

    def describe(self) -> dict[str, Any]:
        """Loggable summary without the payload bytes."""
        return {
            "topic": self.topic,
            "size": len(self.payload),
            "qos": self.options.qos,
            "retain": self.options.retain,
            "retry_count": self.retry_count,
        }
