"""
Exceptions raised by the resilient client core.

None of these is fatal: each concerns a single message or the current
state of the single broker connection.
"""
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from mqtt_courier.client.models import PendingMessage


class CourierError(Exception):
    """Base class for every error raised by mqtt_courier."""


class NotInitializedError(CourierError):
    """Raised when an operation needs a transport but initialize() was never called."""

    def __init__(self, message: str = "MQTT client not initialized"):
        super().__init__(message)


class NotReadyError(CourierError):
    """Raised by subscribe() when a transport exists but is not connected."""

    def __init__(self, message: str = "MQTT client not connected"):
        super().__init__(message)


class TransportSendError(CourierError):
    """
    The broker rejected a send or the network dropped it.

    When raised from a direct publish, the message has also been queued
    for retry and is available as `pending`; awaiting `pending.outcome`
    reports whether the later attempts succeed.
    """

    def __init__(self, topic: str, cause: Optional[BaseException] = None, pending: Optional["PendingMessage"] = None):
        self.topic = topic
        self.pending = pending
        reason = str(cause) if cause is not None else "unknown error"
        super().__init__(f"Failed to publish to {topic}: {reason}")


class RetryExhaustedError(CourierError):
    """A queued message was dropped after exceeding the retry ceiling."""

    def __init__(self, message: "PendingMessage", max_retries: int):
        self.message = message
        self.last_error = message.last_error
        self.max_retries = max_retries
        super().__init__(
            f"Dropping message to {message.topic} after {max_retries} retries: {message.last_error}"
        )
