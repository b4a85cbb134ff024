"""
Connection Supervision.

This module provides the `ConnectionManager`, which:
- Owns the single Transport instance and prevents duplicate connections.
- Tracks the connection state, driven only by transport callbacks.
- Fans lifecycle notifications out to any number of listeners.
- Answers the one question the delivery engine keeps asking: can a send
  happen right now?

Reconnecting is left to the transport; this class only reflects it.
"""
import asyncio
import functools
import logging
from typing import Any, Callable, List, Mapping, Optional, Set

from mqtt_courier.client.config import ConnectionConfig
from mqtt_courier.client.models import ConnectionState, LifecycleEvent, TransportEvent
from mqtt_courier.client.transport import MessageHandler, Transport, TransportFactory, aiomqtt_transport_factory

logger = logging.getLogger(__name__)

LifecycleListener = Callable[[LifecycleEvent, Optional[BaseException]], None]


class ConnectionManager:
    broker_url: Optional[str]
    config: Optional[ConnectionConfig]
    state: ConnectionState
    _transport: Optional[Transport]
    _transport_factory: TransportFactory
    _listeners: List[LifecycleListener]
    _message_handlers: List[MessageHandler]
    _retiring: Set[asyncio.Task]

    """
    Establishes and supervises one broker connection.
    """
    def __init__(self, transport_factory: TransportFactory = aiomqtt_transport_factory):
        self.broker_url = None
        self.config = None
        self.state = ConnectionState.DISCONNECTED
        self._transport = None
        self._transport_factory = transport_factory
        self._listeners = []
        self._message_handlers = []
        self._retiring = set()

    def initialize(self, broker_url: str, options: Optional[Mapping[str, Any]] = None) -> Transport:
        """
        Opens the connection and returns the transport handle.

        Calling it again while connected or while a connection attempt is
        in progress returns the existing handle without opening a second one.
        """
        if self._transport is not None and self.state == ConnectionState.CONNECTED:
            logger.info("MQTT client already connected")
            return self._transport

        if self._transport is not None and self.state == ConnectionState.CONNECTING:
            logger.info("MQTT client connection in progress...")
            return self._transport

        if self._transport is not None:
            logger.warning("Replacing a disconnected transport.")
            self._retire(self._transport)

        self.broker_url = broker_url
        self.config = ConnectionConfig.from_options(options)

        logger.info("Initializing shared MQTT client...")
        logger.info(f"   Broker: {self.broker_url}")
        logger.info(f"   Client ID: {self.config.client_id}")

        self.state = ConnectionState.CONNECTING
        transport = self._transport_factory(self.broker_url, self.config)
        transport.on_state_change(functools.partial(self._handle_transport_event, transport))
        transport.on_message(self._handle_message)
        self._transport = transport
        transport.start()
        return transport

    def get_client(self) -> Optional[Transport]:
        """Raw transport handle for callers that need more than publish/subscribe."""
        return self._transport

    def is_ready(self) -> bool:
        # Double-check against the transport in case our state is stale
        return (
            self.state == ConnectionState.CONNECTED
            and self._transport is not None
            and bool(self._transport.connected)
        )

    async def close(self):
        """
        Ends the transport and forgets it. Safe to call more than once.
        """
        transport, self._transport = self._transport, None
        if transport is None:
            return
        logger.info("Closing shared MQTT client...")
        self.state = ConnectionState.DISCONNECTED
        await transport.end()

    def _retire(self, transport: Transport):
        # initialize() is synchronous, so the old transport is ended in the background
        task = asyncio.ensure_future(transport.end())
        self._retiring.add(task)
        task.add_done_callback(self._retiring.discard)

    # --- Observers ---

    def add_listener(self, listener: LifecycleListener):
        self._listeners.append(listener)

    def remove_listener(self, listener: LifecycleListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def add_message_handler(self, handler: MessageHandler):
        self._message_handlers.append(handler)

    def _notify(self, event: LifecycleEvent, error: Optional[BaseException] = None):
        for listener in list(self._listeners):
            try:
                listener(event, error)
            except Exception as e:
                logger.error(f"Lifecycle listener failed on '{event.value}': {e}")

    # --- Transport callbacks ---

    def _handle_transport_event(self, source: Transport, event: TransportEvent, error: Optional[BaseException] = None):
        if source is not self._transport:
            # Late event from a transport we already closed or replaced
            logger.debug(f"Ignoring '{event.value}' from a stale transport")
            return

        if event == TransportEvent.CONNECT:
            self.state = ConnectionState.CONNECTED
            logger.info("Shared MQTT client connected successfully")
            self._notify(LifecycleEvent.CONNECTED)
        elif event == TransportEvent.ERROR:
            logger.error(f"Shared MQTT client error: {error}")
            self._notify(LifecycleEvent.ERROR, error)
        elif event == TransportEvent.CLOSE:
            self.state = ConnectionState.DISCONNECTED
            logger.info("Shared MQTT client disconnected")
            self._notify(LifecycleEvent.DISCONNECTED)
        elif event == TransportEvent.RECONNECT:
            self.state = ConnectionState.CONNECTING
            logger.info("Shared MQTT client reconnecting...")
            self._notify(LifecycleEvent.RECONNECTING)
        elif event == TransportEvent.OFFLINE:
            self.state = ConnectionState.DISCONNECTED
            logger.warning("Shared MQTT client is offline")
            self._notify(LifecycleEvent.OFFLINE)
        else:
            logger.warning(f"Unknown transport event: {event}")

    def _handle_message(self, topic: str, payload: bytes):
        for handler in list(self._message_handlers):
            try:
                handler(topic, payload)
            except Exception as e:
                logger.error(f"Message handler failed for topic '{topic}': {e}")
