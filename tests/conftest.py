"""
Pytest Configuration and Fixtures for the mqtt_courier project.

This module provides a deterministic in-memory Transport so the connection
state machine and the delivery queue can be tested without a broker.
"""

import asyncio
import logging
import sys
from typing import List, Optional, Tuple

import pytest

from mqtt_courier.client import CourierClient, DeliveryConfig
from mqtt_courier.client.config import ConnectionConfig
from mqtt_courier.client.models import GrantedSubscription, PublishOptions, TransportEvent
from mqtt_courier.client.transport import normalize_topics


class FakeTransport:
    """
    Implements the Transport protocol in memory.

    Tests drive the lifecycle with `emit()` and control publish outcomes
    with `failing` (every attempt fails) or `fail_next` (one-off failures).
    """
    def __init__(self, broker_url: str, config: ConnectionConfig):
        self.broker_url = broker_url
        self.config = config
        self.connected = False
        self.start_calls = 0
        self.end_calls = 0
        self.published: List[Tuple[str, bytes, PublishOptions]] = []
        self.subscriptions: List[Tuple[List[str], PublishOptions]] = []
        self.failing = False
        self.fail_next: List[BaseException] = []
        self.refused_topics: List[str] = []
        self.state_listeners = []
        self.message_handlers = []

    # --- Transport protocol ---

    def start(self):
        self.start_calls += 1

    async def end(self):
        self.end_calls += 1
        self.connected = False

    async def publish(self, topic: str, payload: bytes, options: PublishOptions):
        self.published.append((topic, payload, options))
        await asyncio.sleep(0)
        if self.fail_next:
            raise self.fail_next.pop(0)
        if self.failing:
            raise ConnectionError(f"publish attempt {len(self.published)} failed")

    async def subscribe(self, topics, options: PublishOptions):
        topic_list = normalize_topics(topics)
        self.subscriptions.append((topic_list, options))
        refused = [t for t in topic_list if t in self.refused_topics]
        if refused:
            raise ConnectionError(f"subscription refused: {refused}")
        return [GrantedSubscription(topic=t, qos=options.qos) for t in topic_list]

    def on_state_change(self, listener):
        self.state_listeners.append(listener)

    def on_message(self, handler):
        self.message_handlers.append(handler)

    # --- Test helpers ---

    def emit(self, event: TransportEvent, error: Optional[BaseException] = None):
        if event == TransportEvent.CONNECT:
            self.connected = True
        elif event in (TransportEvent.CLOSE, TransportEvent.OFFLINE):
            self.connected = False
        for listener in list(self.state_listeners):
            listener(event, error)

    def deliver(self, topic: str, payload: bytes):
        for handler in list(self.message_handlers):
            handler(topic, payload)

    def attempts_for(self, topic: str) -> int:
        return sum(1 for published_topic, _, _ in self.published if published_topic == topic)


class FakeTransportFactory:
    def __init__(self):
        self.created: List[FakeTransport] = []

    def __call__(self, broker_url: str, config: ConnectionConfig) -> FakeTransport:
        transport = FakeTransport(broker_url, config)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


async def _settle(rounds: int = 10):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle():
    """Lets scheduled tasks (flushes, zero-delay backoffs) run."""
    return _settle


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def delivery_config() -> DeliveryConfig:
    # No waiting between retries keeps the tests fast; ordering is unaffected
    return DeliveryConfig(max_retries=5, retry_interval=0)


@pytest.fixture
def courier(transport_factory, delivery_config) -> CourierClient:
    return CourierClient(delivery_config=delivery_config, transport_factory=transport_factory)


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """
    Configures the Python logging framework globally for all tests.
    Because tests bypass main.py, this ensures our logs are formatted
    and visible exactly how we want them during test runs.
    """
    formatter = logging.Formatter(fmt="%(levelname)-8s %(message)s - %(funcName)s:%(lineno)d ")
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(formatter)
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
