"""
Main entry point for the mqtt_courier service.

This module is responsible for:
- Parsing configuration (from a YAML file).
- Constructing the CourierClient and owning its lifecycle.
- Logging connection lifecycle events.
- Running the heartbeat publisher.
- Closing the client on SIGINT/SIGTERM before the process exits.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Union

from mqtt_courier.app.config_loader import broker_settings, load_config
from mqtt_courier.client import CourierClient, DeliveryConfig, LifecycleEvent, PublishOptions, TransportSendError
from mqtt_courier.client.models import StatusPayload

DEFAULT_HEARTBEAT_TOPIC = "courier/{client_id}/status"
DEFAULT_HEARTBEAT_INTERVAL = 30.0


def setup_logging(level: int = logging.INFO):
    """
    Configures the global logging settings for the entire application.
    This should be called as early as possible during startup.
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)-8s] %(name)s.%(funcName)s: %(message)s'
    )

logger = logging.getLogger(__name__)


def log_lifecycle_event(event: LifecycleEvent, error: Optional[BaseException] = None):
    if event == LifecycleEvent.ERROR:
        logger.error(f"MQTT lifecycle: {event.value} ({error})")
    else:
        logger.info(f"MQTT lifecycle: {event.value}")


def client_id_of(client: CourierClient) -> str:
    config = client.connection.config
    return config.client_id if config else "courier"


def heartbeat_topic(client: CourierClient, config: Dict[str, Any]) -> str:
    template = (config.get('heartbeat') or {}).get('topic', DEFAULT_HEARTBEAT_TOPIC)
    return template.format(client_id=client_id_of(client))


async def heartbeat_loop(client: CourierClient, topic: str, interval: float = DEFAULT_HEARTBEAT_INTERVAL):
    """Background task publishing a status report every `interval` seconds."""
    logger.info(f"Heartbeat loop started on '{topic}'.")
    client_id = client_id_of(client)

    try:
        while True:
            payload = StatusPayload(client_id=client_id, queued=len(client.queue))
            try:
                # Works offline too: the message is queued until the broker is back
                await client.publish(topic, payload, PublishOptions(qos=1, retain=True))
            except TransportSendError as e:
                logger.warning(f"Heartbeat not sent, queued for retry: {e}")

            await asyncio.sleep(interval)

    except asyncio.CancelledError:
        logger.info("Heartbeat loop stopped.")


async def shutdown(signal_name: str, loop: asyncio.AbstractEventLoop, client: CourierClient, status_topic: Optional[str] = None):
    """Graceful shutdown handler."""
    logger.info(f"Received exit signal {signal_name}...")

    if status_topic and client.is_ready():
        client_id = client_id_of(client)
        try:
            await client.publish(status_topic, StatusPayload(client_id=client_id, status="offline"), PublishOptions(qos=1, retain=True))
            logger.info(f"Published offline status to {status_topic} before closing.")
        except TransportSendError as e:
            logger.warning(f"Could not publish offline status: {e}")

    await client.close()

    # Cancel all running tasks (like the heartbeat loop)
    tasks = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
    for task in tasks:
        task.cancel()

    # Await cancellation to finish safely
    await asyncio.gather(*tasks, return_exceptions=True)

    loop.stop()


async def main_application_runner(config_path: Union[str, Path] = "config.yaml"):
    setup_logging()
    logger.info("Starting mqtt_courier...")

    config: Dict[str, Any] = load_config(config_path)
    broker_url, connection_options = broker_settings(config)

    loop = asyncio.get_running_loop()

    client = CourierClient(delivery_config=DeliveryConfig.from_options(config.get('delivery')))
    client.add_listener(log_lifecycle_event)
    client.initialize(broker_url, connection_options)

    topic = heartbeat_topic(client, config)
    interval = float((config.get('heartbeat') or {}).get('interval', DEFAULT_HEARTBEAT_INTERVAL))
    heartbeat_task = asyncio.create_task(heartbeat_loop(client, topic, interval))

    # Setup Signal Handlers for OS interrupts
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(
            sig,
            lambda s=sig: asyncio.create_task(shutdown(s.name, loop, client, topic))
        )

    logger.info("mqtt_courier is running. Press Ctrl+C to exit.")

    try:
        await asyncio.Future()
    except asyncio.CancelledError:
        pass
    finally:
        heartbeat_task.cancel()


def run():
    config_path = sys.argv[1] if len(sys.argv) > 1 else "config.yaml"
    try:
        asyncio.run(main_application_runner(config_path))
    except KeyboardInterrupt:
        # Handled by the signal handler, but good to catch here just in case.
        pass


if __name__ == "__main__":
    run()
