"""
mqtt_courier

A connection-resilient MQTT publish/subscribe client: one supervised
broker connection, publishes accepted while offline, and an in-memory
retry queue that delivers them once the broker is back.
"""
__version__ = "0.1.0"
