"""
The composing application: config loading, logging, heartbeat and shutdown.
"""
