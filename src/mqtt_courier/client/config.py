"""
Connection and delivery settings.

Options arrive as a plain mapping (usually a section of the YAML config).
Known keys are resolved to typed fields with defaults; anything else is
kept in `extra` and handed to the transport untouched.
"""
import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_PERIOD = 1.0   # seconds
DEFAULT_CONNECT_TIMEOUT = 30.0   # seconds
DEFAULT_OFFLINE_AFTER = 3        # consecutive failed connection attempts
DEFAULT_MAX_RETRIES = 5
DEFAULT_RETRY_INTERVAL = 1.0     # seconds, multiplied by the retry count


def _option(options: Mapping[str, Any], key: str, default: Any) -> Any:
    value = options.get(key)
    return default if value is None else value


def generate_client_id(prefix: str = "courier") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@dataclass
class ConnectionConfig:
    username: str = ""
    password: str = ""
    reconnect_period: float = DEFAULT_RECONNECT_PERIOD
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    client_id: str = field(default_factory=generate_client_id)
    clean: bool = True
    offline_after: int = DEFAULT_OFFLINE_AFTER
    extra: Dict[str, Any] = field(default_factory=dict)

    KNOWN_KEYS = (
        "username", "password", "reconnect_period", "connect_timeout",
        "client_id", "clean", "offline_after",
    )

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None) -> "ConnectionConfig":
        """
        Applies the defaults to a raw option mapping.

        Credentials fall back to MQTT_USERNAME / MQTT_PASSWORD from the
        environment. A falsy client_id gets a generated one, and `clean`
        is only False when explicitly set to False.
        """
        options = dict(options or {})
        extra = {key: value for key, value in options.items() if key not in cls.KNOWN_KEYS}
        if extra:
            logger.debug(f"Passing unrecognized options through to the transport: {sorted(extra)}")

        return cls(
            username=options.get("username") or os.getenv("MQTT_USERNAME") or "",
            password=options.get("password") or os.getenv("MQTT_PASSWORD") or "",
            # 0 is meaningful here: it disables transport-level reconnection
            reconnect_period=float(_option(options, "reconnect_period", DEFAULT_RECONNECT_PERIOD)),
            connect_timeout=float(options.get("connect_timeout") or DEFAULT_CONNECT_TIMEOUT),
            client_id=options.get("client_id") or generate_client_id(),
            clean=options.get("clean") is not False,
            offline_after=int(options.get("offline_after") or DEFAULT_OFFLINE_AFTER),
            extra=extra,
        )


@dataclass(frozen=True)
class DeliveryConfig:
    """Retry policy of the DeliveryQueue: linear backoff up to a ceiling."""
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_interval: float = DEFAULT_RETRY_INTERVAL

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_interval < 0:
            raise ValueError("retry_interval must be >= 0")

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None) -> "DeliveryConfig":
        options = options or {}
        return cls(
            max_retries=int(options.get("max_retries", DEFAULT_MAX_RETRIES)),
            retry_interval=float(options.get("retry_interval", DEFAULT_RETRY_INTERVAL)),
        )

    def backoff(self, retry_count: int) -> float:
        return self.retry_interval * retry_count
