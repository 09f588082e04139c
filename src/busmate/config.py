"""Publisher configuration for busmate."""

from __future__ import annotations

import dataclasses
import os
from typing import Any
from urllib.parse import urlsplit

from busmate._mqtt import parse_broker_url
from busmate.exceptions import BusmateConfigError
from busmate.models.state import LocationAccuracy

DEFAULT_TOPIC = "busmate/location"
DEFAULT_LOCAL_BROKER_URL = "ws://192.168.1.7:8080/mqtt"
DEFAULT_HOSTED_BROKER_URL = "wss://busmate-broker.onrender.com/mqtt"


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class LocationRequest:
    """Accuracy/timeout profile for a single position fetch.

    Parameters
    ----------
    accuracy : LocationAccuracy
        Requested fix quality.
    timeout : float
        Seconds a source may spend on one fetch before giving up.
    """

    accuracy: LocationAccuracy = LocationAccuracy.BALANCED
    timeout: float = 10.0


@dataclasses.dataclass(frozen=True)
class PublisherConfig:
    """Publisher configuration.

    Parameters
    ----------
    local_broker_url : str
        Broker used when ``use_local_broker`` is set. Plain WebSocket.
    hosted_broker_url : str
        Hosted broker, normally over TLS (``wss://``).
    use_local_broker : bool
        Select the local broker instead of the hosted one.
    topic : str
        Destination topic for every location report.
    qos : int
        MQTT QoS level for publishes (1 = at-least-once).
    publish_interval : float
        Seconds between scheduled sample-and-publish ticks.
    reconnect_delay : float
        Fixed delay in seconds before each reconnect attempt.
    warmup_delay : float
        Seconds before the scheduler's first firing.
    seat_count : int
        Seat capacity reported with every location.
    client_id : str or None
        Fixed MQTT client id. ``None`` generates ``mobile_<n>`` per process.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    location : LocationRequest
        Accuracy/timeout profile passed to the location source.
    """

    local_broker_url: str = DEFAULT_LOCAL_BROKER_URL
    hosted_broker_url: str = DEFAULT_HOSTED_BROKER_URL
    use_local_broker: bool = True
    topic: str = DEFAULT_TOPIC
    qos: int = 1
    publish_interval: float = 15.0
    reconnect_delay: float = 5.0
    warmup_delay: float = 1.0
    seat_count: int = 50
    client_id: str | None = None
    mqtt_keepalive: int = 60
    location: LocationRequest = dataclasses.field(default_factory=LocationRequest)

    @property
    def broker_url(self) -> str:
        """The broker URL selected by ``use_local_broker``."""
        return self.local_broker_url if self.use_local_broker else self.hosted_broker_url

    @property
    def use_encrypted_transport(self) -> bool:
        """Whether TLS is used, derived from the broker URL scheme."""
        return urlsplit(self.broker_url).scheme.lower() == "wss"

    def validate(self) -> PublisherConfig:
        """Check field values, raising :class:`BusmateConfigError` on the first problem."""
        parse_broker_url(self.broker_url)
        if not self.topic:
            raise BusmateConfigError("topic must be non-empty")
        if self.qos not in (0, 1, 2):
            raise BusmateConfigError(f"qos must be 0, 1 or 2, got {self.qos}")
        if self.publish_interval <= 0:
            raise BusmateConfigError(f"publish_interval must be positive, got {self.publish_interval}")
        if self.reconnect_delay <= 0:
            raise BusmateConfigError(f"reconnect_delay must be positive, got {self.reconnect_delay}")
        if self.warmup_delay < 0:
            raise BusmateConfigError(f"warmup_delay must not be negative, got {self.warmup_delay}")
        if self.seat_count < 0:
            raise BusmateConfigError(f"seat_count must not be negative, got {self.seat_count}")
        if self.location.timeout <= 0:
            raise BusmateConfigError(f"location timeout must be positive, got {self.location.timeout}")
        return self

    @classmethod
    def from_env(cls, **overrides: Any) -> PublisherConfig:
        """Create configuration from environment variables.

        Reads optional ``BUSMATE_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        PublisherConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "BUSMATE_LOCAL_BROKER_URL": "local_broker_url",
            "BUSMATE_HOSTED_BROKER_URL": "hosted_broker_url",
            "BUSMATE_TOPIC": "topic",
            "BUSMATE_CLIENT_ID": "client_id",
        }
        _ENV_FLOAT_MAP = {
            "BUSMATE_PUBLISH_INTERVAL": "publish_interval",
            "BUSMATE_RECONNECT_DELAY": "reconnect_delay",
            "BUSMATE_WARMUP_DELAY": "warmup_delay",
        }
        _ENV_INT_MAP = {
            "BUSMATE_QOS": "qos",
            "BUSMATE_SEAT_COUNT": "seat_count",
            "BUSMATE_MQTT_KEEPALIVE": "mqtt_keepalive",
        }

        config_kwargs: dict[str, Any] = {}
        try:
            for env_key, field_name in _ENV_STR_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = val
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = float(val)
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = int(val)

            if "use_local_broker" not in overrides:
                config_kwargs["use_local_broker"] = _env_bool(env.get("BUSMATE_USE_LOCAL_BROKER"), True)

            if "location" not in overrides:
                location_kwargs: dict[str, Any] = {}
                accuracy_env = env.get("BUSMATE_LOCATION_ACCURACY")
                if accuracy_env is not None:
                    location_kwargs["accuracy"] = LocationAccuracy(accuracy_env.strip().lower())
                timeout_env = env.get("BUSMATE_LOCATION_TIMEOUT")
                if timeout_env is not None:
                    location_kwargs["timeout"] = float(timeout_env)
                if location_kwargs:
                    config_kwargs["location"] = LocationRequest(**location_kwargs)
        except ValueError as exc:
            raise BusmateConfigError(f"Invalid BUSMATE_* environment value: {exc}") from exc

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
