"""Internal MQTT-over-WebSocket connection built on paho-mqtt."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, cast
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from busmate.exceptions import BrokerConnectError, BusmateConfigError

_DEFAULT_PORTS = {"ws": 80, "wss": 443}


@dataclass(frozen=True)
class BrokerEndpoint:
    """Resolved WebSocket broker address."""

    url: str
    host: str
    port: int
    path: str
    use_tls: bool


@dataclass(frozen=True)
class BrokerCallbacks:
    """Connection lifecycle notifications, always delivered on the event loop."""

    on_success: Callable[[], None]
    on_failure: Callable[[str], None]
    on_connection_lost: Callable[[str], None]


def parse_broker_url(url: str, *, use_tls: bool | None = None) -> BrokerEndpoint:
    """Split a ``ws://`` or ``wss://`` broker URL into connection parameters.

    *use_tls* defaults to the scheme (``wss`` means TLS).
    """
    value = url.strip()
    if not value:
        raise BusmateConfigError("Broker URL is empty")

    parts = urlsplit(value)
    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise BusmateConfigError(f"Broker URL must use ws:// or wss://, got {url!r}")
    if not parts.hostname:
        raise BusmateConfigError(f"Broker URL has no host: {url!r}")

    try:
        port = parts.port or _DEFAULT_PORTS[scheme]
    except ValueError as exc:
        raise BusmateConfigError(f"Broker URL has an invalid port: {url!r}") from exc

    path = parts.path or "/mqtt"
    if parts.query:
        path = f"{path}?{parts.query}"

    return BrokerEndpoint(
        url=value,
        host=parts.hostname,
        port=port,
        path=path,
        use_tls=scheme == "wss" if use_tls is None else use_tls,
    )


class BrokerConnection(Protocol):
    """Structural interface of one broker session.

    ``connect`` and ``disconnect`` may block and are run off the event loop.
    ``send`` is non-blocking and returns whether the client accepted the message.
    """

    def connect(self, endpoint: BrokerEndpoint, client_id: str, callbacks: BrokerCallbacks) -> None:
        ...

    def disconnect(self) -> None:
        ...

    def is_connected(self) -> bool:
        ...

    def send(self, topic: str, payload: bytes, qos: int) -> bool:
        ...


class PahoBrokerConnection:
    """Threaded paho-mqtt session that reports lifecycle events onto an asyncio loop.

    Each instance serves a single connect attempt. Once a failure or loss has
    been reported the instance stays silent; the owner discards it and
    creates a new one.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        keepalive: int = 60,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._keepalive = keepalive
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._callbacks: BrokerCallbacks | None = None
        self._closing = False
        self._reported_down = False

    def is_connected(self) -> bool:
        client = self._client
        return client is not None and client.is_connected()

    def connect(self, endpoint: BrokerEndpoint, client_id: str, callbacks: BrokerCallbacks) -> None:
        """Open the WebSocket and start the network loop.

        The CONNACK outcome arrives later through *callbacks*. Raises
        :class:`BrokerConnectError` if the client cannot be set up or the
        socket cannot be opened.
        """
        self._logger.debug(
            "MQTT connect requested host=%s port=%s path=%s tls=%s client_id=%s",
            endpoint.host,
            endpoint.port,
            endpoint.path,
            endpoint.use_tls,
            client_id,
        )

        self._callbacks = callbacks

        def on_connect(
            _client: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._report_down(callbacks.on_failure, f"connect refused: {reason_code}")
                return
            self._logger.debug("MQTT connected successfully reason=%s", reason_code)
            if not self._reported_down:
                self._loop.call_soon_threadsafe(callbacks.on_success)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._closing:
                return
            self._report_down(callbacks.on_connection_lost, f"disconnected: {reason_code}")

        try:
            client = mqtt.Client(
                callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
                client_id=client_id,
                transport="websockets",
                protocol=mqtt.MQTTv311,
            )
            client.enable_logger(self._logger)
            client.ws_set_options(path=endpoint.path)
            if endpoint.use_tls:
                client.tls_set()
            client.on_connect = on_connect
            client.on_disconnect = on_disconnect
            client.connect(endpoint.host, endpoint.port, keepalive=self._keepalive)
            client.loop_start()
        except Exception as exc:
            raise BrokerConnectError(f"Connecting to {endpoint.url} failed: {exc}", url=endpoint.url) from exc

        self._client = client
        self._logger.debug("MQTT network loop started")

    def _report_down(self, callback: Callable[[str], None], reason: str) -> None:
        if self._reported_down:
            return
        self._reported_down = True
        self._loop.call_soon_threadsafe(callback, reason)

    def send(self, topic: str, payload: bytes, qos: int) -> bool:
        client = self._client
        if client is None:
            return False
        info = client.publish(topic, payload, qos=qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._logger.debug("MQTT publish rejected rc=%s topic=%s", info.rc, topic)
            return False
        return True

    def disconnect(self) -> None:
        """Disconnect and stop the network loop if it was started."""
        client = self._client
        self._client = None
        self._closing = True

        if client is None:
            return
        try:
            if client.is_connected():
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
