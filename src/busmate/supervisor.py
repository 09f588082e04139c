"""Broker connection lifecycle with fixed-delay reconnect.

Owns:
- the single logical broker connection and its :class:`ConnectionState`
- the cancellable reconnect timer
- the best-effort publish gate (only while connected)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from busmate._mqtt import BrokerCallbacks, BrokerConnection, BrokerEndpoint, parse_broker_url
from busmate.config import DEFAULT_TOPIC
from busmate.exceptions import BrokerConnectError
from busmate.models.payload import TelemetryPayload
from busmate.models.state import ConnectionState, PublishResult


class ConnectionSupervisor:
    """Keeps one broker connection alive, retrying forever with a fixed delay.

    A new :class:`BrokerConnection` is obtained from *connection_factory* for
    every attempt. Notifications from a connection that has since been
    replaced or released are ignored.
    """

    def __init__(
        self,
        connection_factory: Callable[[], BrokerConnection],
        *,
        topic: str = DEFAULT_TOPIC,
        qos: int = 1,
        reconnect_delay: float = 5.0,
        on_state_change: Callable[[ConnectionState], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._connection_factory = connection_factory
        self._topic = topic
        self._qos = qos
        self._reconnect_delay = reconnect_delay
        self._on_state_change = on_state_change
        self._logger = logger or logging.getLogger(__name__)

        self._state = ConnectionState.DISCONNECTED
        self._connection: BrokerConnection | None = None
        self._endpoint: BrokerEndpoint | None = None
        self._client_id: str | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._background: set[asyncio.Task[None]] = set()
        self._stopped = True

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_pending(self) -> bool:
        """Whether a reconnect attempt is scheduled but has not fired yet."""
        return self._reconnect_handle is not None

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    async def start(self, broker_url: str, client_id: str, use_encrypted_transport: bool) -> None:
        """Begin connecting. No-op while connecting, connected or awaiting a reconnect."""
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED) or self.reconnect_pending:
            return

        self._endpoint = parse_broker_url(broker_url, use_tls=use_encrypted_transport)
        self._client_id = client_id
        self._stopped = False
        await self._connect()

    async def stop(self) -> None:
        """Cancel any pending reconnect and disconnect. Safe in any state."""
        self._stopped = True
        handle = self._reconnect_handle
        self._reconnect_handle = None
        if handle is not None:
            handle.cancel()
            self._logger.debug("Pending MQTT reconnect cancelled")

        connection = self._connection
        self._connection = None
        self._set_state(ConnectionState.DISCONNECTED)

        if connection is not None:
            await self._release(connection)

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def publish(self, payload: TelemetryPayload) -> PublishResult:
        """Send *payload* to the fixed topic if connected; never raises, never retries."""
        connection = self._connection
        if not self.is_connected() or connection is None:
            return PublishResult.NOT_CONNECTED

        if not connection.send(self._topic, payload.to_wire(), self._qos):
            self._logger.warning("MQTT publish to %s was not accepted", self._topic)
            return PublishResult.SEND_FAILED

        self._logger.debug("Published to %s: %s", self._topic, payload.to_json())
        return PublishResult.SENT

    # ------------------------------------------------------------------
    # Connection callbacks
    # ------------------------------------------------------------------

    def on_connect_success(self) -> None:
        self._logger.info("Connected to MQTT broker %s", self._endpoint.url if self._endpoint else "?")
        self._set_state(ConnectionState.CONNECTED)

    def on_connect_failure(self, reason: str) -> None:
        self._logger.warning("MQTT connect error: %s", reason)
        self._drop_connection()
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    def on_connection_lost(self, reason: str) -> None:
        self._logger.warning("MQTT connection lost: %s", reason)
        self._drop_connection()
        self._set_state(ConnectionState.RECONNECTING)
        self._schedule_reconnect()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._logger.debug("MQTT connection state %s -> %s", self._state, state)
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    def _bind(self, connection: BrokerConnection) -> BrokerCallbacks:
        def guarded(handler: Callable[..., None]) -> Callable[..., None]:
            def callback(*args: str) -> None:
                if self._stopped or connection is not self._connection:
                    self._logger.debug("Ignoring notification from a released MQTT connection")
                    return
                handler(*args)

            return callback

        return BrokerCallbacks(
            on_success=guarded(self.on_connect_success),
            on_failure=guarded(self.on_connect_failure),
            on_connection_lost=guarded(self.on_connection_lost),
        )

    async def _connect(self) -> None:
        endpoint = self._endpoint
        client_id = self._client_id
        if self._stopped or endpoint is None or client_id is None:
            return

        loop = asyncio.get_running_loop()
        connection: BrokerConnection | None = None
        try:
            connection = self._connection_factory()
            self._connection = connection
            self._set_state(ConnectionState.CONNECTING)
            await loop.run_in_executor(None, connection.connect, endpoint, client_id, self._bind(connection))
        except BrokerConnectError as exc:
            if connection is self._connection and not self._stopped:
                self.on_connect_failure(str(exc))
            return
        except Exception as exc:
            self._logger.debug("MQTT connect attempt raised", exc_info=True)
            if not self._stopped and (connection is None or connection is self._connection):
                self.on_connect_failure(f"{type(exc).__name__}: {exc}")
            return

        if connection is not self._connection:
            # Stopped or superseded while the blocking connect was running.
            await self._release(connection)

    def _schedule_reconnect(self) -> None:
        if self._stopped:
            return
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
        loop = asyncio.get_running_loop()
        self._logger.debug("MQTT reconnect in %.1fs", self._reconnect_delay)
        self._reconnect_handle = loop.call_later(self._reconnect_delay, self._fire_reconnect)

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        if self._stopped:
            return
        self._spawn(self._connect())

    def _drop_connection(self) -> None:
        connection = self._connection
        self._connection = None
        if connection is not None:
            self._spawn(self._release(connection))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _release(self, connection: BrokerConnection) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, connection.disconnect)
        except Exception:
            self._logger.debug("MQTT connection release failed", exc_info=True)
