"""Telemetry publisher: sample, encode and publish on a fixed interval."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from busmate._mqtt import BrokerConnection, PahoBrokerConnection
from busmate.config import PublisherConfig
from busmate.encoder import encode
from busmate.exceptions import InvalidSampleError, LocationFetchError, LocationPermissionError
from busmate.location import LocationSource
from busmate.models.payload import ClientIdentity
from busmate.models.position import PositionSample
from busmate.models.state import ConnectionState, PermissionStatus, PublisherState, PublishResult
from busmate.scheduler import PublishScheduler
from busmate.supervisor import ConnectionSupervisor

_logger = logging.getLogger(__name__)

STATUS_PERMISSION_DENIED = "permission denied"


class TelemetryPublisher:
    """Periodically publishes the device position to the broker.

    Lifecycle: ``Idle -> Starting -> Running -> Stopped``. A refused location
    permission ends the session in ``Stopped`` with status
    ``"permission denied"``; every other failure is transient and only shows
    up in :attr:`status`.

    Usage::

        publisher = TelemetryPublisher.from_config(config, StaticLocationSource(12.9, 77.6))
        async with publisher:
            await asyncio.sleep(3600)
    """

    def __init__(
        self,
        config: PublisherConfig,
        location_source: LocationSource,
        supervisor_factory: Callable[[Callable[[ConnectionState], None]], ConnectionSupervisor],
        *,
        identity: ClientIdentity | None = None,
        scheduler: PublishScheduler | None = None,
        on_status: Callable[[str], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._location = location_source
        self._logger = logger or _logger
        if identity is None:
            identity = ClientIdentity(client_id=config.client_id) if config.client_id else ClientIdentity.generate()
        self._identity = identity
        self._supervisor = supervisor_factory(self._on_connection_state)
        self._scheduler = scheduler or PublishScheduler(warmup=config.warmup_delay, logger=self._logger)
        self._on_status = on_status

        self._state = PublisherState.IDLE
        self._status = str(PublisherState.IDLE)
        self._last_sample: PositionSample | None = None

    @classmethod
    def from_config(
        cls,
        config: PublisherConfig,
        location_source: LocationSource,
        *,
        on_status: Callable[[str], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> TelemetryPublisher:
        """Build a publisher talking to the configured broker through paho-mqtt.

        Must be called with a running event loop.
        """
        config.validate()
        loop = asyncio.get_running_loop()
        log = logger or _logger

        def connection_factory() -> BrokerConnection:
            return PahoBrokerConnection(loop=loop, keepalive=config.mqtt_keepalive, logger=log)

        def supervisor_factory(on_state_change: Callable[[ConnectionState], None]) -> ConnectionSupervisor:
            return ConnectionSupervisor(
                connection_factory,
                topic=config.topic,
                qos=config.qos,
                reconnect_delay=config.reconnect_delay,
                on_state_change=on_state_change,
                logger=log,
            )

        return cls(config, location_source, supervisor_factory, on_status=on_status, logger=logger)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TelemetryPublisher:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> PublisherState:
        return self._state

    @property
    def status(self) -> str:
        """Human-readable lifecycle/connection status, for display only."""
        return self._status

    @property
    def client_id(self) -> str:
        return self._identity.client_id

    @property
    def last_sample(self) -> PositionSample | None:
        """Most recent position fix; older ones are not kept."""
        return self._last_sample

    @property
    def supervisor(self) -> ConnectionSupervisor:
        return self._supervisor

    @property
    def scheduler(self) -> PublishScheduler:
        return self._scheduler

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect, ask for location access once, publish now and then on every interval."""
        if self._state is not PublisherState.IDLE:
            return
        self._set_state(PublisherState.STARTING)

        config = self._config
        try:
            await self._supervisor.start(config.broker_url, self.client_id, config.use_encrypted_transport)
        except Exception:
            self._logger.warning("Publisher failed to start", exc_info=True)
            await self.stop()
            raise
        if self._state is not PublisherState.STARTING:
            return

        permission = await self._location.request_permission()
        if self._state is not PublisherState.STARTING:
            return
        if permission is not PermissionStatus.GRANTED:
            await self._halt_permission_denied()
            return

        await self._scheduler.run_now(self._tick)
        if self._state is not PublisherState.STARTING:
            return

        self._scheduler.start(config.publish_interval, self._tick)
        self._set_state(PublisherState.RUNNING)

    async def stop(self) -> None:
        """Stop ticking and disconnect. Idempotent."""
        if self._state is PublisherState.STOPPED:
            return
        self._set_state(PublisherState.STOPPED)
        self._scheduler.stop()
        await self._supervisor.stop()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _tick(self) -> None:
        try:
            sample = await self._location.get_current_position(self._config.location)
        except LocationPermissionError as exc:
            self._logger.warning("Location access revoked: %s", exc)
            await self._halt_permission_denied()
            return
        except LocationFetchError as exc:
            self._logger.warning("Location fetch failed, skipping tick: %s", exc)
            return

        if self._state is PublisherState.STOPPED:
            return
        self._last_sample = sample

        try:
            payload = encode(sample, client_id=self.client_id, seat_count=self._config.seat_count)
        except InvalidSampleError as exc:
            self._logger.warning("Discarding invalid position sample: %s", exc)
            return

        result = self._supervisor.publish(payload)
        if result is PublishResult.NOT_CONNECTED:
            self._logger.debug("Not connected, location %s,%s not published", payload.lat, payload.lng)
        elif result is PublishResult.SENT:
            self._logger.debug("Location published lat=%s lng=%s ts=%s", payload.lat, payload.lng, payload.ts)

    async def _halt_permission_denied(self) -> None:
        self._logger.warning("Location permission denied, publishing halted")
        self._set_state(PublisherState.STOPPED, status=STATUS_PERMISSION_DENIED)
        self._scheduler.stop()
        await self._supervisor.stop()

    def _on_connection_state(self, state: ConnectionState) -> None:
        if self._state is PublisherState.STOPPED:
            return
        self._set_status(str(state))

    def _set_state(self, state: PublisherState, *, status: str | None = None) -> None:
        self._logger.debug("Publisher state %s -> %s", self._state, state)
        self._state = state
        self._set_status(status or str(state))

    def _set_status(self, status: str) -> None:
        if status == self._status:
            return
        self._status = status
        if self._on_status is not None:
            self._on_status(status)
