"""Scenario tests for TelemetryPublisher."""

from __future__ import annotations

import asyncio
import json
import math
from collections.abc import Callable

import pytest

from busmate._mqtt import BrokerCallbacks, BrokerEndpoint
from busmate.config import LocationRequest, PublisherConfig
from busmate.exceptions import BusmateConfigError, LocationFetchError, LocationPermissionError
from busmate.models.position import PositionSample
from busmate.models.state import ConnectionState, PermissionStatus, PublisherState
from busmate.publisher import STATUS_PERMISSION_DENIED, TelemetryPublisher
from busmate.supervisor import ConnectionSupervisor

SAMPLE = PositionSample(latitude=12.345678, longitude=77.123454, captured_at_ms=1700000000000)
EXPECTED_WIRE = b'{"seats":50,"lat":"12.34568","lng":"77.12345","ts":1700000000000,"clientId":"mobile_42"}'


class _FakeConnection:
    def __init__(self, loop: asyncio.AbstractEventLoop, auto_connect: bool) -> None:
        self._loop = loop
        self._auto_connect = auto_connect
        self.callbacks: BrokerCallbacks | None = None
        self.disconnected = False
        self.sent: list[bytes] = []

    def connect(self, endpoint: BrokerEndpoint, client_id: str, callbacks: BrokerCallbacks) -> None:
        self.callbacks = callbacks
        if self._auto_connect:
            self._loop.call_soon_threadsafe(callbacks.on_success)

    def disconnect(self) -> None:
        self.disconnected = True

    def is_connected(self) -> bool:
        return not self.disconnected

    def send(self, topic: str, payload: bytes, qos: int) -> bool:
        assert topic == "busmate/location"
        assert qos == 1
        self.sent.append(payload)
        return True


class _Broker:
    def __init__(self, loop: asyncio.AbstractEventLoop, *, auto_connect: bool = True) -> None:
        self._loop = loop
        self.auto_connect = auto_connect
        self.connections: list[_FakeConnection] = []

    def __call__(self) -> _FakeConnection:
        conn = _FakeConnection(self._loop, self.auto_connect)
        self.connections.append(conn)
        return conn

    @property
    def sent(self) -> list[bytes]:
        return [payload for conn in self.connections for payload in conn.sent]


class _FakeLocation:
    def __init__(
        self,
        *,
        permission: PermissionStatus = PermissionStatus.GRANTED,
        script: list[PositionSample | Exception] | None = None,
    ) -> None:
        self.permission = permission
        self.script = list(script or [])
        self.permission_requests = 0
        self.fetches = 0
        self.requests: list[LocationRequest] = []

    async def request_permission(self) -> PermissionStatus:
        self.permission_requests += 1
        await asyncio.sleep(0)
        return self.permission

    async def get_current_position(self, request: LocationRequest) -> PositionSample:
        self.fetches += 1
        self.requests.append(request)
        item = self.script.pop(0) if self.script else SAMPLE
        if isinstance(item, Exception):
            raise item
        return item


def _config(**overrides: object) -> PublisherConfig:
    values: dict[str, object] = {
        "publish_interval": 0.02,
        "warmup_delay": 0.02,
        "reconnect_delay": 0.05,
        "client_id": "mobile_42",
        "seat_count": 50,
    }
    values.update(overrides)
    return PublisherConfig(**values)  # type: ignore[arg-type]


def _publisher(
    broker: _Broker,
    location: _FakeLocation,
    statuses: list[str] | None = None,
    **overrides: object,
) -> TelemetryPublisher:
    config = _config(**overrides)

    def supervisor_factory(on_state_change: Callable[[ConnectionState], None]) -> ConnectionSupervisor:
        return ConnectionSupervisor(
            broker,
            topic=config.topic,
            qos=config.qos,
            reconnect_delay=config.reconnect_delay,
            on_state_change=on_state_change,
        )

    return TelemetryPublisher(
        config,
        location,
        supervisor_factory,
        on_status=statuses.append if statuses is not None else None,
    )


@pytest.mark.asyncio
async def test_permission_denied_stops_without_publishing() -> None:
    broker = _Broker(asyncio.get_running_loop())
    location = _FakeLocation(permission=PermissionStatus.DENIED)
    publisher = _publisher(broker, location)

    await publisher.start()
    await asyncio.sleep(0.1)

    assert publisher.state is PublisherState.STOPPED
    assert publisher.status == STATUS_PERMISSION_DENIED
    assert location.permission_requests == 1
    assert location.fetches == 0
    assert broker.sent == []
    assert publisher.supervisor.state is ConnectionState.DISCONNECTED
    assert publisher.scheduler.is_running is False


@pytest.mark.asyncio
async def test_start_publishes_immediately_then_on_interval() -> None:
    broker = _Broker(asyncio.get_running_loop())
    location = _FakeLocation()
    publisher = _publisher(broker, location)

    await publisher.start()

    assert publisher.state is PublisherState.RUNNING
    assert broker.sent == [EXPECTED_WIRE]
    assert publisher.last_sample == SAMPLE

    await asyncio.sleep(0.15)
    await publisher.stop()

    assert len(broker.sent) >= 3
    assert all(json.loads(payload)["clientId"] == "mobile_42" for payload in broker.sent)
    assert location.requests[0] == LocationRequest()


@pytest.mark.asyncio
async def test_status_follows_publisher_and_connection_transitions() -> None:
    broker = _Broker(asyncio.get_running_loop())
    statuses: list[str] = []
    publisher = _publisher(broker, _FakeLocation(), statuses)

    assert publisher.status == "Idle"
    await publisher.start()
    await publisher.stop()

    assert statuses == ["Starting", "Connecting", "Connected", "Running", "Stopped"]
    assert publisher.status == "Stopped"


@pytest.mark.asyncio
async def test_location_failure_skips_only_that_tick() -> None:
    broker = _Broker(asyncio.get_running_loop())
    location = _FakeLocation(script=[LocationFetchError("no fix"), SAMPLE])
    publisher = _publisher(broker, location)

    await publisher.start()
    assert broker.sent == []
    assert publisher.last_sample is None

    await asyncio.sleep(0.1)
    await publisher.stop()

    assert location.fetches >= 2
    assert broker.sent[0] == EXPECTED_WIRE


@pytest.mark.asyncio
async def test_invalid_sample_is_discarded() -> None:
    broker = _Broker(asyncio.get_running_loop())
    bad = PositionSample(latitude=math.nan, longitude=77.0, captured_at_ms=1700000000000)
    location = _FakeLocation(script=[bad])
    publisher = _publisher(broker, location, publish_interval=10.0)

    await publisher.start()

    assert publisher.state is PublisherState.RUNNING
    assert broker.sent == []
    await publisher.stop()


@pytest.mark.asyncio
async def test_connection_lost_keeps_ticking_and_reconnects() -> None:
    loop = asyncio.get_running_loop()
    broker = _Broker(loop)
    location = _FakeLocation()
    publisher = _publisher(broker, location, reconnect_delay=0.2)

    await publisher.start()
    first = broker.connections[0]
    broker.auto_connect = False
    sent_before = len(broker.sent)

    first.callbacks.on_connection_lost("broker went away")  # type: ignore[union-attr]
    assert publisher.status == "Reconnecting"

    fetches_before = location.fetches
    await asyncio.sleep(0.1)

    assert location.fetches > fetches_before
    assert len(broker.sent) == sent_before
    assert publisher.supervisor.reconnect_pending is True
    assert len(broker.connections) == 1

    await asyncio.sleep(0.2)

    assert len(broker.connections) == 2
    assert publisher.status == "Connecting"
    await publisher.stop()


@pytest.mark.asyncio
async def test_stop_halts_ticks_reconnects_and_publishes() -> None:
    broker = _Broker(asyncio.get_running_loop())
    location = _FakeLocation()
    publisher = _publisher(broker, location, reconnect_delay=0.05)

    await publisher.start()
    broker.connections[0].callbacks.on_connection_lost("flaky network")  # type: ignore[union-attr]

    await publisher.stop()
    fetches = location.fetches
    sent = len(broker.sent)
    await asyncio.sleep(0.15)

    assert publisher.state is PublisherState.STOPPED
    assert location.fetches == fetches
    assert len(broker.sent) == sent
    assert len(broker.connections) == 1
    assert publisher.supervisor.reconnect_pending is False

    await publisher.stop()
    assert publisher.status == "Stopped"


@pytest.mark.asyncio
async def test_revoked_permission_is_terminal() -> None:
    broker = _Broker(asyncio.get_running_loop())
    location = _FakeLocation(script=[SAMPLE, LocationPermissionError("HTTP 403")])
    publisher = _publisher(broker, location)

    await publisher.start()
    await asyncio.sleep(0.1)

    assert publisher.state is PublisherState.STOPPED
    assert publisher.status == STATUS_PERMISSION_DENIED
    assert broker.sent == [EXPECTED_WIRE]
    assert location.fetches == 2


@pytest.mark.asyncio
async def test_start_is_ignored_once_running_or_stopped() -> None:
    broker = _Broker(asyncio.get_running_loop())
    location = _FakeLocation()
    publisher = _publisher(broker, location, publish_interval=10.0)

    await publisher.start()
    await publisher.start()
    assert location.permission_requests == 1

    await publisher.stop()
    await publisher.start()
    assert publisher.state is PublisherState.STOPPED
    assert location.permission_requests == 1


@pytest.mark.asyncio
async def test_context_manager_starts_and_stops() -> None:
    broker = _Broker(asyncio.get_running_loop())
    publisher = _publisher(broker, _FakeLocation(), publish_interval=10.0)

    async with publisher:
        assert publisher.state is PublisherState.RUNNING

    assert publisher.state is PublisherState.STOPPED
    assert broker.connections[0].disconnected is True


@pytest.mark.asyncio
async def test_generated_client_id_when_not_configured() -> None:
    broker = _Broker(asyncio.get_running_loop())
    publisher = _publisher(broker, _FakeLocation(), client_id=None)
    assert publisher.client_id.startswith("mobile_")


@pytest.mark.asyncio
async def test_from_config_builds_paho_backed_publisher() -> None:
    config = PublisherConfig(client_id="mobile_9", reconnect_delay=7.0)
    publisher = TelemetryPublisher.from_config(config, _FakeLocation())

    assert publisher.client_id == "mobile_9"
    assert publisher.state is PublisherState.IDLE
    assert publisher.supervisor.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_from_config_rejects_invalid_config() -> None:
    with pytest.raises(BusmateConfigError):
        TelemetryPublisher.from_config(PublisherConfig(publish_interval=0), _FakeLocation())


@pytest.mark.asyncio
async def test_start_with_unusable_broker_url_ends_stopped() -> None:
    broker = _Broker(asyncio.get_running_loop())
    location = _FakeLocation()
    statuses: list[str] = []
    publisher = _publisher(broker, location, statuses, local_broker_url="ws:///mqtt")

    with pytest.raises(BusmateConfigError):
        await publisher.start()

    assert publisher.state is PublisherState.STOPPED
    assert statuses[-1] == "Stopped"
    assert broker.connections == []
    assert location.permission_requests == 0
    assert publisher.scheduler.is_running is False


class _HeldLocation(_FakeLocation):
    """Answers the first fetch at once and holds later ones until released."""

    def __init__(self, script: list[PositionSample | Exception]) -> None:
        super().__init__(script=script)
        self.release = asyncio.Event()
        self.held = asyncio.Event()

    async def get_current_position(self, request: LocationRequest) -> PositionSample:
        if self.fetches >= 1:
            self.held.set()
            await self.release.wait()
        return await super().get_current_position(request)


@pytest.mark.asyncio
async def test_stop_during_pending_fetch_drops_late_sample() -> None:
    later = PositionSample(latitude=13.0, longitude=78.0, captured_at_ms=1700000015000)
    broker = _Broker(asyncio.get_running_loop())
    location = _HeldLocation(script=[SAMPLE, later])
    publisher = _publisher(broker, location)

    await publisher.start()
    assert broker.sent == [EXPECTED_WIRE]
    await asyncio.wait_for(location.held.wait(), 1.0)

    await publisher.stop()
    location.release.set()
    await publisher.scheduler.wait_idle()

    assert location.fetches == 2
    assert broker.sent == [EXPECTED_WIRE]
    assert publisher.last_sample == SAMPLE
    assert publisher.state is PublisherState.STOPPED
