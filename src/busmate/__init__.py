"""busmate - Periodic GPS location publisher over MQTT for the BusMate tracker."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("busmate")
except PackageNotFoundError:
    __version__ = "0+local"
from busmate.config import LocationRequest, PublisherConfig
from busmate.encoder import encode, format_coordinate
from busmate.exceptions import (
    BrokerConnectError,
    BusmateConfigError,
    BusmateError,
    BusmateLocationError,
    InvalidSampleError,
    LocationFetchError,
    LocationPermissionError,
)
from busmate.location import HttpLocationSource, LocationSource, StaticLocationSource
from busmate.models import (
    ClientIdentity,
    ConnectionState,
    LocationAccuracy,
    PermissionStatus,
    PositionSample,
    PublisherState,
    PublishResult,
    TelemetryPayload,
)
from busmate.publisher import TelemetryPublisher
from busmate.scheduler import PublishScheduler
from busmate.supervisor import ConnectionSupervisor

__all__ = [
    "__version__",
    "BrokerConnectError",
    "BusmateConfigError",
    "BusmateError",
    "BusmateLocationError",
    "ClientIdentity",
    "ConnectionState",
    "ConnectionSupervisor",
    "HttpLocationSource",
    "InvalidSampleError",
    "LocationAccuracy",
    "LocationFetchError",
    "LocationPermissionError",
    "LocationRequest",
    "LocationSource",
    "PermissionStatus",
    "PositionSample",
    "PublishResult",
    "PublishScheduler",
    "PublisherConfig",
    "PublisherState",
    "StaticLocationSource",
    "TelemetryPayload",
    "TelemetryPublisher",
    "encode",
    "format_coordinate",
]
