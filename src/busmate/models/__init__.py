"""Data models for the busmate publisher."""

from busmate.models.payload import ClientIdentity, TelemetryPayload
from busmate.models.position import PositionSample
from busmate.models.state import (
    ConnectionState,
    LocationAccuracy,
    PermissionStatus,
    PublisherState,
    PublishResult,
)

__all__ = [
    "ClientIdentity",
    "ConnectionState",
    "LocationAccuracy",
    "PermissionStatus",
    "PositionSample",
    "PublishResult",
    "PublisherState",
    "TelemetryPayload",
]
