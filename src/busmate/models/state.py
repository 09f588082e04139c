"""Lifecycle and result enums shared across the publisher components."""

from __future__ import annotations

from enum import StrEnum


class ConnectionState(StrEnum):
    """Broker connection state owned by the connection supervisor."""

    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    RECONNECTING = "Reconnecting"


class PublisherState(StrEnum):
    IDLE = "Idle"
    STARTING = "Starting"
    RUNNING = "Running"
    STOPPED = "Stopped"


class PermissionStatus(StrEnum):
    GRANTED = "granted"
    DENIED = "denied"


class PublishResult(StrEnum):
    """Outcome of a single best-effort publish attempt."""

    SENT = "sent"
    NOT_CONNECTED = "not_connected"
    SEND_FAILED = "send_failed"


class LocationAccuracy(StrEnum):
    """Requested fix quality, mapped by each location source as it sees fit."""

    LOWEST = "lowest"
    LOW = "low"
    BALANCED = "balanced"
    HIGH = "high"
    HIGHEST = "highest"
