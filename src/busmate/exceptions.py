"""Custom exception hierarchy for busmate."""

from __future__ import annotations


class BusmateError(Exception):
    """Base exception for all busmate errors."""


class BusmateConfigError(BusmateError):
    """Invalid or missing configuration."""


class BusmateLocationError(BusmateError):
    """Base for failures reported by a location source."""


class LocationFetchError(BusmateLocationError):
    """A single position fetch failed (no fix, timeout, bad response).

    Transient: the current tick is skipped and the next one proceeds normally.
    """


class LocationPermissionError(BusmateLocationError):
    """Access to the device location was refused.

    Terminal for the publishing session; the host process keeps running.
    """


class InvalidSampleError(BusmateError):
    """A position sample carried non-finite coordinates."""


class BrokerConnectError(BusmateError):
    """Opening the broker connection failed before a session was established."""

    def __init__(self, message: str, *, url: str = "") -> None:
        self.url = url
        super().__init__(message)
