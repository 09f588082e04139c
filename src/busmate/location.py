"""Location sources feeding the publisher."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import aiohttp
from pydantic import ValidationError

from busmate.config import LocationRequest
from busmate.exceptions import LocationFetchError, LocationPermissionError
from busmate.models.position import PositionSample
from busmate.models.state import PermissionStatus

_logger = logging.getLogger(__name__)

_PERMISSION_STATUSES = frozenset({401, 403})


class LocationSource(Protocol):
    """Structural interface for anything that can produce a position fix.

    ``request_permission`` is asked once per session and its answer is final.
    ``get_current_position`` raises :class:`LocationFetchError` for transient
    failures and :class:`LocationPermissionError` when access is revoked.
    """

    async def request_permission(self) -> PermissionStatus:
        ...

    async def get_current_position(self, request: LocationRequest) -> PositionSample:
        ...


class StaticLocationSource:
    """Location source that always reports the same coordinates.

    Useful for bench testing a broker without a GPS receiver.
    """

    def __init__(self, latitude: float, longitude: float, *, granted: bool = True) -> None:
        self._latitude = latitude
        self._longitude = longitude
        self._granted = granted

    async def request_permission(self) -> PermissionStatus:
        return PermissionStatus.GRANTED if self._granted else PermissionStatus.DENIED

    async def get_current_position(self, request: LocationRequest) -> PositionSample:
        return PositionSample(latitude=self._latitude, longitude=self._longitude)


class HttpLocationSource:
    """Location source polling a JSON position endpoint.

    The endpoint answers ``GET`` with an object carrying ``latitude``/``lat``,
    ``longitude``/``lng`` and optionally ``timestamp`` (seconds or
    milliseconds), either at the top level or under ``coords``. HTTP 401/403
    means location access was refused.

    Usage::

        async with HttpLocationSource("http://phone.local:8080/location") as source:
            sample = await source.get_current_position(LocationRequest())
    """

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._url = url
        self._external_session = session is not None
        self._http_session = session
        self._headers = dict(headers or {})

    async def __aenter__(self) -> HttpLocationSource:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    async def request_permission(self) -> PermissionStatus:
        """Query the endpoint once; only an explicit refusal counts as denied."""
        try:
            await self._fetch(LocationRequest())
        except LocationPermissionError:
            return PermissionStatus.DENIED
        except LocationFetchError as exc:
            _logger.debug("Location endpoint check failed, assuming access: %s", exc)
        return PermissionStatus.GRANTED

    async def get_current_position(self, request: LocationRequest) -> PositionSample:
        body = await self._fetch(request)
        try:
            return PositionSample.model_validate(body)
        except ValidationError as exc:
            raise LocationFetchError(f"Unusable position from {self._url}: {exc.error_count()} error(s)") from exc

    async def _fetch(self, request: LocationRequest) -> dict[str, Any]:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()

        params = {"accuracy": request.accuracy.value}
        timeout = aiohttp.ClientTimeout(total=request.timeout)

        _logger.debug("GET %s accuracy=%s", self._url, request.accuracy.value)

        try:
            async with self._http_session.get(
                self._url,
                params=params,
                headers=self._headers,
                timeout=timeout,
            ) as resp:
                text = await resp.text()
                if resp.status in _PERMISSION_STATUSES:
                    raise LocationPermissionError(f"HTTP {resp.status} from {self._url}")
                if resp.status != 200:
                    raise LocationFetchError(f"HTTP {resp.status} from {self._url}: {text[:200]}")
        except (LocationFetchError, LocationPermissionError):
            raise
        except TimeoutError as exc:
            raise LocationFetchError(f"Location request to {self._url} timed out after {request.timeout}s") from exc
        except aiohttp.ClientError as exc:
            raise LocationFetchError(f"Location request to {self._url} failed: {exc}") from exc

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise LocationFetchError(f"Invalid JSON from {self._url}: {text[:200]}") from exc

        if not isinstance(body, dict):
            raise LocationFetchError(f"Location response from {self._url} is not an object")
        return body
