"""Position sample model."""

from __future__ import annotations

import time
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000
_RAW_TIMESTAMP_KEYS = ("timestamp", "ts", "time")


def _now_ms() -> int:
    return int(time.time() * 1000)


class PositionSample(BaseModel):
    """A single GPS fix.

    Parameters
    ----------
    latitude : float
        Latitude in degrees.
    longitude : float
        Longitude in degrees.
    captured_at_ms : int
        Epoch milliseconds when the fix was taken. Epoch seconds are
        accepted under the raw ``timestamp``/``ts``/``time`` keys and
        converted. Defaults to *now*.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    latitude: float = Field(validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(validation_alias=AliasChoices("longitude", "lng", "lon"))
    captured_at_ms: int = Field(
        default_factory=_now_ms,
        validation_alias=AliasChoices("captured_at_ms", "timestamp", "ts", "time"),
    )

    @model_validator(mode="before")
    @classmethod
    def _normalize_fix(cls, values: Any) -> Any:
        # Fix objects shaped like {"coords": {...}, "timestamp": ...}.
        if not isinstance(values, dict):
            return values
        merged = dict(values)
        nested = values.get("coords")
        if isinstance(nested, dict):
            merged.update(nested)
        # Raw fix timestamps may be epoch seconds; captured_at_ms is taken as given.
        for key in _RAW_TIMESTAMP_KEYS:
            raw = merged.get(key)
            if isinstance(raw, (int, float)) and not isinstance(raw, bool) and 0 < raw < _MS_THRESHOLD:
                merged[key] = int(raw * 1000)
        return merged
