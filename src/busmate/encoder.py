"""Position sample to wire payload encoding."""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal

from busmate.exceptions import InvalidSampleError
from busmate.models.payload import TelemetryPayload
from busmate.models.position import PositionSample

COORDINATE_PLACES = 5
_QUANTUM = Decimal(1).scaleb(-COORDINATE_PLACES)


def format_coordinate(value: float) -> str:
    """Format a coordinate with exactly five fractional digits.

    Rounds half away from zero on the shortest decimal form of *value*
    (``repr``), so ``12.345675`` becomes ``"12.34568"`` rather than being
    pulled down by its binary representation.

    Raises :class:`InvalidSampleError` for NaN or infinite values.
    """
    if not math.isfinite(value):
        raise InvalidSampleError(f"coordinate must be finite, got {value!r}")
    # Decimal's ROUND_HALF_UP rounds ties away from zero for negatives too.
    quantized = Decimal(repr(float(value))).quantize(_QUANTUM, rounding=ROUND_HALF_UP)
    if quantized.is_zero():
        # No "-0.00000" on the wire.
        quantized = quantized.copy_abs()
    return format(quantized, "f")


def encode(sample: PositionSample, *, client_id: str, seat_count: int) -> TelemetryPayload:
    """Build the wire payload for *sample* and the static client metadata."""
    return TelemetryPayload(
        seats=seat_count,
        lat=format_coordinate(sample.latitude),
        lng=format_coordinate(sample.longitude),
        ts=sample.captured_at_ms,
        client_id=client_id,
    )
