"""Wire payload and client identity models."""

from __future__ import annotations

import secrets

from pydantic import BaseModel, ConfigDict, Field

#: Client ids are ``mobile_`` followed by an integer in ``[0, CLIENT_ID_RANGE)``.
CLIENT_ID_PREFIX = "mobile_"
CLIENT_ID_RANGE = 10_000


class TelemetryPayload(BaseModel):
    """Serialized location report published to the broker.

    Field order is the wire key order.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    seats: int
    lat: str
    lng: str
    ts: int
    client_id: str = Field(alias="clientId")

    def to_json(self) -> str:
        """Compact JSON with the broker's camelCase keys."""
        return self.model_dump_json(by_alias=True)

    def to_wire(self) -> bytes:
        return self.to_json().encode("utf-8")


class ClientIdentity(BaseModel):
    """Process-lifetime MQTT client identity. Not persisted across restarts."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    client_id: str = Field(min_length=1)

    @classmethod
    def generate(cls) -> ClientIdentity:
        return cls(client_id=f"{CLIENT_ID_PREFIX}{secrets.randbelow(CLIENT_ID_RANGE)}")
