"""``device_update`` ingestion.

The realtime service is inconsistent about key spelling (``lat`` vs
``latitude`` vs ``Latitude``) and about whether position fields are
nested under ``position``. Every field therefore lists its accepted
keys in priority order; the rest of the pipeline only sees
:class:`~pydamoov.models.live.DeviceSnapshot`.
"""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from pydamoov.exceptions import DamoovProtocolError
from pydamoov.ingestion.normalize import first_present, parse_timestamp, safe_float, safe_str
from pydamoov.models.live import DeviceSnapshot, Position
from pydamoov.risk import classify, overspeed_mph

_POSITION_KEYS = ("position", "Position", "location", "Location")


class DeviceUpdateMessage(BaseModel):
    """Tolerant view over a raw ``device_update`` payload."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    device_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("device_token", "deviceToken", "DeviceToken"),
    )
    latitude: float | None = Field(
        default=None,
        validation_alias=AliasChoices("lat", "latitude", "Latitude", "Lat"),
    )
    longitude: float | None = Field(
        default=None,
        validation_alias=AliasChoices("lon", "lng", "longitude", "Longitude", "Lon"),
    )
    coordinates: list[Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("coordinates", "Coordinates"),
    )
    speed: float | None = Field(default=None, validation_alias=AliasChoices("speed", "Speed", "speed_mps"))
    speed_limit: float | None = Field(
        default=None,
        validation_alias=AliasChoices("speed_limit", "speedLimit", "speed_limit_mps", "SpeedLimit"),
    )
    timestamp: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("timestamp", "Timestamp", "time", "recorded_at", "recordedAt"),
    )

    @model_validator(mode="before")
    @classmethod
    def _merge_nested_position(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        nested = first_present(values, _POSITION_KEYS)
        merged = dict(values)
        if isinstance(nested, dict):
            merged.update({k: v for k, v in nested.items() if v is not None})
        return merged

    @field_validator("device_token", mode="before")
    @classmethod
    def _coerce_token(cls, value: Any) -> str | None:
        return safe_str(value)

    @field_validator("latitude", "longitude", "speed", "speed_limit", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("coordinates", mode="before")
    @classmethod
    def _coerce_coordinates(cls, value: Any) -> list[Any] | None:
        return value if isinstance(value, (list, tuple)) else None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @property
    def position(self) -> Position | None:
        lat = self.latitude
        lon = self.longitude
        # GeoJSON order: [lon, lat]
        if (lat is None or lon is None) and self.coordinates is not None and len(self.coordinates) >= 2:
            lon = safe_float(self.coordinates[0]) if lon is None else lon
            lat = safe_float(self.coordinates[1]) if lat is None else lat
        if lat is None or lon is None:
            return None
        return Position(lat=lat, lon=lon)


def build_device_snapshot(
    payload: dict[str, Any],
    *,
    received_at: datetime,
    speed_unit: str = "mps",
) -> DeviceSnapshot:
    """Normalize a ``device_update`` payload and derive its risk fields.

    Raises
    ------
    DamoovProtocolError
        If the payload is not an object or carries no device identity.
    """
    if not isinstance(payload, dict):
        raise DamoovProtocolError(f"device_update payload is not an object: {type(payload).__name__}")
    try:
        message = DeviceUpdateMessage.model_validate(payload)
    except ValidationError as exc:
        raise DamoovProtocolError(f"Invalid device_update payload: {exc}") from exc

    if message.device_token is None:
        raise DamoovProtocolError("device_update payload has no device token")

    overspeed = overspeed_mph(message.speed, message.speed_limit, speed_unit)
    return DeviceSnapshot(
        device_token=message.device_token,
        last_update_at=received_at,
        reported_at=message.timestamp,
        position=message.position,
        speed=message.speed,
        speed_limit=message.speed_limit,
        overspeed_amount=overspeed,
        risk_tier=classify(overspeed),
        raw=copy.deepcopy(payload),
    )
