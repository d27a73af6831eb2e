"""Live device state models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from pydamoov.models._base import DamoovBaseModel
from pydamoov.risk import RiskTier


class Position(DamoovBaseModel):
    lat: float
    lon: float


class DeviceSnapshot(DamoovBaseModel):
    """Latest known state of one device.

    ``speed`` and ``speed_limit`` are kept in the unit they were reported
    in. ``overspeed_amount`` is always mph.
    ``raw`` is the last message as received; instances handed out by
    the live state store carry their own copy of it.
    """

    device_token: str
    last_update_at: datetime
    reported_at: datetime | None = None
    position: Position | None = None
    speed: float | None = None
    speed_limit: float | None = None
    overspeed_amount: float = 0.0
    risk_tier: RiskTier = RiskTier.NONE
    raw: dict[str, Any] = Field(default_factory=dict)


class RiskEvent(DamoovBaseModel):
    """An overspeed observation that classified above ``none``."""

    time: datetime
    device_token: str
    risk_tier: RiskTier
    overspeed_amount: float
    position: Position | None = None

    @classmethod
    def from_snapshot(cls, snapshot: DeviceSnapshot) -> RiskEvent:
        return cls(
            time=snapshot.last_update_at,
            device_token=snapshot.device_token,
            risk_tier=snapshot.risk_tier,
            overspeed_amount=snapshot.overspeed_amount,
            position=snapshot.position,
        )


class PipelineStatus(DamoovBaseModel):
    """Point-in-time view of the realtime pipeline for health endpoints."""

    active: bool
    state: str
    attempt: int = 0
    connection_id: str | None = None
    last_message_at: datetime | None = None
    device_count: int = 0
    event_count: int = 0
