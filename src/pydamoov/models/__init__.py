"""Data models for pydamoov."""

from pydamoov.models._base import DamoovBaseModel
from pydamoov.models.credential import Credential, CredentialSource
from pydamoov.models.live import DeviceSnapshot, PipelineStatus, Position, RiskEvent
from pydamoov.risk import RiskTier

__all__ = [
    "Credential",
    "CredentialSource",
    "DamoovBaseModel",
    "DeviceSnapshot",
    "PipelineStatus",
    "Position",
    "RiskEvent",
    "RiskTier",
]
