"""pydamoov - Async realtime ingestion for Damoov vehicle telemetry."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pydamoov")
except PackageNotFoundError:
    __version__ = "0+local"

from pydamoov.auth import CredentialStore
from pydamoov.config import DamoovConfig
from pydamoov.exceptions import (
    DamoovAuthRejectedError,
    DamoovConfigError,
    DamoovError,
    DamoovProtocolError,
    DamoovTransportError,
)
from pydamoov.models import (
    Credential,
    CredentialSource,
    DeviceSnapshot,
    PipelineStatus,
    Position,
    RiskEvent,
    RiskTier,
)
from pydamoov.pipeline import RealtimePipeline
from pydamoov.risk import classify, overspeed_mph, to_mph
from pydamoov.state import LiveStateStore
from pydamoov.stream import ConnectionState, DisconnectReason, StreamConnection

__all__ = [
    "__version__",
    "ConnectionState",
    "Credential",
    "CredentialSource",
    "CredentialStore",
    "DamoovAuthRejectedError",
    "DamoovConfig",
    "DamoovConfigError",
    "DamoovError",
    "DamoovProtocolError",
    "DamoovTransportError",
    "DeviceSnapshot",
    "DisconnectReason",
    "LiveStateStore",
    "PipelineStatus",
    "Position",
    "RealtimePipeline",
    "RiskEvent",
    "RiskTier",
    "StreamConnection",
    "classify",
    "overspeed_mph",
    "to_mph",
]
