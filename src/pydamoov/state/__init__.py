"""State/store layer.

The live state store is the single owner of per-device snapshots and
the recent risk-event history fed by the realtime connection.
"""

from pydamoov.state.store import LiveStateStore

__all__ = ["LiveStateStore"]
