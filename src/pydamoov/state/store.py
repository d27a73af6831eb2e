"""In-memory live state store.

This is the only component allowed to mutate device state. Writes come
from the realtime connection task; reads may come from any thread (for
example a synchronous web framework), so every access goes through one
lock and only immutable models are handed out.
"""

from __future__ import annotations

import copy
import threading
from collections import deque
from collections.abc import Mapping
from types import MappingProxyType

from pydamoov._constants import MAX_EVENTS
from pydamoov.models.live import DeviceSnapshot, RiskEvent
from pydamoov.risk import RiskTier


def _detached(snapshot: DeviceSnapshot) -> DeviceSnapshot:
    # raw is a plain dict; readers must not reach the stored one.
    return snapshot.model_copy(update={"raw": copy.deepcopy(snapshot.raw)})


class LiveStateStore:
    """Latest snapshot per device plus a bounded, most-recent-first event log."""

    def __init__(self, *, max_events: int = MAX_EVENTS) -> None:
        if max_events <= 0:
            raise ValueError(f"max_events must be positive, got {max_events}")
        self._lock = threading.Lock()
        self._devices: dict[str, DeviceSnapshot] = {}
        # appendleft + maxlen evicts the oldest entry from the right.
        self._events: deque[RiskEvent] = deque(maxlen=max_events)

    @property
    def max_events(self) -> int:
        return self._events.maxlen or 0

    def upsert(self, device_token: str, snapshot: DeviceSnapshot) -> RiskEvent | None:
        """Replace the snapshot for *device_token*.

        Returns the :class:`RiskEvent` recorded for this update, or
        ``None`` when the snapshot's tier is ``none``.
        """
        update: dict[str, object] = {"raw": copy.deepcopy(snapshot.raw)}
        if snapshot.device_token != device_token:
            update["device_token"] = device_token
        snapshot = snapshot.model_copy(update=update)

        event: RiskEvent | None = None
        if snapshot.risk_tier != RiskTier.NONE:
            event = RiskEvent.from_snapshot(snapshot)

        with self._lock:
            self._devices[device_token] = snapshot
            if event is not None:
                self._events.appendleft(event)
        return event

    def get_device(self, device_token: str) -> DeviceSnapshot | None:
        with self._lock:
            snapshot = self._devices.get(device_token)
        return _detached(snapshot) if snapshot is not None else None

    def list_devices(self) -> Mapping[str, DeviceSnapshot]:
        """Read-only copy of all snapshots keyed by device token."""
        with self._lock:
            devices = dict(self._devices)
        return MappingProxyType({token: _detached(snapshot) for token, snapshot in devices.items()})

    def list_events(self) -> list[RiskEvent]:
        """Recent risk events, most recent first."""
        with self._lock:
            return list(self._events)

    @property
    def device_count(self) -> int:
        with self._lock:
            return len(self._devices)

    @property
    def event_count(self) -> int:
        with self._lock:
            return len(self._events)
