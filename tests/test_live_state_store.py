from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

import pytest

from pydamoov.models.live import DeviceSnapshot, Position
from pydamoov.risk import RiskTier
from pydamoov.state.store import LiveStateStore


def _dt(offset: int = 0) -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC) + timedelta(seconds=offset)


def _snapshot(token: str, *, offset: int = 0, tier: RiskTier = RiskTier.NONE, **fields) -> DeviceSnapshot:
    overspeed = {RiskTier.NONE: 0.0, RiskTier.MILD: 6.0, RiskTier.MEDIUM: 12.0, RiskTier.SEVERE: 25.0}[tier]
    return DeviceSnapshot(
        device_token=token,
        last_update_at=_dt(offset),
        overspeed_amount=overspeed,
        risk_tier=tier,
        **fields,
    )


def test_upsert_creates_one_snapshot_per_device() -> None:
    store = LiveStateStore()

    store.upsert("dev-1", _snapshot("dev-1"))

    assert store.device_count == 1
    snapshot = store.get_device("dev-1")
    assert snapshot is not None
    assert snapshot.last_update_at == _dt()
    assert store.get_device("dev-2") is None


def test_second_upsert_replaces_instead_of_merging() -> None:
    store = LiveStateStore()
    store.upsert(
        "dev-1",
        _snapshot("dev-1", tier=RiskTier.SEVERE, position=Position(lat=1.0, lon=2.0), raw={"n": 1}),
    )

    store.upsert("dev-1", _snapshot("dev-1", offset=5, raw={"n": 2}))

    snapshot = store.get_device("dev-1")
    assert snapshot is not None
    assert store.device_count == 1
    assert snapshot.position is None
    assert snapshot.risk_tier == RiskTier.NONE
    assert snapshot.overspeed_amount == 0.0
    assert snapshot.raw == {"n": 2}


def test_no_event_for_none_tier() -> None:
    store = LiveStateStore()

    event = store.upsert("dev-1", _snapshot("dev-1"))

    assert event is None
    assert store.list_events() == []


def test_risk_event_recorded_from_snapshot() -> None:
    store = LiveStateStore()
    position = Position(lat=37.0, lon=-122.0)

    event = store.upsert("dev-1", _snapshot("dev-1", tier=RiskTier.MEDIUM, position=position))

    assert event is not None
    assert store.list_events() == [event]
    assert event.device_token == "dev-1"
    assert event.risk_tier == RiskTier.MEDIUM
    assert event.overspeed_amount == 12.0
    assert event.position == position
    assert event.time == _dt()


def test_events_bounded_and_most_recent_first() -> None:
    store = LiveStateStore()

    for i in range(450):
        store.upsert(f"dev-{i % 7}", _snapshot(f"dev-{i % 7}", offset=i, tier=RiskTier.MILD))

    events = store.list_events()
    assert len(events) == 200
    assert store.event_count == 200
    assert events[0].time == _dt(449)
    assert events[-1].time == _dt(250)
    assert all(a.time > b.time for a, b in zip(events, events[1:], strict=False))


def test_custom_capacity() -> None:
    store = LiveStateStore(max_events=3)
    for i in range(5):
        store.upsert("dev-1", _snapshot("dev-1", offset=i, tier=RiskTier.SEVERE))

    assert [e.time for e in store.list_events()] == [_dt(4), _dt(3), _dt(2)]
    with pytest.raises(ValueError):
        LiveStateStore(max_events=0)


def test_upsert_keys_by_argument_token() -> None:
    store = LiveStateStore()

    store.upsert("dev-real", _snapshot("dev-other"))

    snapshot = store.get_device("dev-real")
    assert snapshot is not None
    assert snapshot.device_token == "dev-real"


def test_list_devices_is_read_only_copy() -> None:
    store = LiveStateStore()
    store.upsert("dev-1", _snapshot("dev-1"))

    view = store.list_devices()
    store.upsert("dev-2", _snapshot("dev-2"))

    assert set(view) == {"dev-1"}
    with pytest.raises(TypeError):
        view["dev-3"] = _snapshot("dev-3")  # type: ignore[index]


def test_concurrent_writers_and_readers() -> None:
    store = LiveStateStore(max_events=50)
    errors: list[BaseException] = []

    def writer(worker: int) -> None:
        for i in range(300):
            token = f"dev-{worker}-{i % 10}"
            store.upsert(token, _snapshot(token, offset=i, tier=RiskTier.MILD))

    def reader() -> None:
        try:
            for _ in range(300):
                for token, snapshot in store.list_devices().items():
                    assert snapshot.device_token == token
                assert len(store.list_events()) <= 50
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    threads += [threading.Thread(target=reader) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert not errors
    assert store.device_count == 40
    assert store.event_count == 50


def test_raw_payload_isolated_from_writers_and_readers() -> None:
    store = LiveStateStore()
    payload = {"type": "device_update", "position": {"speed": 10.0}}
    store.upsert("dev-1", _snapshot("dev-1", raw=payload))

    payload["position"]["speed"] = 99.0
    first = store.get_device("dev-1")
    assert first is not None
    first.raw["position"]["speed"] = 42.0
    store.list_devices()["dev-1"].raw["type"] = "tampered"

    stored = store.get_device("dev-1")
    assert stored is not None
    assert stored.raw == {"type": "device_update", "position": {"speed": 10.0}}
