from __future__ import annotations

import asyncio

import pytest
from conftest import FakeClock, FakeTransport, login_response

from pydamoov.auth import CredentialStore
from pydamoov.config import DamoovConfig
from pydamoov.exceptions import DamoovConfigError, DamoovProtocolError, DamoovTransportError
from pydamoov.models.credential import CredentialSource


def _config(**overrides) -> DamoovConfig:
    values = {
        "instance_id": "instance-1",
        "auth_instance_id": "auth-instance",
        "auth_instance_key": "auth-key",
        "login_email": "ops@example.com",
        "password": "secret",
    }
    values.update(overrides)
    return DamoovConfig(**values)


@pytest.mark.asyncio
async def test_concurrent_get_issues_single_exchange(clock: FakeClock) -> None:
    transport = FakeTransport(login_response("jwt-1"), delay=0.02)
    store = CredentialStore(_config(), transport, clock=clock)

    results = await asyncio.gather(*(store.get() for _ in range(10)))

    assert len(transport.calls) == 1
    assert {cred.token for cred in results if cred is not None} == {"jwt-1"}
    assert all(cred is not None for cred in results)


@pytest.mark.asyncio
async def test_concurrent_refresh_shares_failure(clock: FakeClock) -> None:
    transport = FakeTransport(DamoovTransportError("boom"), delay=0.02)
    store = CredentialStore(_config(), transport, clock=clock)

    results = await asyncio.gather(store.refresh(), store.refresh(), return_exceptions=True)

    assert len(transport.calls) == 1
    assert all(isinstance(result, DamoovTransportError) for result in results)


@pytest.mark.asyncio
async def test_cached_credential_reused_until_refresh_window(clock: FakeClock) -> None:
    transport = FakeTransport(login_response("jwt-1", expires_in=3600), login_response("jwt-2"))
    store = CredentialStore(_config(), transport, clock=clock)

    first = await store.get()
    clock.advance(3600 - 61)
    second = await store.get()
    clock.advance(1)
    third = await store.get()

    assert first is second
    assert first is not None and first.token == "jwt-1"
    assert third is not None and third.token == "jwt-2"
    assert len(transport.calls) == 2


@pytest.mark.asyncio
async def test_refresh_failure_keeps_previous_credential(clock: FakeClock) -> None:
    transport = FakeTransport(login_response("jwt-1", expires_in=3600), DamoovTransportError("down", status_code=503))
    store = CredentialStore(_config(), transport, clock=clock)
    original = await store.get()

    clock.advance(3590)
    with pytest.raises(DamoovTransportError):
        await store.refresh()

    assert store.current is original


@pytest.mark.asyncio
async def test_get_returns_none_when_refresh_fails_without_fallback(clock: FakeClock) -> None:
    store = CredentialStore(_config(), FakeTransport(DamoovTransportError("down")), clock=clock)

    assert await store.get() is None
    assert store.login_enabled


@pytest.mark.asyncio
async def test_get_falls_back_to_static_token(clock: FakeClock) -> None:
    transport = FakeTransport({"Result": {"unexpected": True}})
    store = CredentialStore(_config(static_token="static-jwt"), transport, clock=clock)

    credential = await store.get()

    assert credential is not None
    assert credential.token == "static-jwt"
    assert credential.source == CredentialSource.STATIC
    assert store.current is None


@pytest.mark.asyncio
async def test_static_token_used_without_login_identifiers(clock: FakeClock) -> None:
    transport = FakeTransport()
    config = DamoovConfig(instance_id="instance-1", static_token="static-jwt")
    store = CredentialStore(config, transport, clock=clock)

    credential = await store.get()

    assert credential is not None and credential.token == "static-jwt"
    assert not store.login_enabled
    assert transport.calls == []
    with pytest.raises(DamoovConfigError):
        await store.refresh()
    assert transport.calls == []


@pytest.mark.asyncio
async def test_missing_token_is_protocol_error(clock: FakeClock) -> None:
    store = CredentialStore(_config(), FakeTransport({"Result": {"AccessToken": {}}}), clock=clock)

    with pytest.raises(DamoovProtocolError):
        await store.refresh()
    assert store.current is None


@pytest.mark.asyncio
async def test_invalidate_forces_new_exchange(clock: FakeClock) -> None:
    transport = FakeTransport(login_response("jwt-1"), login_response("jwt-2"))
    store = CredentialStore(_config(), transport, clock=clock)
    await store.get()

    store.invalidate()
    assert store.current is None
    credential = await store.get()

    assert credential is not None and credential.token == "jwt-2"
    assert len(transport.calls) == 2


@pytest.mark.asyncio
async def test_new_exchange_after_previous_completed(clock: FakeClock) -> None:
    transport = FakeTransport(login_response("jwt-1"), login_response("jwt-2"))
    store = CredentialStore(_config(), transport, clock=clock)

    first = await store.refresh()
    second = await store.refresh()

    assert (first.token, second.token) == ("jwt-1", "jwt-2")
    assert store.current is second


@pytest.mark.asyncio
async def test_out_of_range_expiry_is_typed_failure(clock: FakeClock) -> None:
    transport = FakeTransport(login_response("jwt-1", expires_in=10**12))
    store = CredentialStore(_config(), transport, clock=clock)

    with pytest.raises(DamoovProtocolError):
        await store.refresh()
    assert await store.get() is None

    with_fallback = CredentialStore(_config(static_token="static-jwt"), transport, clock=clock)
    credential = await with_fallback.get()
    assert credential is not None and credential.source == CredentialSource.STATIC


@pytest.mark.asyncio
async def test_aclose_cancels_inflight_exchange(clock: FakeClock) -> None:
    transport = FakeTransport(login_response("jwt-1"), delay=5.0)
    store = CredentialStore(_config(), transport, clock=clock)
    waiter = asyncio.create_task(store.get())
    while not transport.calls:
        await asyncio.sleep(0)

    waiter.cancel()
    await store.aclose()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    pending = [task for task in asyncio.all_tasks() if task is not asyncio.current_task() and not task.done()]
    assert pending == []
    assert store.current is None

    transport.delay = 0.0
    credential = await store.refresh()
    assert credential.token == "jwt-1"
