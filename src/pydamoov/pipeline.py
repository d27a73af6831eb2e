"""Realtime pipeline orchestration.

:class:`RealtimePipeline` wires the credential store, the websocket
connection and the live state store together, supervises reconnects and
exposes read accessors for query layers (REST handlers, dashboards).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Mapping
from typing import Any

import aiohttp

from pydamoov._transport import HttpTransport
from pydamoov.auth import CredentialStore
from pydamoov.config import DamoovConfig
from pydamoov.models.live import DeviceSnapshot, PipelineStatus, RiskEvent
from pydamoov.state.store import LiveStateStore
from pydamoov.stream import ConnectionState, DisconnectReason, StreamConnection

_logger = logging.getLogger(__name__)


class RealtimePipeline:
    """Supervised realtime ingestion.

    Usage::

        async with RealtimePipeline(DamoovConfig.from_env()) as pipeline:
            ...
            snapshot = pipeline.query_device("device-token")

    A pipeline whose configuration is incomplete stays inactive: it logs
    a warning and the query accessors return empty results.
    """

    def __init__(
        self,
        config: DamoovConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        store: LiveStateStore | None = None,
        on_device_update: Callable[[DeviceSnapshot], None] | None = None,
        on_risk_event: Callable[[RiskEvent], None] | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._store = store if store is not None else LiveStateStore(max_events=config.max_events)
        self._on_device_update = on_device_update
        self._on_risk_event = on_risk_event
        self._credentials: CredentialStore | None = None
        self._connection: StreamConnection | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> RealtimePipeline:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    @property
    def store(self) -> LiveStateStore:
        return self._store

    @property
    def credentials(self) -> CredentialStore | None:
        return self._credentials

    @property
    def connection(self) -> StreamConnection | None:
        return self._connection

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> bool:
        """Validate configuration and launch the supervised connection.

        Returns ``False`` (and leaves the pipeline inactive) when required
        settings are missing.
        """
        if self.is_active:
            return True

        missing = self._config.missing_settings()
        if missing:
            _logger.warning("Realtime pipeline not started; missing settings: %s", ", ".join(missing))
            return False

        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self._credentials = CredentialStore(self._config, HttpTransport(self._http_session))
        self._connection = StreamConnection(
            self._config,
            self._credentials,
            self._store,
            self._http_session,
            on_device_update=self._on_device_update,
            on_risk_event=self._on_risk_event,
        )
        self._stopping.clear()
        self._task = asyncio.get_running_loop().create_task(self._supervise(), name="pydamoov-realtime")
        _logger.info(
            "Realtime pipeline started instance_id=%s device_token=%s login=%s",
            self._config.instance_id,
            self._config.device_token or "<all>",
            "enabled" if self._credentials.login_enabled else "static-token",
        )
        return True

    async def stop(self) -> None:
        """Stop the pipeline; no reconnect is attempted afterwards.

        Returns once the supervisor and any login exchange it started have
        finished.
        """
        self._stopping.set()
        connection = self._connection
        if connection is not None:
            await connection.close()

        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._credentials is not None:
            await self._credentials.aclose()

        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        _logger.info("Realtime pipeline stopped")

    async def _supervise(self) -> None:
        connection = self._connection
        if connection is None:
            return
        while not self._stopping.is_set():
            reason = await connection.connect_once()
            if reason == DisconnectReason.SHUTDOWN or self._stopping.is_set():
                return
            delay = connection.next_reconnect_delay()
            _logger.info(
                "Reconnecting realtime websocket in %.1fs reason=%s attempt=%d",
                delay,
                reason,
                connection.attempt,
            )
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)

    # ------------------------------------------------------------------
    # Query accessors
    # ------------------------------------------------------------------

    def query_device(self, device_token: str) -> DeviceSnapshot | None:
        """Latest snapshot for one device, or ``None`` if never seen."""
        return self._store.get_device(device_token)

    def query_all_devices(self) -> Mapping[str, DeviceSnapshot]:
        return self._store.list_devices()

    def query_events(self) -> list[RiskEvent]:
        """Retained risk events, most recent first."""
        return self._store.list_events()

    def status(self) -> PipelineStatus:
        connection = self._connection
        return PipelineStatus(
            active=self.is_active,
            state=str(connection.state if connection is not None else ConnectionState.DISCONNECTED),
            attempt=connection.attempt if connection is not None else 0,
            connection_id=connection.connection_id if connection is not None else None,
            last_message_at=connection.last_message_at if connection is not None else None,
            device_count=self._store.device_count,
            event_count=self._store.event_count,
        )
