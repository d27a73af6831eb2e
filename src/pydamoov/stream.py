"""Realtime websocket connection.

One :class:`StreamConnection` owns the websocket to the realtime service.
Each call to :meth:`StreamConnection.connect_once` runs a single
connection lifetime::

    disconnected -> connecting -> authenticating -> subscribed -> disconnected

and returns why it ended. The caller (see :mod:`pydamoov.pipeline`) then
waits :meth:`StreamConnection.next_reconnect_delay` before the next
attempt. ``closing`` is entered on explicit teardown and suppresses any
further attempts.

Inbound frames are handled strictly in arrival order on the task that
runs :meth:`connect_once`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import aiohttp

from pydamoov._constants import AUTH_ERROR_CODES, AUTH_REJECT_HTTP_STATUSES, RECONNECT_MULTIPLIER
from pydamoov._redact import redact_for_log, short_token
from pydamoov.auth import CredentialStore
from pydamoov.config import DamoovConfig
from pydamoov.exceptions import DamoovAuthRejectedError, DamoovError, DamoovProtocolError, DamoovTransportError
from pydamoov.ingestion.device_update import build_device_snapshot
from pydamoov.ingestion.normalize import first_present, safe_str
from pydamoov.models.credential import Credential
from pydamoov.models.live import DeviceSnapshot, RiskEvent
from pydamoov.state.store import LiveStateStore

_logger = logging.getLogger(__name__)

_MAX_BACKOFF_EXPONENT = 16


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    SUBSCRIBED = "subscribed"
    CLOSING = "closing"


class DisconnectReason(StrEnum):
    CLOSED = "closed"
    TRANSPORT_ERROR = "transport_error"
    AUTH_REJECTED = "auth_rejected"
    NO_CREDENTIAL = "no_credential"
    SHUTDOWN = "shutdown"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


def is_auth_error_code(code: Any) -> bool:
    """Whether an ``error`` message code means the token was rejected."""
    text = safe_str(code)
    return text is not None and text.lower() in AUTH_ERROR_CODES


class StreamConnection:
    """Connection state machine for the realtime websocket."""

    def __init__(
        self,
        config: DamoovConfig,
        credentials: CredentialStore,
        store: LiveStateStore,
        http_session: aiohttp.ClientSession,
        *,
        clock: Callable[[], datetime] = _utcnow,
        rng: random.Random | None = None,
        on_device_update: Callable[[DeviceSnapshot], None] | None = None,
        on_risk_event: Callable[[RiskEvent], None] | None = None,
    ) -> None:
        self._config = config
        self._credentials = credentials
        self._store = store
        self._http = http_session
        self._clock = clock
        self._rng = rng or random.Random()
        self._on_device_update = on_device_update
        self._on_risk_event = on_risk_event

        self._state = ConnectionState.DISCONNECTED
        self._attempt = 0
        self._last_reason: DisconnectReason | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._auth_rejected = False
        self._connection_id: str | None = None
        self._last_message_at: datetime | None = None

        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "welcome": self._on_welcome,
            "authenticated": self._on_authenticated,
            "subscribed": self._on_subscribed,
            "device_update": self._on_device_update_message,
            "ping": self._on_ping,
            "error": self._on_error,
        }

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempt(self) -> int:
        """Consecutive connection lifetimes that ended without a healthy subscription."""
        return self._attempt

    @property
    def last_disconnect_reason(self) -> DisconnectReason | None:
        return self._last_reason

    @property
    def connection_id(self) -> str | None:
        return self._connection_id

    @property
    def last_message_at(self) -> datetime | None:
        return self._last_message_at

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect_once(self) -> DisconnectReason:
        """Run one connection lifetime and return why it ended.

        Never raises for connection, authentication or payload failures;
        those are logged and reported through the returned reason.
        """
        if self._state == ConnectionState.CLOSING:
            return DisconnectReason.SHUTDOWN

        self._auth_rejected = False
        try:
            reason = await self._run_session()
        except DamoovTransportError as exc:
            _logger.warning("Realtime connection failed: %s", exc)
            reason = DisconnectReason.TRANSPORT_ERROR
        except Exception:
            _logger.exception("Unexpected failure in realtime connection")
            reason = DisconnectReason.TRANSPORT_ERROR
        finally:
            await self._close_ws()

        if self._state == ConnectionState.CLOSING:
            return DisconnectReason.SHUTDOWN

        if self._auth_rejected:
            reason = DisconnectReason.AUTH_REJECTED
        self._set_state(ConnectionState.DISCONNECTED)
        self._attempt += 1
        self._last_reason = reason
        _logger.info("Realtime connection ended reason=%s attempt=%d", reason, self._attempt)
        return reason

    async def close(self) -> None:
        """Tear down the websocket and suppress any further attempts."""
        self._set_state(ConnectionState.CLOSING)
        await self._close_ws()

    def next_reconnect_delay(self) -> float:
        """Delay before the next attempt.

        The base is the ordinary reconnect delay, or the shorter
        authentication-retry delay when the last lifetime ended with a
        rejected token (a fresh token has already been requested by then).
        The base doubles with each consecutive failure up to the configured
        ceiling, and symmetric jitter is applied on top.
        """
        if self._last_reason == DisconnectReason.AUTH_REJECTED:
            base = self._config.auth_retry_delay
        else:
            base = self._config.reconnect_delay
        exponent = min(max(0, self._attempt - 1), _MAX_BACKOFF_EXPONENT)
        ceiling = max(self._config.reconnect_max_delay, base)
        delay = min(base * RECONNECT_MULTIPLIER**exponent, ceiling)

        jitter = self._config.reconnect_jitter
        if jitter > 0:
            spread = delay * jitter
            delay += self._rng.uniform(-spread, spread)
        return max(0.0, delay)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def _run_session(self) -> DisconnectReason:
        credential = await self._credentials.get()
        if credential is None:
            _logger.warning("No realtime credential available; skipping connection attempt")
            return DisconnectReason.NO_CREDENTIAL
        if self._state == ConnectionState.CLOSING:
            return DisconnectReason.SHUTDOWN

        self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await self._open()
        except DamoovAuthRejectedError as exc:
            _logger.warning("Realtime handshake rejected: %s", exc)
            await self._reject_authentication(exc.code)
            return DisconnectReason.AUTH_REJECTED
        self._ws = ws

        self._set_state(ConnectionState.AUTHENTICATING)
        await self._send_json(self._build_authenticate_message(credential))
        _logger.debug("Sent authenticate message token=%s", short_token(credential.token))

        loop = asyncio.get_running_loop()
        auth_deadline = loop.time() + self._config.auth_timeout
        while True:
            if self._auth_rejected:
                return DisconnectReason.AUTH_REJECTED
            if self._state == ConnectionState.CLOSING:
                return DisconnectReason.SHUTDOWN

            timeout: float | None = None
            if self._state == ConnectionState.AUTHENTICATING:
                timeout = max(0.0, auth_deadline - loop.time())
            try:
                msg = await asyncio.wait_for(ws.receive(), timeout)
            except TimeoutError as exc:
                raise DamoovTransportError(
                    f"No authentication acknowledgement within {self._config.auth_timeout:.0f}s"
                ) from exc

            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                await self.handle_frame(msg.data)
            elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                _logger.info("Realtime websocket closed code=%s reason=%s", ws.close_code, msg.extra)
                return DisconnectReason.CLOSED
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise DamoovTransportError(f"Realtime websocket error: {ws.exception()}")

    async def _open(self) -> aiohttp.ClientWebSocketResponse:
        _logger.info("Connecting to realtime websocket %s", self._config.ws_url)
        try:
            ws = await asyncio.wait_for(
                self._http.ws_connect(self._config.ws_url, heartbeat=self._config.ws_heartbeat),
                self._config.auth_timeout,
            )
        except aiohttp.WSServerHandshakeError as exc:
            if exc.status in AUTH_REJECT_HTTP_STATUSES:
                raise DamoovAuthRejectedError(
                    f"Handshake answered with HTTP {exc.status}",
                    code=str(exc.status),
                ) from exc
            raise DamoovTransportError(
                f"Handshake answered with HTTP {exc.status}",
                status_code=exc.status,
                url=self._config.ws_url,
            ) from exc
        except TimeoutError as exc:
            raise DamoovTransportError("Timed out opening realtime websocket", url=self._config.ws_url) from exc
        except (aiohttp.ClientError, OSError) as exc:
            raise DamoovTransportError(f"Could not open realtime websocket: {exc}", url=self._config.ws_url) from exc
        _logger.info("Realtime websocket connected")
        return ws

    def _build_authenticate_message(self, credential: Credential) -> dict[str, Any]:
        return {
            "type": "authenticate",
            "access_token": credential.token,
            "instance_id": self._config.instance_id,
            "client_id": self._config.client_id,
            # None subscribes to every device of the instance.
            "device_token": self._config.device_token,
            "units": self._config.units,
            "timezone": self._config.time_zone,
            "date_format": self._config.date_format,
        }

    async def _reject_authentication(self, code: str) -> None:
        """Drop the rejected token, fetch a new one and end the lifetime."""
        self._auth_rejected = True
        self._credentials.invalidate()
        try:
            await self._credentials.refresh()
        except DamoovError as exc:
            _logger.warning("Credential refresh after rejection (code=%s) failed: %s", code, exc)
        await self._close_ws()

    async def _close_ws(self) -> None:
        ws = self._ws
        self._ws = None
        if ws is None or ws.closed:
            return
        try:
            await ws.close()
        except (aiohttp.ClientError, OSError):
            _logger.debug("Realtime websocket close failed", exc_info=True)

    async def _send_json(self, payload: dict[str, Any]) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            _logger.debug("Dropping outbound %s: websocket not open", payload.get("type"))
            return
        try:
            await ws.send_json(payload)
        except (aiohttp.ClientError, OSError) as exc:
            _logger.warning("Failed to send %s: %s", payload.get("type"), exc)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        _logger.debug("Realtime connection state %s -> %s", self._state, state)
        self._state = state

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def handle_frame(self, data: str | bytes) -> None:
        """Decode one websocket frame and dispatch it."""
        self._last_message_at = self._clock()
        text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            _logger.warning("Dropping non-JSON realtime frame: %s", text[:200])
            return
        if not isinstance(message, dict):
            _logger.warning("Dropping realtime frame that is not an object: %s", text[:200])
            return
        if self._config.log_payloads:
            _logger.debug("Realtime frame parsed=%s", redact_for_log(message))
        await self.handle_message(message)

    async def handle_message(self, message: dict[str, Any]) -> None:
        """Dispatch a decoded message by its ``type``.

        Failures are contained to the message; the connection stays up.
        """
        kind = str(message.get("type") or "")
        handler = self._handlers.get(kind)
        if handler is None:
            _logger.debug("Ignoring realtime message type=%s", kind or "<missing>")
            return
        try:
            await handler(message)
        except DamoovProtocolError as exc:
            _logger.warning("Dropping malformed %s message: %s", kind, exc)
        except Exception:
            _logger.exception("Failed to handle realtime %s message", kind)

    async def _on_welcome(self, message: dict[str, Any]) -> None:
        self._connection_id = safe_str(first_present(message, ("connection_id", "connectionId")))
        _logger.info(
            "Realtime welcome connection_id=%s instance_id=%s",
            self._connection_id,
            safe_str(first_present(message, ("instance_id", "instanceId"))),
        )

    async def _on_authenticated(self, message: dict[str, Any]) -> None:
        _logger.info("Realtime websocket authenticated")
        self._mark_subscribed()

    async def _on_subscribed(self, message: dict[str, Any]) -> None:
        _logger.info("Subscribed to realtime topic=%s", message.get("topic"))
        self._mark_subscribed()

    def _mark_subscribed(self) -> None:
        if self._state != ConnectionState.AUTHENTICATING:
            return
        self._set_state(ConnectionState.SUBSCRIBED)
        self._attempt = 0

    async def _on_device_update_message(self, message: dict[str, Any]) -> None:
        snapshot = build_device_snapshot(
            message,
            received_at=self._clock(),
            speed_unit=self._config.speed_unit,
        )
        event = self._store.upsert(snapshot.device_token, snapshot)
        _logger.debug(
            "Realtime device_update device=%s risk=%s overspeed=%.1f mph",
            snapshot.device_token,
            snapshot.risk_tier,
            snapshot.overspeed_amount,
        )

        if self._on_device_update is not None:
            try:
                self._on_device_update(snapshot)
            except Exception:
                _logger.debug("on_device_update callback failed", exc_info=True)
        if event is not None and self._on_risk_event is not None:
            try:
                self._on_risk_event(event)
            except Exception:
                _logger.debug("on_risk_event callback failed", exc_info=True)

    async def _on_ping(self, message: dict[str, Any]) -> None:
        await self._send_json({"type": "pong", "timestamp": _now_ms()})

    async def _on_error(self, message: dict[str, Any]) -> None:
        code = first_present(message, ("code", "status", "error_code"))
        detail = first_present(message, ("message", "error", "detail"))
        if is_auth_error_code(code):
            _logger.warning("Realtime service rejected credential code=%s message=%s", code, detail)
            await self._reject_authentication(str(code))
            return
        _logger.warning("Realtime error from server code=%s message=%s", code, detail)
