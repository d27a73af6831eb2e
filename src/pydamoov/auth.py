"""Realtime credential lifecycle.

The realtime websocket authenticates with a short-lived bearer token
obtained from the identity service. :class:`CredentialStore` caches that
token, refreshes it ahead of expiry and makes sure concurrent callers
share a single in-flight login exchange.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from pydamoov._api.login import login
from pydamoov._redact import short_token
from pydamoov._transport import Transport
from pydamoov.config import DamoovConfig
from pydamoov.exceptions import DamoovConfigError, DamoovError, DamoovProtocolError, DamoovTransportError
from pydamoov.models.credential import Credential

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CredentialStore:
    """Cache for the realtime access token.

    The cached :class:`Credential` is immutable and replaced wholesale, so
    :attr:`current` can be read from any thread. :meth:`get`,
    :meth:`refresh` and :meth:`invalidate` must be called from the event
    loop that owns the store.
    """

    def __init__(
        self,
        config: DamoovConfig,
        transport: Transport,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._transport = transport
        self._clock = clock
        self._credential: Credential | None = None
        self._inflight: asyncio.Task[Credential] | None = None
        self._login_disabled = not config.has_login_credentials

    @property
    def current(self) -> Credential | None:
        """The cached credential, without refreshing."""
        return self._credential

    @property
    def login_enabled(self) -> bool:
        return not self._login_disabled

    async def get(self) -> Credential | None:
        """Return a credential usable for a new authentication.

        Refreshes when the cache is empty or inside the refresh window.
        If the refresh fails the configured static token is returned
        instead, or ``None`` when there is none.
        """
        credential = self._credential
        if credential is not None and credential.is_fresh(self._clock(), self._config.refresh_window):
            return credential

        if self._login_disabled:
            return self._static_fallback()

        try:
            return await self.refresh()
        except DamoovError as exc:
            fallback = self._static_fallback()
            if fallback is not None:
                _logger.warning("Login exchange failed (%s); using configured static token", type(exc).__name__)
            else:
                _logger.error("No realtime credential available: %s", exc)
            return fallback

    async def refresh(self) -> Credential:
        """Perform the login exchange and cache the result.

        Concurrent callers wait on the exchange already in flight instead
        of starting another one. The previous credential is left in place
        when the exchange fails.

        Raises
        ------
        DamoovConfigError
            Login identifiers are not configured (never retried).
        DamoovTransportError
            Network failure, timeout or non-2xx status.
        DamoovProtocolError
            The response does not carry a token.
        """
        inflight = self._inflight
        if inflight is None:
            if self._login_disabled:
                raise DamoovConfigError("Login exchange disabled: identifiers not configured")
            inflight = asyncio.get_running_loop().create_task(self._exchange())
            inflight.add_done_callback(self._clear_inflight)
            self._inflight = inflight
        else:
            _logger.debug("Joining in-flight login exchange")
        # Shield so one cancelled waiter does not abort the exchange for the others.
        return await asyncio.shield(inflight)

    async def aclose(self) -> None:
        """Cancel a login exchange still in flight and wait for it to end."""
        inflight = self._inflight
        if inflight is None or inflight.done():
            return
        _logger.debug("Cancelling in-flight login exchange")
        inflight.cancel()
        await asyncio.gather(inflight, return_exceptions=True)

    def invalidate(self) -> None:
        """Drop the cached credential; the next :meth:`get` refreshes."""
        if self._credential is not None:
            _logger.warning("Realtime credential invalidated prefix=%s", short_token(self._credential.token))
        self._credential = None

    def _static_fallback(self) -> Credential | None:
        if not self._config.static_token:
            return None
        return Credential.static(self._config.static_token)

    def _clear_inflight(self, task: asyncio.Task[Credential]) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Mark the exception retrieved; waiters already received it.
            task.exception()

    async def _exchange(self) -> Credential:
        _logger.info("Requesting new realtime access token from %s", self._config.auth_url)
        try:
            credential = await login(self._transport, self._config, now=self._clock())
        except DamoovConfigError as exc:
            self._login_disabled = True
            _logger.error("Login exchange disabled: %s", exc)
            raise
        except DamoovTransportError as exc:
            _logger.warning("Login exchange failed kind=transport status=%s: %s", exc.status_code, exc)
            raise
        except DamoovProtocolError as exc:
            _logger.warning("Login exchange failed kind=protocol: %s", exc)
            raise

        self._credential = credential
        _logger.info(
            "Obtained realtime access token prefix=%s expires_in=%.0fs",
            short_token(credential.token),
            credential.expires_in(self._clock()),
        )
        return credential
