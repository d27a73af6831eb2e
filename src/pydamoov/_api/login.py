"""Login exchange.

Endpoint:
  - POST /v1/Auth/Login on the identity service

Exchanges the account email and password, scoped by the API instance
headers, for a realtime access token.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from pydamoov._constants import DEFAULT_TOKEN_TTL
from pydamoov._redact import redact_for_log
from pydamoov._transport import Transport
from pydamoov.config import DamoovConfig
from pydamoov.exceptions import DamoovConfigError, DamoovProtocolError
from pydamoov.ingestion.normalize import first_present, safe_float
from pydamoov.models.credential import Credential, CredentialSource

_logger = logging.getLogger(__name__)


def build_login_request(config: DamoovConfig) -> tuple[dict[str, Any], dict[str, str]]:
    """Build the body and headers for the login exchange.

    Raises
    ------
    DamoovConfigError
        If the instance id, email or password is not configured.
    """
    if not config.has_login_credentials:
        raise DamoovConfigError("Login requires auth_instance_id, login_email and password")

    body: dict[str, Any] = {
        "loginFields": {"Email": config.login_email},
        "password": config.password,
    }
    headers: dict[str, str] = {
        "InstanceId": config.auth_instance_id or "",
        "InstanceKey": config.auth_instance_key or "",
        "Content-Type": "application/json-patch+json",
        "accept": "*/*",
    }
    return body, headers


def parse_login_response(
    response: dict[str, Any],
    *,
    now: datetime,
    default_ttl: float = DEFAULT_TOKEN_TTL,
) -> Credential:
    """Extract the access token from a login response.

    The token lives under ``Result.AccessToken.Token``; the snake_case and
    unwrapped spellings seen from some deployments are accepted too.

    Raises
    ------
    DamoovProtocolError
        If no token can be found or the lifetime is out of range.
    """
    result = first_present(response, ("Result", "result"))
    if not isinstance(result, dict):
        result = response
    access = first_present(result, ("AccessToken", "access_token", "accessToken"))
    if not isinstance(access, dict):
        access = {}

    token = first_present(access, ("Token", "token"))
    if not isinstance(token, str) or not token.strip():
        _logger.warning("Login response without token parsed=%s", redact_for_log(response))
        raise DamoovProtocolError("Login response missing AccessToken.Token")

    expires_in = safe_float(first_present(access, ("ExpiresIn", "expires_in", "expiresIn")))
    if expires_in is None or expires_in <= 0:
        expires_in = default_ttl
    try:
        expires_at = now + timedelta(seconds=expires_in)
    except (OverflowError, ValueError) as exc:
        raise DamoovProtocolError(f"Login response ExpiresIn out of range: {expires_in:g}") from exc

    return Credential(
        token=token.strip(),
        expires_at=expires_at,
        obtained_at=now,
        source=CredentialSource.LOGIN,
    )


async def login(transport: Transport, config: DamoovConfig, *, now: datetime) -> Credential:
    """Run the login exchange and return a fresh credential."""
    body, headers = build_login_request(config)
    response = await transport.post_json(
        config.auth_url,
        body,
        headers=headers,
        timeout=config.login_timeout,
    )
    return parse_login_response(response, now=now, default_ttl=config.default_token_ttl)
