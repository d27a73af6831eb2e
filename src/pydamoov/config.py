"""Pipeline configuration for pydamoov."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pydamoov import _constants


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_str(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


@dataclasses.dataclass(frozen=True)
class DamoovConfig:
    """Realtime pipeline configuration.

    Parameters
    ----------
    instance_id : str or None
        Target instance whose devices the websocket subscribes to.
    static_token : str or None
        Pre-issued realtime JWT. Used directly when no login identifiers
        are configured, and as a fallback when the login exchange fails.
    auth_instance_id : str or None
        API ``InstanceId`` sent as a header on the login exchange.
    auth_instance_key : str or None
        API ``InstanceKey`` sent as a header on the login exchange.
    login_email : str or None
        Account email for the login exchange.
    password : str or None
        Account password for the login exchange.
    auth_url : str
        Identity endpoint for the login exchange.
    ws_url : str
        Realtime websocket endpoint.
    client_id : str
        Client identifier sent in the authenticate message.
    device_token : str or None
        Restrict the subscription to one device. ``None`` subscribes to
        every device of the instance.
    units : str
        Unit system requested from the realtime service.
    time_zone : str
        IANA time zone requested from the realtime service.
    date_format : str
        Timestamp format requested from the realtime service.
    speed_unit : str
        Unit of the ``speed`` / ``speed_limit`` values in
        ``device_update`` payloads: ``"mps"``, ``"kmh"`` or ``"mph"``.
    login_timeout : float
        Seconds allowed for one login exchange.
    auth_timeout : float
        Seconds to wait for the ``authenticated`` / ``subscribed``
        acknowledgement before giving up on a connection attempt.
    ws_heartbeat : float or None
        Websocket-level ping interval in seconds (``None`` disables).
    refresh_window : float
        Credentials are refreshed this many seconds before expiry.
    default_token_ttl : float
        Lifetime assumed when the login response has no expiry.
    reconnect_delay : float
        Base delay before reconnecting after an ordinary disconnect.
    auth_retry_delay : float
        Base delay before reconnecting after an authentication rejection.
    reconnect_max_delay : float
        Upper bound for the exponentially growing reconnect delay.
    reconnect_jitter : float
        Jitter as a fraction of the delay (``0`` disables).
    max_events : int
        Capacity of the recent risk-event buffer.
    log_payloads : bool
        Log every inbound message (redacted) at DEBUG level.
    """

    instance_id: str | None = None
    static_token: str | None = None
    auth_instance_id: str | None = None
    auth_instance_key: str | None = None
    login_email: str | None = None
    password: str | None = None
    auth_url: str = _constants.AUTH_URL
    ws_url: str = _constants.REALTIME_WS_URL
    client_id: str = _constants.CLIENT_ID
    device_token: str | None = None
    units: str = "imperial"
    time_zone: str = "UTC"
    date_format: str = "iso"
    speed_unit: str = "mps"
    login_timeout: float = 10.0
    auth_timeout: float = 15.0
    ws_heartbeat: float | None = 30.0
    refresh_window: float = _constants.REFRESH_WINDOW
    default_token_ttl: float = _constants.DEFAULT_TOKEN_TTL
    reconnect_delay: float = _constants.RECONNECT_DELAY
    auth_retry_delay: float = _constants.AUTH_RETRY_DELAY
    reconnect_max_delay: float = _constants.RECONNECT_MAX_DELAY
    reconnect_jitter: float = _constants.RECONNECT_JITTER
    max_events: int = _constants.MAX_EVENTS
    log_payloads: bool = False

    def __post_init__(self) -> None:
        if self.speed_unit not in _constants.SPEED_UNIT_FACTORS:
            allowed = ", ".join(sorted(_constants.SPEED_UNIT_FACTORS))
            raise ValueError(f"speed_unit must be one of {allowed}, got {self.speed_unit!r}")
        if self.max_events <= 0:
            raise ValueError(f"max_events must be positive, got {self.max_events}")

    @property
    def has_login_credentials(self) -> bool:
        """Whether the login exchange can be attempted."""
        return bool(self.auth_instance_id and self.login_email and self.password)

    def missing_settings(self) -> list[str]:
        """Return the settings that prevent the pipeline from starting."""
        missing: list[str] = []
        if not self.instance_id:
            missing.append("instance_id")
        if not self.static_token and not self.has_login_credentials:
            missing.append("static_token or auth_instance_id/login_email/password")
        return missing

    @classmethod
    def from_env(cls, **overrides: Any) -> DamoovConfig:
        """Create configuration from environment variables.

        Reads the ``DAMOOV_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        DamoovConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "DAMOOV_INSTANCE_ID": "instance_id",
            "DAMOOV_AUTH_INSTANCE_ID": "auth_instance_id",
            "DAMOOV_AUTH_INSTANCE_KEY": "auth_instance_key",
            "DAMOOV_AUTH_LOGIN_EMAIL": "login_email",
            "DAMOOV_AUTH_PASSWORD": "password",
            "DAMOOV_AUTH_URL": "auth_url",
            "DAMOOV_REALTIME_WS_URL": "ws_url",
            "DAMOOV_CLIENT_ID": "client_id",
            "DAMOOV_DEVICE_TOKEN": "device_token",
            "DAMOOV_UNITS": "units",
            "DAMOOV_TIME_ZONE": "time_zone",
            "DAMOOV_DATE_FORMAT": "date_format",
            "DAMOOV_SPEED_UNIT": "speed_unit",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = _env_str(env.get(env_key))
            if val is not None:
                config_kwargs[field_name] = val

        # The admin JWT was accepted by older deployments as the realtime token.
        static_token = _env_str(env.get("DAMOOV_REALTIME_JWT")) or _env_str(env.get("DAMOOV_ADMIN_JWT"))
        if static_token is not None:
            config_kwargs["static_token"] = static_token

        _ENV_FLOAT_MAP = {
            "DAMOOV_LOGIN_TIMEOUT": "login_timeout",
            "DAMOOV_AUTH_TIMEOUT": "auth_timeout",
            "DAMOOV_WS_HEARTBEAT": "ws_heartbeat",
            "DAMOOV_REFRESH_WINDOW": "refresh_window",
            "DAMOOV_RECONNECT_DELAY": "reconnect_delay",
            "DAMOOV_AUTH_RETRY_DELAY": "auth_retry_delay",
            "DAMOOV_RECONNECT_MAX_DELAY": "reconnect_max_delay",
            "DAMOOV_RECONNECT_JITTER": "reconnect_jitter",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = _env_str(env.get(env_key))
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(val)

        max_events_env = _env_str(env.get("DAMOOV_MAX_EVENTS"))
        if max_events_env is not None and "max_events" not in overrides:
            config_kwargs["max_events"] = int(max_events_env)

        if "log_payloads" not in overrides:
            config_kwargs["log_payloads"] = _env_bool(env.get("DAMOOV_LOG_PAYLOADS"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
