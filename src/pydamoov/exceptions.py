"""Custom exception hierarchy for pydamoov."""

from __future__ import annotations


class DamoovError(Exception):
    """Base exception for all pydamoov errors."""


class DamoovConfigError(DamoovError):
    """Invalid or missing configuration.

    Raised by the credential store when the login identifiers are absent.
    Login is then treated as permanently disabled rather than retried.
    """


class DamoovTransportError(DamoovError):
    """Network-level failure (connection error, timeout, non-2xx status)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str = "",
    ) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class DamoovProtocolError(DamoovError):
    """Unexpected payload shape (non-JSON body, missing fields)."""


class DamoovAuthRejectedError(DamoovError):
    """The realtime service rejected the access token.

    Covers both a websocket handshake answered with 401/403 and an
    ``error`` message carrying an authentication-class code.
    """

    def __init__(self, message: str, *, code: str = "") -> None:
        self.code = code
        super().__init__(message)
