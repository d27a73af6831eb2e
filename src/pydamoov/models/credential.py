"""Realtime access credential."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import StrEnum

from pydantic import Field

from pydamoov.models._base import DamoovBaseModel


class CredentialSource(StrEnum):
    LOGIN = "login"
    STATIC = "static"


class Credential(DamoovBaseModel):
    """Bearer token used to authenticate the realtime websocket.

    Parameters
    ----------
    token : str
        Opaque bearer token.
    expires_at : datetime
        Absolute UTC expiry.
    obtained_at : datetime
        When the token was issued to us.
    source : CredentialSource
        ``login`` for exchanged tokens, ``static`` for a configured override.
    """

    token: str = Field(min_length=1)
    expires_at: datetime
    obtained_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    source: CredentialSource = CredentialSource.LOGIN

    @classmethod
    def static(cls, token: str) -> Credential:
        """Wrap a configured token whose expiry is unknown."""
        return cls(
            token=token,
            expires_at=datetime.max.replace(tzinfo=UTC),
            source=CredentialSource.STATIC,
        )

    def is_fresh(self, now: datetime, refresh_window: float) -> bool:
        """Whether the token may still be used for a new authentication."""
        if self.expires_at == datetime.max.replace(tzinfo=UTC):
            return True
        return now < self.expires_at - timedelta(seconds=refresh_window)

    def expires_in(self, now: datetime) -> float:
        """Seconds until expiry (negative once expired)."""
        return (self.expires_at - now).total_seconds()
