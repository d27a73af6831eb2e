"""Log-safe views of login responses and realtime frames.

Login responses carry the bearer token, the login request carries the
account password and instance key, and realtime frames can carry long
coordinate arrays. :func:`redact_for_log` hides the secrets, masks
account emails and trims the bulk so a payload fits in one log line.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

# Compared after dropping "_" / "-" and lowercasing, so AccessToken,
# access_token and accessToken all match "accesstoken".
_SECRET_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "instancekey",
        "accesstoken",
        "refreshtoken",
        "token",
        "jwt",
        "authorization",
    }
)
_EMAIL_KEYS: frozenset[str] = frozenset({"email", "loginemail"})

_MAX_DEPTH = 8


def _key(name: Any) -> str:
    return str(name).replace("_", "").replace("-", "").lower()


def short_token(token: str | None) -> str:
    """Return a prefix of *token* that is safe to log."""
    if not token:
        return "<none>"
    return f"{token[:16]}..."


def mask_email(value: str) -> str:
    """``ops@example.com`` -> ``o***@example.com``."""
    local, sep, domain = value.partition("@")
    if not sep:
        return "<redacted>"
    return f"{local[:1]}***@{domain}"


def redact_for_log(value: Any, *, max_string: int = 256, max_items: int = 20) -> Any:
    """Return a copy of a decoded JSON payload that is safe to log.

    Secret values become ``<redacted>`` and email addresses are masked.
    Strings longer than *max_string* and lists longer than *max_items*
    are cut, with a marker saying how much was dropped.
    """
    return _redact(value, max_string, max_items, 0)


def _redact(value: Any, max_string: int, max_items: int, depth: int) -> Any:
    if depth > _MAX_DEPTH:
        return "<nested>"
    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}<truncated:{len(value)}>"
        return value
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for name, item in value.items():
            key = _key(name)
            if key in _SECRET_KEYS:
                redacted[str(name)] = "<redacted>"
            elif key in _EMAIL_KEYS and isinstance(item, str):
                redacted[str(name)] = mask_email(item)
            else:
                redacted[str(name)] = _redact(item, max_string, max_items, depth + 1)
        return redacted
    if isinstance(value, (list, tuple)):
        items = [_redact(item, max_string, max_items, depth + 1) for item in value[:max_items]]
        if len(value) > max_items:
            items.append(f"<+{len(value) - max_items} more>")
        return items
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}>"
    return repr(value)
