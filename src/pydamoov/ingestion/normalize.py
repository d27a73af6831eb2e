"""Normalization helpers.

Centralizes defensive parsing of loosely typed realtime payload values.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def first_present(data: Mapping[str, Any], keys: Iterable[str]) -> Any:
    """Return the value of the first key in *keys* that is set in *data*."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a payload timestamp into an aware UTC datetime.

    Accepts epoch seconds, epoch milliseconds (> 1e11) and ISO-8601
    strings. Anything else yields ``None``.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)

    numeric = safe_float(value)
    if numeric is not None:
        if numeric <= 0:
            return None
        if numeric > 1e11:
            numeric /= 1000.0
        try:
            return datetime.fromtimestamp(numeric, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    return None
