"""Overspeed risk classification.

Overspeed is always expressed in miles per hour. Raw speed and limit
values are normalized from their reported unit first.
"""

from __future__ import annotations

import math
from enum import StrEnum

from pydamoov._constants import SPEED_UNIT_FACTORS


class RiskTier(StrEnum):
    NONE = "none"
    MILD = "mild"
    MEDIUM = "medium"
    SEVERE = "severe"


#: Lower bounds (mph, inclusive) checked from most to least severe.
_TIER_THRESHOLDS: tuple[tuple[float, RiskTier], ...] = (
    (20.0, RiskTier.SEVERE),
    (10.0, RiskTier.MEDIUM),
    (5.0, RiskTier.MILD),
)


def classify(overspeed_amount: float) -> RiskTier:
    """Map an overspeed amount in mph to a risk tier.

    Defined for every float: negative values, values below 5 and NaN
    are all ``RiskTier.NONE``.
    """
    if math.isnan(overspeed_amount):
        return RiskTier.NONE
    for threshold, tier in _TIER_THRESHOLDS:
        if overspeed_amount >= threshold:
            return tier
    return RiskTier.NONE


def to_mph(value: float, unit: str = "mps") -> float:
    """Convert a speed reported in *unit* to miles per hour."""
    try:
        factor = SPEED_UNIT_FACTORS[unit]
    except KeyError:
        raise ValueError(f"Unsupported speed unit: {unit!r}") from None
    return value * factor


def overspeed_mph(speed: float | None, speed_limit: float | None, unit: str = "mps") -> float:
    """Return ``max(0, speed - limit)`` in mph, or 0 when either is unknown."""
    if speed is None or speed_limit is None:
        return 0.0
    return max(0.0, to_mph(speed, unit) - to_mph(speed_limit, unit))
