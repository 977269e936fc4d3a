"""Conversion of an admin-entered expiry (value, unit) into minutes."""
from __future__ import annotations

import math
from enum import Enum
from typing import Any

DEFAULT_EXPIRY_MINUTES = 60


class ExpiryUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"


UNIT_MULTIPLIERS = {
    ExpiryUnit.MINUTES: 1,
    ExpiryUnit.HOURS: 60,
    ExpiryUnit.DAYS: 60 * 24,
    ExpiryUnit.WEEKS: 60 * 24 * 7,
}


def to_minutes(value: Any, unit: Any) -> int:
    """Return the expiry in whole minutes.

    Total over its inputs: a non-numeric, non-finite or non-positive value, or
    an unknown unit, yields the one hour default.
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_EXPIRY_MINUTES
    if not math.isfinite(number) or number <= 0:
        return DEFAULT_EXPIRY_MINUTES

    try:
        multiplier = UNIT_MULTIPLIERS[ExpiryUnit(unit)]
    except ValueError:
        return DEFAULT_EXPIRY_MINUTES
    # Half-up rounding; the built-in round() rounds halves to even.
    return int(math.floor(number * multiplier + 0.5))
