"""Expiry conversion tests."""
import math

import pytest

from answerlinks.services.expiry import DEFAULT_EXPIRY_MINUTES, ExpiryUnit, to_minutes


@pytest.mark.parametrize(
    "value, unit, expected",
    [
        (30, "minutes", 30),
        (2, "hours", 120),
        (1, "days", 1440),
        (1, "weeks", 10080),
        ("3", ExpiryUnit.HOURS, 180),
    ],
)
def test_units_convert_to_minutes(value, unit, expected):
    """Each unit uses its multiplier."""
    assert to_minutes(value, unit) == expected


def test_fractional_values_round_half_up():
    """Halves round up instead of to even."""
    assert to_minutes(0.5, "minutes") == 1
    assert to_minutes(2.5, "minutes") == 3
    assert to_minutes(1.25, "hours") == 75


@pytest.mark.parametrize("value", [0, -1, "", "abc", None, math.nan, math.inf, -math.inf])
def test_unusable_values_fall_back_to_one_hour(value):
    """Non-positive, non-numeric and non-finite values yield the default."""
    assert to_minutes(value, "days") == DEFAULT_EXPIRY_MINUTES


def test_unknown_unit_falls_back_to_one_hour():
    assert to_minutes(5, "fortnights") == DEFAULT_EXPIRY_MINUTES
    assert to_minutes(5, None) == DEFAULT_EXPIRY_MINUTES


def test_result_is_always_a_non_negative_integer():
    """The conversion never raises and never goes negative."""
    for value in (1, 1.5, "2", -3, "x", object()):
        for unit in ("minutes", "hours", "days", "weeks", "bogus"):
            result = to_minutes(value, unit)
            assert isinstance(result, int)
            assert result >= 0


@pytest.mark.parametrize("unit", list(ExpiryUnit))
def test_longer_expiries_never_convert_to_fewer_minutes(unit):
    """Among usable values the conversion is non-decreasing for every unit."""
    values = [0.001, 0.25, 0.5, 0.75, 1, 1.5, 2, 2.5, 10, 99.99, 100, 1000]
    minutes = [to_minutes(value, unit) for value in values]
    assert minutes == sorted(minutes)
    assert minutes[-1] > minutes[0]
