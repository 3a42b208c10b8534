from __future__ import annotations

import pytest

from app.core.units import format_units, sum_usd, usd_value


@pytest.mark.parametrize(
    ("value", "decimals", "expected"),
    [
        (0, 18, "0"),
        (1, 18, "0.000000000000000001"),
        (1_500_000, 6, "1.5"),
        (10**18, 18, "1"),
        (123_456_789, 0, "123456789"),
    ],
)
def test_format_units_is_exact(value, decimals, expected):
    assert format_units(value, decimals) == expected


def test_format_units_keeps_every_digit_of_uint256_values():
    value = 2**256 - 1
    rendered = format_units(value, 18)
    whole, fraction = rendered.split(".")
    assert int(whole + fraction.ljust(18, "0")) == value


def test_usd_value_without_price_is_zero_string():
    assert usd_value("12.5", None) == "0"


def test_usd_value_rounds_to_cents():
    assert usd_value("1.005", 1.0) == "1.01"
    assert usd_value("2", 1800.5) == "3601.00"
    assert usd_value("0", 1800.5) == "0"


def test_sum_usd_of_nothing_is_zero():
    assert sum_usd([]) == "0"
    assert sum_usd(["1.10", "2.25"]) == "3.35"
