"""
Fixed-point and address helpers.
Run with: python3 -m pytest tests/test_units.py -v
"""

import os
import sys
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from presale_app.services.errors import InvalidAddress, InvalidAmount
from presale_app.services.units import (
    DEAD_ADDRESS,
    WAD,
    ZERO_ADDRESS,
    ceil_div,
    format_ether,
    format_units,
    is_zero_address,
    normalize_address,
    parse_ether,
    parse_units,
    to_float,
)


def test_parse_ether():
    assert parse_ether("1.5") == 1_500_000_000_000_000_000
    assert parse_ether("0.0025") == 2_500_000_000_000_000
    assert parse_ether(Decimal("0.00125")) == 1_250_000_000_000_000
    assert parse_ether(3) == 3 * WAD


@pytest.mark.parametrize("bad", ["abc", "", "1.2.3"])
def test_parse_ether_rejects_garbage(bad):
    with pytest.raises(InvalidAmount):
        parse_ether(bad)


def test_format_ether():
    assert format_ether(1_500_000_000_000_000_000) == "1.5"
    assert format_ether(WAD) == "1"
    assert format_ether(1) == "0.000000000000000001"


def test_parse_and_format_units():
    assert parse_units("2000", 8) == 200_000_000_000
    assert parse_units("1234.56789", 8) == 123_456_789_000
    assert format_units(200_000_000_000, 8) == "2000"
    assert format_units(123_456_789_000, 8) == "1234.56789"


def test_parse_units_rejects_excess_precision():
    with pytest.raises(InvalidAmount):
        parse_units("0.123", 2)


def test_ceil_div():
    assert ceil_div(7, 2) == 4
    assert ceil_div(6, 2) == 3
    assert ceil_div(0, 5) == 0
    assert ceil_div(1, 10 ** 30) == 1
    with pytest.raises(ZeroDivisionError):
        ceil_div(1, 0)


def test_to_float():
    assert to_float(2_500_000_000_000_000) == pytest.approx(0.0025)
    assert to_float(200_000_000_000, 8) == pytest.approx(2000.0)


def test_normalize_address_checksums():
    assert normalize_address(DEAD_ADDRESS.lower()) == DEAD_ADDRESS
    assert is_zero_address(ZERO_ADDRESS)
    assert not is_zero_address(DEAD_ADDRESS)


@pytest.mark.parametrize("bad", ["0x123", "not-an-address", None, 42])
def test_normalize_address_rejects_invalid(bad):
    with pytest.raises(InvalidAddress):
        normalize_address(bad)


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
