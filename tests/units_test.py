"""Test unit conversions."""

from __future__ import annotations

import pytest

from volguard.units import bytes_to_quantity, quantity_to_bytes


def test_quantity_to_bytes() -> None:
    assert quantity_to_bytes("123456789") == 123456789
    assert quantity_to_bytes("12K") == 12 * 1000
    assert quantity_to_bytes("12Ki") == 12 * 1024
    assert quantity_to_bytes("500M") == 500 * 1000 * 1000
    assert quantity_to_bytes("12Mi") == 12 * 1024 * 1024
    assert quantity_to_bytes("1Gi") == 1024 * 1024 * 1024
    assert quantity_to_bytes(" 20Gi ") == 20 * 1024 * 1024 * 1024
    assert quantity_to_bytes("1.5Gi") == 1536 * 1024 * 1024

    with pytest.raises(ValueError, match="Empty"):
        quantity_to_bytes("  ")
    with pytest.raises(ValueError):
        quantity_to_bytes("lots")


def test_bytes_to_quantity() -> None:
    assert bytes_to_quantity(0) == "0"
    assert bytes_to_quantity(512) == "512"
    assert bytes_to_quantity(12 * 1024) == "12Ki"
    assert bytes_to_quantity(20 * 1024 * 1024 * 1024) == "20Gi"
    assert bytes_to_quantity(5 * 1024 * 1024 * 1024) == "5Gi"
    assert bytes_to_quantity(1536 * 1024 * 1024) == "1.5Gi"
    assert bytes_to_quantity(-10 * 1024 * 1024 * 1024) == "-10Gi"
