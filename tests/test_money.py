from decimal import Decimal

import pytest

from bookstore.services.money import from_minor_units, quantize_amount, to_minor_units


@pytest.mark.parametrize(
    "amount,expected",
    [
        (Decimal("2500"), 250000),
        (Decimal("1200.50"), 120050),
        (Decimal("0.01"), 1),
        (Decimal("10.005"), 1001),
        (Decimal("10.004"), 1000),
        ("19.99", 1999),
    ],
)
def test_to_minor_units(amount, expected):
    assert to_minor_units(amount) == expected


def test_to_minor_units_float_has_no_binary_noise():
    # 0.1 + 0.2 is 0.30000000000000004 as a float
    assert to_minor_units(0.1 + 0.2) == 30


def test_from_minor_units():
    assert from_minor_units(120050) == Decimal("1200.50")
    assert from_minor_units("999") == Decimal("9.99")


def test_quantize_amount_rounds_half_up():
    assert quantize_amount("2.675") == Decimal("2.68")
    assert quantize_amount(3) == Decimal("3.00")


@pytest.mark.parametrize("amount", ["5000.00", "1200.50", "0.01", "99999.99"])
def test_minor_units_round_trip(amount):
    assert from_minor_units(to_minor_units(Decimal(amount))) == Decimal(amount)


def test_naira_amount_to_kobo_and_back():
    kobo = to_minor_units(Decimal("5000.00"))
    assert kobo == 500000
    assert from_minor_units(kobo) == Decimal("5000.00")
