from decimal import ROUND_HALF_UP, Decimal

TWO_PLACES = Decimal("0.01")
MINOR_UNITS_PER_MAJOR = Decimal("100")


def as_decimal(value: Decimal | int | float | str) -> Decimal:
    """Coerce to Decimal going through str so floats don't carry binary noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_amount(value: Decimal | int | float | str) -> Decimal:
    return as_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal | int | float | str) -> int:
    """Major currency units (naira) -> integer minor units (kobo), rounded to the nearest unit."""
    minor = (as_decimal(amount) * MINOR_UNITS_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(minor)


def from_minor_units(minor: int | str) -> Decimal:
    return (Decimal(int(minor)) / MINOR_UNITS_PER_MAJOR).quantize(TWO_PLACES)
