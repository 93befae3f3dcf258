"""Conversions between major currency units and gateway minor units.

The ledger and orders store major units. Minor units exist only on the wire to
the gateway, so each conversion happens exactly once at that boundary.
"""

from decimal import ROUND_HALF_UP, Decimal

MINOR_PER_MAJOR = 100
_CENT = Decimal("0.01")


def to_minor_units(amount: Decimal) -> int:
    """`round(amount * 100)` with half-up rounding."""

    return int((Decimal(str(amount)) * MINOR_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major_units(minor: int) -> Decimal:
    return (Decimal(minor) / MINOR_PER_MAJOR).quantize(_CENT)
